"""Actionable error catalog for pgdowngrade."""

from typing import Dict

_ERROR_MESSAGES: Dict[str, Dict[str, str]] = {
    "missing_pg_data": {
        "what": "PGDATA not set.",
        "next": "Pass `--pg-data` or export `PGDATA` on the node running the downgrade.",
    },
    "pg_data_not_found": {
        "what": "Data directory not found: {pg_data}",
        "next": "Check that the primary's volume is mounted at the expected path.",
    },
    "backup_exists": {
        "what": "A backup directory from an earlier run already exists: {backup_dir}",
        "next": "Run `pgdowngrade inspect` and restore or remove the backup before retrying.",
    },
    "original": {
        "what": "The data directory {pg_data} was not modified.",
        "next": "Fix the reported cause and run the downgrade again.",
    },
    "dumped": {
        "what": "An export was written to {dump_file} and the original directory is still in place.",
        "next": "Make sure no instance is running on {pg_data}, remove the dump file and retry.",
    },
    "backed_up": {
        "what": "The original data directory was moved to {backup_dir}; {pg_data} may be missing or partial.",
        "next": "Remove {pg_data} if present and rename {backup_dir} back to {pg_data} before retrying.",
    },
    "reinitialized": {
        "what": "A new data directory exists at {pg_data}; the original is kept at {backup_dir}.",
        "next": (
            "Stop any instance running on {pg_data}, then either replay {dump_file} manually "
            "or remove {pg_data} and rename {backup_dir} back before retrying."
        ),
    },
    "restored": {
        "what": "The export was replayed into {pg_data}; the original is kept at {backup_dir}.",
        "next": "Stop the instance running on {pg_data} and remove {backup_dir} once the data is verified.",
    },
    "finalized": {
        "what": "The downgrade of {pg_data} is complete.",
        "next": "No action needed.",
    },
}


def actionable_error(code: str, **kwargs: str) -> str:
    if code not in _ERROR_MESSAGES:
        raise KeyError(f"Unknown error catalog key: {code}")

    template = _ERROR_MESSAGES[code]
    what = template["what"].format(**kwargs)
    next_step = template["next"].format(**kwargs)
    return f"{what} Suggested action: {next_step}"


def recovery_hint(state, pg_data: str, backup_dir: str, dump_file: str) -> str:
    """Describe what an operator finds on disk in ``state`` and what to do next."""
    return actionable_error(
        state.value,
        pg_data=pg_data,
        backup_dir=backup_dir,
        dump_file=dump_file,
    )
