import logging
import os
from typing import Callable, List, Optional, Tuple

from rich.console import Console

from .constants import SERVER_LOG_FILE
from .errors import DowngradeError, FilesystemError, PreconditionError, StepFailedError
from .errors_catalog import actionable_error, recovery_hint
from .models import DataDirectoryState, ExecutorConfig
from .services.command_runner import CommandRunner
from .services.data_directory import DataDirectoryService
from .services.dump_sanitizer import DumpSanitizer
from .services.postgres import PostgresService

console = Console()
logger = logging.getLogger("pgdowngrade")


class DowngradeExecutor:
    """Runs the offline dump/reinit/restore downgrade against one data directory.

    Progress is only recorded by the layout of the data directory itself; see
    ``DataDirectoryState`` for the order in which it changes.
    """

    def __init__(
        self,
        config: ExecutorConfig,
        command_runner: Optional[CommandRunner] = None,
        data_directory_service: Optional[DataDirectoryService] = None,
        postgres_service: Optional[PostgresService] = None,
        dump_sanitizer: Optional[DumpSanitizer] = None,
    ):
        self.config = config
        self.pg_data = os.path.normpath(config.pg_data) if config.pg_data else ""
        self.backup_dir = config.backup_dir if config.pg_data else ""
        self.dump_file = os.path.join(self.pg_data, config.dump_file_name) if self.pg_data else ""
        self.server_log = os.path.join(config.socket_dir, SERVER_LOG_FILE)

        self.state = DataDirectoryState.ORIGINAL
        self.current_step_name: Optional[str] = None
        self.current_major_version: Optional[int] = None

        self.command_runner = command_runner or CommandRunner(logger=logger)
        self.data_directory = data_directory_service or DataDirectoryService(logger=logger)
        self.postgres = postgres_service or PostgresService(
            command_runner=self.command_runner,
            logger=logger,
            socket_dir=config.socket_dir,
            superuser=config.superuser,
        )
        self.dump_sanitizer = dump_sanitizer or DumpSanitizer(logger=logger)

    def _step_error(self, label: str, exc: Exception) -> StepFailedError:
        return StepFailedError(f"{label}: {exc}", step=self.current_step_name or "run", state=self.state)

    def _stop_after_failure(self, error: StepFailedError):
        """Best-effort stop; its own failure is recorded on ``error`` but never raised."""
        try:
            self.postgres.stop_quietly(self.pg_data)
        except DowngradeError as stop_exc:
            logger.warning("Could not stop PostgreSQL after failure: %s", stop_exc)
            error.suppressed.append(stop_exc)

    def _remove_partial_dump(self, error: StepFailedError):
        try:
            self.data_directory.remove_file_if_exists(self.dump_file)
        except FilesystemError as remove_exc:
            logger.warning("Could not remove partial dump %s: %s", self.dump_file, remove_exc)
            error.suppressed.append(remove_exc)

    def validate_preconditions(self):
        if not self.pg_data:
            raise PreconditionError(actionable_error("missing_pg_data"))
        if not os.path.isdir(self.pg_data):
            raise PreconditionError(actionable_error("pg_data_not_found", pg_data=self.pg_data))
        if os.path.lexists(self.backup_dir):
            raise PreconditionError(actionable_error("backup_exists", backup_dir=self.backup_dir))

        try:
            self.data_directory.ensure_directory(self.config.socket_dir)
        except FilesystemError as exc:
            raise PreconditionError(f"while creating socket directory: {exc}") from exc

        self.current_major_version = self.data_directory.read_major_version(self.pg_data)

    def strip_incompatible_config(self):
        include_path = os.path.join(self.pg_data, self.config.config_include_file)
        try:
            self.data_directory.remove_file_if_exists(include_path)
            self.data_directory.remove_config_include(self.pg_data, self.config.config_include_file)
        except FilesystemError as exc:
            raise self._step_error("failed to remove incompatible configuration", exc) from exc

    def start_original_instance(self):
        try:
            self.postgres.start(self.pg_data, self.server_log)
        except DowngradeError as exc:
            raise self._step_error("pg_ctl start failed", exc) from exc

    def export(self):
        try:
            self.postgres.dump_all(self.dump_file)
        except DowngradeError as exc:
            error = self._step_error("pg_dumpall failed", exc)
            self._stop_after_failure(error)
            self._remove_partial_dump(error)
            raise error from exc

    def stop_original_instance(self):
        try:
            self.postgres.stop(self.pg_data)
        except DowngradeError as exc:
            raise self._step_error("pg_ctl stop failed", exc) from exc

    def sanitize_dump(self):
        try:
            self.dump_sanitizer.sanitize(
                self.dump_file,
                current_major=self.current_major_version,
                target_major=self.config.target_major_version,
            )
        except DowngradeError as exc:
            raise self._step_error("dump sanitization failed", exc) from exc

    def backup_original_directory(self):
        try:
            self.data_directory.rename(self.pg_data, self.backup_dir)
        except FilesystemError as exc:
            raise self._step_error("failed to rename PGDATA", exc) from exc
        self.dump_file = os.path.join(self.backup_dir, self.config.dump_file_name)

    def initialize_new_directory(self):
        try:
            self.postgres.initdb(self.pg_data)
        except DowngradeError as exc:
            raise self._step_error("initdb failed", exc) from exc

    def start_new_instance(self):
        try:
            self.postgres.start(self.pg_data, self.server_log)
        except DowngradeError as exc:
            raise self._step_error("pg_ctl start failed", exc) from exc

    def restore(self):
        try:
            self.postgres.restore(self.dump_file)
        except DowngradeError as exc:
            error = self._step_error("restore failed", exc)
            self._stop_after_failure(error)
            raise error from exc

    def stop_new_instance(self):
        try:
            self.postgres.stop(self.pg_data)
        except DowngradeError as exc:
            raise self._step_error("pg_ctl stop failed", exc) from exc

    def finalize(self):
        try:
            self.data_directory.remove_tree(self.backup_dir)
        except FilesystemError as exc:
            raise self._step_error("failed to remove old PGDATA", exc) from exc

    def steps(self) -> List[Tuple[str, Callable[[], None], Optional[DataDirectoryState]]]:
        """Ordered transitions with the state each one leaves on disk."""
        return [
            ("strip_incompatible_config", self.strip_incompatible_config, None),
            ("start_original_instance", self.start_original_instance, None),
            ("export", self.export, None),
            ("stop_original_instance", self.stop_original_instance, DataDirectoryState.DUMPED),
            ("sanitize_dump", self.sanitize_dump, None),
            ("backup_original_directory", self.backup_original_directory, DataDirectoryState.BACKED_UP),
            ("initialize_new_directory", self.initialize_new_directory, DataDirectoryState.REINITIALIZED),
            ("start_new_instance", self.start_new_instance, None),
            ("restore", self.restore, DataDirectoryState.RESTORED),
            ("stop_new_instance", self.stop_new_instance, None),
            ("finalize", self.finalize, DataDirectoryState.FINALIZED),
        ]

    def _run_step(self, name: str, callback: Callable[[], None], next_state: Optional[DataDirectoryState]):
        self.current_step_name = name
        logger.debug("Step %s started (state: %s)", name, self.state.value)
        callback()
        if next_state is not None:
            self.state = next_state
        logger.debug("Step %s finished (state: %s)", name, self.state.value)
        self.current_step_name = None

    def execute(self) -> DataDirectoryState:
        self.validate_preconditions()

        logger.info(
            "Downgrading %s from major %s to %s",
            self.pg_data,
            self.current_major_version or "<unknown>",
            self.config.target_major_version or "<unknown>",
        )
        for name, callback, next_state in self.steps():
            self._run_step(name, callback, next_state)

        return self.state

    def recovery_hint(self) -> str:
        return recovery_hint(
            self.state,
            pg_data=self.pg_data,
            backup_dir=self.backup_dir,
            dump_file=self.dump_file,
        )

    def run(self) -> int:
        try:
            console.print(f"[blue]Starting major version downgrade of {self.pg_data or '<unset>'}...[/blue]")
            self.execute()
        except KeyboardInterrupt:
            console.print("[bold red]Operation cancelled by user.[/bold red]")
            logger.info("Operation cancelled by user")
            logger.warning(self.recovery_hint())
            return 1
        except PreconditionError as exc:
            console.print(f"[bold red]Error:[/bold red] {exc}", soft_wrap=True)
            logger.error(str(exc))
            return 1
        except DowngradeError as exc:
            console.print(f"[bold red]Error:[/bold red] {exc}", soft_wrap=True)
            logger.error(str(exc))
            logger.warning(self.recovery_hint())
            return 1
        except Exception as exc:
            console.print(f"[bold red]Unexpected error:[/bold red] {exc}")
            logger.exception("Unexpected error")
            logger.warning(self.recovery_hint())
            return 1

        console.print(f"[bold green]Downgrade complete: {self.pg_data}[/bold green]")
        logger.info("Downgrade of %s finished in state %s", self.pg_data, self.state.value)
        return 0
