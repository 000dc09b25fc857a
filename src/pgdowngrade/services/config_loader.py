"""Configuration loader for pgdowngrade."""

from pathlib import Path
from typing import Any, Dict, Optional

import yaml

from pgdowngrade.errors import DowngradeError


class ConfigLoader:
    """Loads YAML configuration files for CLI defaults."""

    SUPPORTED_KEYS = {
        "pg_data",
        "pod_name",
        "cluster_name",
        "namespace",
        "target_major_version",
        "socket_dir",
        "superuser",
        "verbose",
        "log_file",
        "kubectl",
        "context",
        "kubectl_timeout",
    }
    INTEGER_KEYS = {"target_major_version"}
    NUMBER_KEYS = {"kubectl_timeout"}
    BOOLEAN_KEYS = {"verbose"}

    def load(self, config_path: Optional[str]) -> Dict[str, Any]:
        if not config_path:
            return {}

        path = Path(config_path)
        if not path.exists():
            raise DowngradeError(f"Config file not found: {config_path}")

        try:
            parsed = yaml.safe_load(path.read_text(encoding="utf-8"))
        except (yaml.YAMLError, OSError) as exc:
            raise DowngradeError(f"Invalid config file '{config_path}': {exc}") from exc

        if parsed is None:
            return {}
        if not isinstance(parsed, dict):
            raise DowngradeError("Config file must contain a YAML mapping at the root.")

        unknown = sorted(set(parsed.keys()) - self.SUPPORTED_KEYS)
        if unknown:
            unknown_list = ", ".join(unknown)
            raise DowngradeError(f"Unknown configuration keys: {unknown_list}")

        self._check_types(parsed)
        return parsed

    def _check_types(self, parsed: Dict[str, Any]):
        for key, value in parsed.items():
            if value is None:
                continue
            if key in self.BOOLEAN_KEYS:
                valid = isinstance(value, bool)
            elif key in self.INTEGER_KEYS:
                valid = isinstance(value, int) and not isinstance(value, bool)
            elif key in self.NUMBER_KEYS:
                valid = isinstance(value, (int, float)) and not isinstance(value, bool)
            else:
                valid = isinstance(value, str)
            if not valid:
                raise DowngradeError(
                    f"Invalid value for configuration key '{key}': {value!r}"
                )
