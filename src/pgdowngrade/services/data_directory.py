"""Filesystem side effects on the PostgreSQL data directory."""

import os
import re
import shutil
import tempfile
from typing import Optional

from pgdowngrade.constants import DIR_MODE, MAIN_CONFIG_FILE, PG_VERSION_FILE
from pgdowngrade.errors import FilesystemError
from pgdowngrade.models import DataDirectoryState


class DataDirectoryService:
    """Encapsulates file and directory side effects on PGDATA."""

    def __init__(self, logger):
        self.logger = logger

    def ensure_directory(self, path: str, mode: int = DIR_MODE):
        try:
            os.makedirs(path, mode=mode, exist_ok=True)
        except OSError as exc:
            raise FilesystemError(f"Could not create directory {path}: {exc}") from exc

    def remove_file_if_exists(self, path: str) -> bool:
        try:
            os.remove(path)
        except FileNotFoundError:
            return False
        except OSError as exc:
            raise FilesystemError(f"failed to remove {os.path.basename(path)}: {exc}") from exc
        self.logger.info("Removed %s", path)
        return True

    def remove_config_include(self, pg_data: str, include_file: str) -> int:
        """Drop every ``include`` directive of ``postgresql.conf`` that references ``include_file``."""
        config_path = os.path.join(pg_data, MAIN_CONFIG_FILE)
        pattern = re.compile(rf"include.*{re.escape(include_file)}")

        try:
            with open(config_path, "r", encoding="utf-8", errors="surrogateescape") as src_file:
                lines = src_file.readlines()
        except OSError as exc:
            raise FilesystemError(f"Could not read {config_path}: {exc}") from exc

        kept = [line for line in lines if not pattern.search(line)]
        removed = len(lines) - len(kept)
        if removed:
            self.write_atomically(config_path, kept)
            self.logger.info("Removed %s include line(s) for %s from %s", removed, include_file, config_path)
        return removed

    def write_atomically(self, path: str, lines):
        directory = os.path.dirname(path) or "."
        fd, temp_path = tempfile.mkstemp(prefix=".pgdowngrade-", dir=directory)
        try:
            with os.fdopen(fd, "w", encoding="utf-8", errors="surrogateescape", newline="") as file_obj:
                file_obj.writelines(lines)
            shutil.copymode(path, temp_path)
            os.replace(temp_path, path)
        except OSError as exc:
            raise FilesystemError(f"Could not rewrite {path}: {exc}") from exc
        finally:
            if os.path.exists(temp_path):
                try:
                    os.remove(temp_path)
                except OSError:
                    pass

    def rename(self, source: str, destination: str):
        """Move ``source`` to ``destination`` in one step, refusing to overwrite."""
        if os.path.lexists(destination):
            raise FilesystemError(f"Cannot rename {source}: {destination} already exists")
        try:
            os.rename(source, destination)
        except OSError as exc:
            raise FilesystemError(f"Could not rename {source} to {destination}: {exc}") from exc
        self.logger.info("Renamed %s to %s", source, destination)

    def remove_tree(self, path: str):
        if not os.path.lexists(path):
            return
        try:
            shutil.rmtree(path)
        except OSError as exc:
            raise FilesystemError(f"Could not remove {path}: {exc}") from exc
        self.logger.info("Removed directory: %s", path)

    def read_major_version(self, pg_data: str) -> Optional[int]:
        version_path = os.path.join(pg_data, PG_VERSION_FILE)
        try:
            with open(version_path, "r", encoding="utf-8") as file_obj:
                raw = file_obj.read().strip()
        except OSError:
            return None

        try:
            return int(raw.split(".")[0])
        except ValueError:
            self.logger.warning("Unexpected content in %s: %r", version_path, raw)
            return None

    def detect_state(
        self,
        pg_data: str,
        backup_dir: str,
        dump_file_name: str,
        target_major_version: Optional[int] = None,
    ) -> DataDirectoryState:
        """Infer the downgrade progress from what is on disk.

        Restore progress cannot be observed offline, so a reinitialized directory
        next to a backup is reported as ``REINITIALIZED`` even after a replay.
        """
        if os.path.isdir(backup_dir):
            if not os.path.isdir(pg_data) or not os.listdir(pg_data):
                return DataDirectoryState.BACKED_UP
            return DataDirectoryState.REINITIALIZED

        if os.path.isfile(os.path.join(pg_data, dump_file_name)):
            return DataDirectoryState.DUMPED

        current = self.read_major_version(pg_data)
        if target_major_version is not None and current == target_major_version:
            return DataDirectoryState.FINALIZED

        return DataDirectoryState.ORIGINAL
