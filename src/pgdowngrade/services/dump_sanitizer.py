"""Rewrites pg_dumpall output so an older PostgreSQL major can replay it."""

import os
import re
import shutil
import tempfile
from dataclasses import dataclass
from typing import List, Optional, Pattern

from pgdowngrade.errors import FilesystemError


@dataclass(frozen=True)
class CompatibilityRule:
    """Syntax emitted by pg_dumpall starting at ``introduced_in``."""

    name: str
    introduced_in: int
    pattern: Pattern[str]
    replacement: str = ""

    def applies(self, current_major: Optional[int], target_major: Optional[int]) -> bool:
        if target_major is not None and target_major >= self.introduced_in:
            return False
        if current_major is not None and current_major < self.introduced_in:
            return False
        return True


class DumpSanitizer:
    """Strips statements and clauses the target version cannot parse."""

    RULES = (
        CompatibilityRule(
            name="locale_provider",
            introduced_in=15,
            pattern=re.compile(r"LOCALE_PROVIDER = \w+ "),
        ),
        CompatibilityRule(
            name="grant_inherit_option",
            introduced_in=16,
            pattern=re.compile(r" WITH INHERIT TRUE GRANTED BY \w+"),
        ),
        CompatibilityRule(
            name="transaction_timeout",
            introduced_in=17,
            pattern=re.compile(r"^SET transaction_timeout = 0;"),
        ),
    )

    def __init__(self, logger):
        self.logger = logger

    def rules_for(
        self, current_major: Optional[int], target_major: Optional[int]
    ) -> List[CompatibilityRule]:
        return [rule for rule in self.RULES if rule.applies(current_major, target_major)]

    def sanitize_line(self, line: str, rules: List[CompatibilityRule]) -> str:
        for rule in rules:
            line = rule.pattern.sub(rule.replacement, line)
        return line

    def sanitize(
        self,
        dump_path: str,
        current_major: Optional[int] = None,
        target_major: Optional[int] = None,
    ) -> int:
        """Rewrite ``dump_path`` in place and return the number of changed lines."""
        rules = self.rules_for(current_major, target_major)
        if not rules:
            self.logger.info("No dump rewrite needed from %s to %s.", current_major, target_major)
            return 0

        directory = os.path.dirname(dump_path) or "."
        fd, temp_path = tempfile.mkstemp(prefix=".sanitized-", suffix=".sql", dir=directory)
        changed = 0
        try:
            with open(
                dump_path, "r", encoding="utf-8", errors="surrogateescape", newline=""
            ) as src_file, os.fdopen(
                fd, "w", encoding="utf-8", errors="surrogateescape", newline=""
            ) as dst_file:
                for line in src_file:
                    rewritten = self.sanitize_line(line, rules)
                    if rewritten != line:
                        changed += 1
                    dst_file.write(rewritten)
            shutil.copymode(dump_path, temp_path)
            os.replace(temp_path, dump_path)
        except OSError as exc:
            raise FilesystemError(f"Could not sanitize dump {dump_path}: {exc}") from exc
        finally:
            if os.path.exists(temp_path):
                try:
                    os.remove(temp_path)
                except OSError:
                    pass

        self.logger.info(
            "Sanitized %s: %s line(s) changed by rules %s",
            dump_path,
            changed,
            ", ".join(rule.name for rule in rules),
        )
        return changed
