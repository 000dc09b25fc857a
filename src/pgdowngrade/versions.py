"""PostgreSQL major version parsing helpers."""

import re

from packaging import version

from pgdowngrade.errors import DowngradeError

_LEADING_VERSION = re.compile(r"\d+(\.\d+)*")


def parse_major_version(value: str) -> int:
    """Return the major component of a version string such as ``15.3`` or ``17``."""
    match = _LEADING_VERSION.match(value.strip())
    if not match:
        raise DowngradeError(f"Cannot parse a PostgreSQL version from '{value}'.")

    try:
        return version.Version(match.group(0)).major
    except version.InvalidVersion as exc:
        raise DowngradeError(f"Cannot parse a PostgreSQL version from '{value}': {exc}") from exc


def image_major_version(image_name: str) -> int:
    """Extract the major version from an image reference like ``postgresql:16.2-bookworm``."""
    reference = image_name.split("@", 1)[0]
    _, separator, tag = reference.rpartition(":")
    if not separator or "/" in tag or not tag:
        raise DowngradeError(f"Image '{image_name}' has no tag to derive a PostgreSQL version from.")
    return parse_major_version(tag)
