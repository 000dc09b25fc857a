import pytest

from pgdowngrade.errors import DowngradeError
from pgdowngrade.versions import image_major_version, parse_major_version


@pytest.mark.parametrize(
    "image,expected",
    [
        ("ghcr.io/cloudnative-pg/postgresql:16.2-bookworm", 16),
        ("postgres:17", 17),
        ("postgres:15.4@sha256:0123abcd", 15),
        ("registry.local:5000/postgresql:14.11", 14),
    ],
)
def test_image_major_version(image, expected):
    assert image_major_version(image) == expected


def test_parse_major_version_rejects_non_numeric_tags():
    with pytest.raises(DowngradeError, match="Cannot parse"):
        parse_major_version("latest")


def test_image_without_tag_is_rejected():
    with pytest.raises(DowngradeError, match="no tag"):
        image_major_version("postgres")
