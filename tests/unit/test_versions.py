import logging

import pytest

from netspec.versions import VersionChange, at_least, at_most, compare, parse_version


@pytest.mark.parametrize("value", ["4.14.0", "asdf", "", "v1", "4.7.0-0.ci-2021-01-16-102811"])
def test_compare_identical_strings_is_same(value: str):
    assert compare(value, value) is VersionChange.SAME


def test_compare_orders_patch_versions():
    assert compare("1.2.3", "1.2.4") is VersionChange.UPGRADE
    assert compare("1.2.4", "1.2.3") is VersionChange.DOWNGRADE


def test_compare_ignores_build_suffix_for_ordering():
    ci = "4.7.0-0.ci-2021-01-16-102811"

    assert compare("4.6.5", ci) is VersionChange.UPGRADE
    assert compare(ci, "4.6.5") is VersionChange.DOWNGRADE


@pytest.mark.parametrize(
    "a, b",
    [("1.0.0", "2.0.0"), ("4.13", "4.14"), ("v4.14.1", "4.14.2"), ("4.14.0-rc.1", "4.14.0")],
)
def test_compare_is_antisymmetric(a: str, b: str):
    assert compare(a, b) is VersionChange.UPGRADE
    assert compare(b, a) is VersionChange.DOWNGRADE


@pytest.mark.parametrize("a, b", [("asdf", "fdsa"), ("1.2.3", "asdf"), ("", "4.14.0")])
def test_compare_unknown_is_symmetric(a: str, b: str):
    assert compare(a, b) is VersionChange.UNKNOWN
    assert compare(b, a) is VersionChange.UNKNOWN


def test_thresholds_ignore_patch_and_suffix():
    version = "4.14.0-0.nightly-2023-06-01-latest"

    assert at_least(version, 4, 14)
    assert not at_least(version, 4, 15)
    assert at_most(version, 4, 14)
    assert not at_most(version, 4, 13)


def test_thresholds_accept_v_prefix_and_short_versions():
    assert at_least("v2.11", 2, 11)
    assert not at_least("v2.10", 2, 11)
    assert at_most("2.10", 2, 11)


def test_thresholds_fail_closed_and_log(caplog):
    with caplog.at_level(logging.ERROR, logger="netspec.versions"):
        assert at_least("garbage", 0, 0) is False
        assert at_most("garbage", 99, 0) is False

    assert "failed to parse version" in caplog.text


def test_parse_version_distinguishes_unparseable():
    assert parse_version("not a version") is None
    parsed = parse_version("4.14")
    assert parsed is not None
    assert (parsed.major, parsed.minor, parsed.patch) == (4, 14, 0)
