"""Tests for the versions library."""

import pytest
import semver

from kargo_core.versions import Constraint, parse_version


@pytest.mark.parametrize(
    ("raw", "expected"),
    [
        ("1.2.3", semver.Version(1, 2, 3)),
        ("v1.2.3", semver.Version(1, 2, 3)),
        ("1.2", semver.Version(1, 2, 0)),
        ("v2", semver.Version(2, 0, 0)),
        ("1.0.0-rc.1", semver.Version(1, 0, 0, prerelease="rc.1")),
        ("1.0.0+build.5", semver.Version(1, 0, 0, build="build.5")),
    ],
)
def test_parse_version(raw: str, expected: semver.Version) -> None:
    """Test lenient parsing of semantic versions."""
    version = parse_version(raw)
    assert version is not None
    assert str(version) == str(expected)


@pytest.mark.parametrize(
    "raw",
    ["latest", "", "1.2.3.4", "01.2.3", "main-abc123", "v"],
)
def test_parse_invalid_version(raw: str) -> None:
    """Test strings that are not semantic versions."""
    assert parse_version(raw) is None


@pytest.mark.parametrize(
    ("constraint", "version", "expected"),
    [
        ("1.2.3", "1.2.3", True),
        ("1.2.3", "1.2.4", False),
        ("=1.2.3", "v1.2.3", True),
        ("!=1.2.3", "1.2.4", True),
        ("!=1.2.3", "1.2.3", False),
        (">1.2.3", "1.2.4", True),
        (">1.2.3", "1.2.3", False),
        (">=1.2.3", "1.2.3", True),
        ("<2.0.0", "1.9.9", True),
        ("<2.0.0", "2.0.0", False),
        ("<=2.0.0", "2.0.0", True),
        (">= 1.2.3, < 2.0.0", "1.5.0", True),
        (">= 1.2.3, < 2.0.0", "2.1.0", False),
        (">=1.2.3 <2.0.0", "1.2.2", False),
        ("^1.2", "1.9.0", True),
        ("^1.2", "2.0.0", False),
        ("^1.2", "1.1.0", False),
        ("^0.2.3", "0.2.9", True),
        ("^0.2.3", "0.3.0", False),
        ("^0.0.3", "0.0.4", False),
        ("~1.2.3", "1.2.9", True),
        ("~1.2.3", "1.3.0", False),
        ("~>1.2", "1.2.5", True),
        ("~1", "1.9.0", True),
        ("~1", "2.0.0", False),
        ("1.2.x", "1.2.7", True),
        ("1.2.x", "1.3.0", False),
        ("1.x", "1.99.0", True),
        ("*", "3.0.0", True),
        ("1.0.0 - 1.4.0", "1.4.0", True),
        ("1.0.0 - 1.4.0", "1.4.1", False),
        ("1.0.0 - 1.4", "1.4.9", True),
        ("^1.0 || ^3.0", "3.1.0", True),
        ("^1.0 || ^3.0", "2.1.0", False),
        (">1.x", "2.0.0", True),
        (">1.x", "1.9.0", False),
        ("<=1.2", "1.2.9", True),
    ],
)
def test_constraint_check(constraint: str, version: str, expected: bool) -> None:
    """Test matching versions against constraints."""
    parsed = parse_version(version)
    assert parsed is not None
    assert Constraint.parse(constraint).check(parsed) is expected


def test_prerelease_requires_prerelease_constraint() -> None:
    """Test pre-releases only match constraints naming a pre-release."""
    prerelease = parse_version("1.3.0-rc.1")
    assert prerelease is not None
    assert not Constraint.parse(">=1.2.0").check(prerelease)
    assert Constraint.parse(">=1.3.0-rc.0").check(prerelease)
    assert Constraint.parse(">=1.3.0-rc.0 || <1.0.0").check(prerelease)


@pytest.mark.parametrize(
    "constraint",
    ["", "   ", ">=", "not-a-version", ">= 1.2.3, <", "1.2.3 ||", "^x.1-rc.1"],
)
def test_invalid_constraint(constraint: str) -> None:
    """Test malformed constraints are rejected."""
    with pytest.raises(ValueError):
        Constraint.parse(constraint)


def test_constraint_str() -> None:
    """Test the raw constraint is kept for display."""
    constraint = Constraint.parse("^1.0")
    assert str(constraint) == "^1.0"
    assert repr(constraint) == "Constraint('^1.0')"
