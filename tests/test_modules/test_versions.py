"""Tests for version parsing and comparison."""

import pytest

from genoring_cli.errors import InvalidVersion
from genoring_cli.modules.versions import Ordering, Version, compare, is_upgrade, satisfies


@pytest.mark.unit
class TestVersionParse:
    """Test Version.parse."""

    def test_major_only(self):
        version = Version.parse("3")
        assert version == Version(3, 0, "")
        assert str(version) == "3.0"

    def test_major_minor_stability(self):
        version = Version.parse("1.2beta")
        assert version.major == 1
        assert version.minor == 2
        assert version.stability == "beta"

    def test_yaml_scalars(self):
        """Descriptors written as YAML numbers still parse."""
        assert Version.parse(1.5) == Version(1, 5)
        assert Version.parse(2) == Version(2, 0)

    def test_stability_is_case_insensitive(self):
        assert Version.parse("1.0DEV").stability == "dev"

    @pytest.mark.parametrize("value", ["", "abc", "1.2.3", "v1.0", "1.0rc", None, True])
    def test_invalid(self, value):
        with pytest.raises(InvalidVersion):
            Version.parse(value)


@pytest.mark.unit
class TestCompare:
    """Test version ordering."""

    def test_missing_minor_is_zero(self):
        assert compare("1", "1.0") == Ordering.EQUAL

    def test_minor_is_numeric(self):
        assert compare("1.10", "1.9") == Ordering.GREATER

    def test_stability_order(self):
        """dev < alpha < beta < stable for the same major.minor."""
        ordered = ["1.0dev", "1.0alpha", "1.0beta", "1.0"]
        for lower, higher in zip(ordered, ordered[1:]):
            assert compare(lower, higher) == Ordering.LESS
            assert compare(higher, lower) == Ordering.GREATER

    def test_major_wins_over_stability(self):
        assert compare("2.0dev", "1.9") == Ordering.GREATER

    def test_invalid_operand(self):
        with pytest.raises(InvalidVersion):
            compare("1.0", "one")


@pytest.mark.unit
class TestSatisfies:
    """Test version bounds."""

    @pytest.mark.parametrize(
        "version,operator,bound,expected",
        [
            ("2.1", ">=", "2.0", True),
            ("2.0", ">", "2.0", False),
            ("1.9", "<", "2.0", True),
            ("2.0", "<=", "2.0", True),
            ("2.0beta", ">=", "2.0", False),
            ("2.0", "=", "2", True),
            ("2.0", "", "2.0", True),
        ],
    )
    def test_bounds(self, version, operator, bound, expected):
        assert satisfies(version, operator, bound) is expected

    def test_no_bound(self):
        assert satisfies("0.1dev", None, None) is True

    def test_unknown_operator(self):
        with pytest.raises(ValueError):
            satisfies("1.0", "~=", "1.0")


@pytest.mark.unit
class TestIsUpgrade:
    """Test upgrade detection."""

    def test_newer_version(self):
        assert is_upgrade("1.0", "1.1") is True

    def test_same_or_older_version(self):
        assert is_upgrade("1.1", "1.1") is False
        assert is_upgrade("1.1", "1.0") is False

    def test_stable_after_beta(self):
        assert is_upgrade("2.0beta", "2.0") is True

    def test_no_installed_version(self):
        assert is_upgrade("", "1.0") is True
