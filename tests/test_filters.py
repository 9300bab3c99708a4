"""Tests for the bitmask filter engine."""

import pytest

from brewcatalog.domain.errors import FilterConflictError, UnknownFilterError
from brewcatalog.domain.filters import Filter, FilterSet, parse_filter
from brewcatalog.domain.models import Package


class TestFilterSet:
    def test_enable(self):
        fs = FilterSet().enable(Filter.FORMULAE)
        assert fs.is_enabled(Filter.FORMULAE)

    def test_enable_mutually_exclusive(self):
        fs = FilterSet().enable(Filter.FORMULAE).enable(Filter.CASKS)
        assert not fs.is_enabled(Filter.FORMULAE)
        assert fs.is_enabled(Filter.CASKS)

    def test_enable_clears_whole_group(self):
        fs = FilterSet().enable(Filter.OUTDATED).enable(Filter.ACTIVE)
        assert fs.split() == [Filter.ACTIVE]

    def test_enable_independent(self):
        fs = FilterSet().enable(Filter.FORMULAE).enable(Filter.INSTALLED)
        assert fs.is_enabled(Filter.FORMULAE)
        assert fs.is_enabled(Filter.INSTALLED)

    def test_disable(self):
        fs = FilterSet().enable(Filter.OUTDATED).disable(Filter.OUTDATED)
        assert not fs.is_enabled(Filter.OUTDATED)
        assert not fs

    def test_toggle(self):
        fs = FilterSet().toggle(Filter.ACTIVE)
        assert fs.is_enabled(Filter.ACTIVE)
        fs.toggle(Filter.ACTIVE)
        assert not fs.is_enabled(Filter.ACTIVE)

    def test_toggle_respects_groups(self):
        fs = FilterSet().enable(Filter.INSTALLED).toggle(Filter.OUTDATED)
        assert fs.split() == [Filter.OUTDATED]

    def test_reset(self):
        fs = FilterSet().enable(Filter.CASKS).enable(Filter.INSTALLED).reset()
        assert fs.mask == 0

    def test_split_in_bit_order(self):
        fs = FilterSet().enable(Filter.INSTALLED).enable(Filter.FORMULAE)
        assert fs.split() == [Filter.FORMULAE, Filter.INSTALLED]

    def test_str(self):
        assert Filter.FORMULAE.label == "Formulae"
        assert Filter(0).label == "Unknown"
        assert str(FilterSet()) == "None"
        assert str(FilterSet().enable(Filter.CASKS).enable(Filter.INSTALLED)) == "Casks & Installed"


class TestParse:
    def test_parse_names(self):
        fs = FilterSet.parse(["Installed", "Formulae"])
        assert fs == FilterSet().enable(Filter.FORMULAE).enable(Filter.INSTALLED)
        assert fs.names() == ["Formulae", "Installed"]

    def test_parse_empty(self):
        assert FilterSet.parse([]).mask == 0

    def test_unknown_name(self):
        with pytest.raises(UnknownFilterError):
            FilterSet.parse(["Formulae", "Bogus"])
        with pytest.raises(UnknownFilterError):
            parse_filter("installed")

    def test_conflict_names_members_and_group(self):
        with pytest.raises(FilterConflictError) as exc_info:
            FilterSet.parse(["Outdated", "Formulae", "Installed"])

        err = exc_info.value
        assert err.members == ["Installed", "Outdated"]
        assert err.group == ["Installed", "Outdated", "Expl. Installed", "Active"]
        assert "Installed & Outdated" in str(err)

    def test_conflict_is_a_value_error(self):
        with pytest.raises(ValueError):
            FilterSet.parse(["Formulae", "Casks"])


class TestMatching:
    @pytest.fixture
    def packages(self):
        return [
            Package(name="formula-installed", is_installed=True),
            Package(name="formula-dep", is_installed=True, installed_as_dependency=True),
            Package(name="formula-outdated", is_installed=True, is_outdated=True),
            Package(name="formula-deprecated", is_deprecated=True),
            Package(name="cask-installed", is_cask=True, is_installed=True),
            Package(name="cask-disabled", is_cask=True, is_disabled=True),
        ]

    @pytest.mark.parametrize(
        "names, expected",
        [
            ([], ["formula-installed", "formula-dep", "formula-outdated", "formula-deprecated", "cask-installed", "cask-disabled"]),
            (["Formulae"], ["formula-installed", "formula-dep", "formula-outdated", "formula-deprecated"]),
            (["Casks", "Installed"], ["cask-installed"]),
            (["Outdated"], ["formula-outdated"]),
            (["Expl. Installed"], ["formula-installed", "formula-outdated", "cask-installed"]),
            (["Formulae", "Active"], ["formula-installed", "formula-dep", "formula-outdated"]),
        ],
    )
    def test_apply(self, packages, names, expected):
        assert [p.name for p in FilterSet.parse(names).apply(packages)] == expected
