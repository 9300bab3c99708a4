"""Tests for catalog lookup, search and the dependency closures."""

from brewcatalog.domain.catalog import Catalog
from brewcatalog.domain.filters import Filter, FilterSet
from brewcatalog.domain.models import Package


def pkg(name, deps=(), dependents=(), installed=False, **fields):
    return Package(
        name=name,
        dependencies=list(deps),
        dependents=list(dependents),
        is_installed=installed,
        **fields,
    )


class TestLookup:
    def test_get_prefers_formula(self):
        catalog = Catalog([pkg("docker", is_cask=True), pkg("docker"), pkg("alpha")])

        assert [p.name for p in catalog] == ["alpha", "docker", "docker"]
        assert catalog.get("docker").is_cask is False
        assert catalog.get("docker", cask=True).is_cask is True
        assert catalog.get("missing") is None
        assert catalog.get("alpha", cask=True) is None

    def test_search(self):
        catalog = Catalog(
            [
                pkg("ripgrep", desc="fast grep", installed=True),
                pkg("grep", desc="GNU grep"),
                pkg("grepapp", desc="grep GUI", is_cask=True, installed=True),
            ]
        )
        assert [p.name for p in catalog.search(["grep"])] == ["grep", "grepapp", "ripgrep"]

        filters = FilterSet().enable(Filter.INSTALLED).enable(Filter.FORMULAE)
        assert [p.name for p in catalog.search(["grep"], filters)] == ["ripgrep"]
        assert [p.name for p in catalog.search([], FilterSet())] == ["grep", "grepapp", "ripgrep"]


class TestMissingDependencies:
    def test_installed_or_unknown_is_empty(self):
        catalog = Catalog([pkg("a", deps=["b"], installed=True), pkg("b")])
        assert catalog.missing_dependencies("a") == []
        assert catalog.missing_dependencies("nope") == []

    def test_transitive_through_uninstalled(self):
        catalog = Catalog([pkg("p", deps=["d"]), pkg("d", deps=["e"]), pkg("e")])
        assert sorted(catalog.missing_dependencies("p")) == ["d", "e"]

    def test_closure_through_installed_dependency(self):
        catalog = Catalog(
            [
                pkg("p", deps=["d"]),
                pkg("d", deps=["e", "f"], installed=True),
                pkg("e"),
                pkg("f", installed=True),
            ]
        )
        missing = catalog.missing_dependencies("p")
        assert "e" in missing
        assert "f" not in missing

    def test_cycle_terminates(self):
        catalog = Catalog([pkg("a", deps=["b"]), pkg("b", deps=["c"]), pkg("c", deps=["a"])])
        assert catalog.missing_dependencies("a") == ["b", "c"]

    def test_no_duplicates(self):
        catalog = Catalog([pkg("p", deps=["x", "y"]), pkg("x", deps=["z"]), pkg("y", deps=["z"]), pkg("z")])
        missing = catalog.missing_dependencies("p")
        assert sorted(missing) == ["x", "y", "z"]
        assert len(missing) == len(set(missing))


class TestInstalledDependents:
    def test_not_installed_is_empty(self):
        catalog = Catalog([pkg("lib", dependents=["app"]), pkg("app", deps=["lib"], installed=True)])
        assert catalog.installed_dependents("lib") == []

    def test_transitive(self):
        catalog = Catalog(
            [
                pkg("lib", dependents=["mid"], installed=True),
                pkg("mid", deps=["lib"], dependents=["app"], installed=True),
                pkg("app", deps=["mid"], installed=True),
            ]
        )
        assert sorted(catalog.installed_dependents("lib")) == ["app", "mid"]

    def test_closure_through_uninstalled_dependent(self):
        catalog = Catalog(
            [
                pkg("lib", dependents=["mid"], installed=True),
                pkg("mid", deps=["lib"], dependents=["app", "other"]),
                pkg("app", deps=["mid"], installed=True),
                pkg("other", deps=["mid"]),
            ]
        )
        dependents = catalog.installed_dependents("lib")
        assert "app" in dependents
        assert "other" not in dependents

    def test_cycle_terminates(self):
        catalog = Catalog(
            [
                pkg("a", dependents=["b"], installed=True),
                pkg("b", dependents=["a"], installed=True),
            ]
        )
        assert catalog.installed_dependents("a") == ["b"]


def test_self_dependency_terminates():
    catalog = Catalog([pkg("a", deps=["a", "b"]), pkg("b", deps=["b"])])
    assert catalog.missing_dependencies("a") == ["b"]
    assert catalog.missing_dependencies("b") == []


class TestCaskEdges:
    """A name shared by a formula and a cask resolves along the edge's own side."""

    def test_cask_dependency_walks_the_cask(self):
        catalog = Catalog(
            [
                pkg("app", deps=["tool"], is_cask=True, cask_dependencies=["tool"]),
                pkg("tool", installed=True),
                pkg("tool", deps=["helper"], is_cask=True, cask_dependencies=["helper"]),
                pkg("helper", is_cask=True),
            ]
        )
        assert catalog.missing_dependencies("app", cask=True) == ["tool", "helper"]

        app = catalog.get("app", cask=True)
        assert [(p.name, p.is_cask) for p in catalog.missing_dependency_packages(app)] == [
            ("tool", True),
            ("helper", True),
        ]

    def test_formula_dependency_of_a_cask_walks_the_formula(self):
        catalog = Catalog(
            [
                pkg("app", deps=["tool"], is_cask=True),
                pkg("tool", deps=["libtool"]),
                pkg("tool", is_cask=True, installed=True),
                pkg("libtool"),
            ]
        )
        assert catalog.missing_dependencies("app", cask=True) == ["tool", "libtool"]

    def test_cask_dependents_walk_the_cask(self):
        catalog = Catalog(
            [
                pkg("lib", dependents=["viewer"], cask_dependents=["viewer"], installed=True),
                pkg("viewer"),
                pkg("viewer", is_cask=True, dependents=["plugin"], cask_dependents=["plugin"]),
                pkg("plugin", is_cask=True, installed=True),
            ]
        )
        assert catalog.installed_dependents("lib") == ["viewer", "plugin"]

    def test_formula_and_cask_dependent_with_same_name(self):
        catalog = Catalog(
            [
                pkg("lib", dependents=["viewer"], cask_dependents=["viewer"], installed=True),
                pkg("viewer", deps=["lib"], dependents=["tool"], installed=True),
                pkg("viewer", is_cask=True, installed=True),
                pkg("tool", deps=["viewer"], installed=True),
            ]
        )
        assert catalog.installed_dependents("lib") == ["viewer", "tool"]


class TestShadowedName:
    def test_installed_record_wins_regardless_of_input_order(self):
        core = pkg("foo", tap="homebrew/core")
        fork = pkg("foo", tap="someone/tap", installed=True)

        for packages in ([core, fork], [fork, core]):
            catalog = Catalog(packages)
            assert catalog.get("foo") is fork
            assert len([p for p in catalog if p.name == "foo"]) == 2
