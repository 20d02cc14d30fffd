"""Tests for dependency resolution and service ordering."""

from pathlib import Path

import pytest

from conftest import make_module, write_fragment
from genoring_cli.errors import (
    CompositionError,
    ConflictingModules,
    DependencyCycle,
    UnknownModule,
    UnsatisfiedDependency,
    VersionMismatch,
)
from genoring_cli.modules.registry import ModuleRegistry
from genoring_cli.modules.resolver import (
    DependencyResolver,
    cycle_members,
    stable_topological_sort,
)


def resolve(modules_dir: Path, active, profile=None, candidates=None, alternatives=None):
    registry = ModuleRegistry([modules_dir])
    return DependencyResolver(registry, profile, alternatives).resolve(active, candidates)


@pytest.mark.unit
class TestTopologicalSort:
    """Test the deterministic Kahn sort."""

    def test_ties_broken_by_key(self):
        nodes = {"c": (0, "c"), "a": (2, "a"), "b": (1, "b")}
        ordered, remaining = stable_topological_sort(nodes, {})
        assert ordered == ["c", "b", "a"]
        assert remaining == []

    def test_edges_respected(self):
        nodes = {"a": (0,), "b": (1,), "c": (2,)}
        ordered, _ = stable_topological_sort(nodes, {"c": ["a"]})
        assert ordered == ["b", "c", "a"]

    def test_cycle_left_over(self):
        nodes = {"a": (0,), "b": (1,), "c": (2,), "d": (3,)}
        edges = {"a": ["b"], "b": ["a"], "c": ["d"], "d": []}
        ordered, remaining = stable_topological_sort(nodes, edges)
        assert ordered == ["c", "d"]
        assert sorted(remaining) == ["a", "b"]
        assert cycle_members(remaining, edges) == {"a", "b"}

    def test_cycle_members_drops_tails(self):
        edges = {"a": ["b"], "b": ["a", "c"], "c": []}
        assert cycle_members(["a", "b", "c"], edges) == {"a", "b"}


@pytest.mark.unit
class TestRequirements:
    """Test REQUIRES and CONFLICTS validation."""

    def test_satisfied(self, db_and_web: Path):
        resolution = resolve(db_and_web, ["db", "web"])

        assert resolution.modules == ["db", "web"]
        assert resolution.service_names == ["genoring-db", "genoring-web"]
        assert resolution.added == []

    def test_missing_requirement(self, db_and_web: Path):
        with pytest.raises(UnsatisfiedDependency) as exc_info:
            resolve(db_and_web, ["web"])
        assert exc_info.value.module == "web"
        assert exc_info.value.missing == ["db"]
        assert "db" in str(exc_info.value)

    def test_unknown_active_module(self, db_and_web: Path):
        with pytest.raises(UnknownModule):
            resolve(db_and_web, ["web", "nope"])

    def test_version_mismatch(self, modules_dir: Path):
        make_module(modules_dir, "db", version="0.9")
        make_module(modules_dir, "web", dependencies=["REQUIRES db >= 1.0"])

        with pytest.raises(VersionMismatch) as exc_info:
            resolve(modules_dir, ["db", "web"])
        assert exc_info.value.target == "db"
        assert exc_info.value.required == ">= 1.0"
        assert exc_info.value.actual == "0.9"

    def test_or_requirement(self, modules_dir: Path):
        make_module(modules_dir, "postgres")
        make_module(modules_dir, "mariadb")
        make_module(modules_dir, "app", dependencies=["REQUIRES postgres OR mariadb"])

        assert resolve(modules_dir, ["app", "mariadb"]).modules == ["mariadb", "app"]
        with pytest.raises(UnsatisfiedDependency) as exc_info:
            resolve(modules_dir, ["app"])
        assert exc_info.value.missing == ["postgres", "mariadb"]

    def test_or_with_out_of_bounds_branch(self, modules_dir: Path):
        """A satisfied OR group still warns about an enabled out-of-bounds branch."""
        make_module(modules_dir, "postgres", version="12")
        make_module(modules_dir, "mariadb")
        make_module(modules_dir, "app", dependencies=["REQUIRES postgres >= 13 OR mariadb"])

        resolution = resolve(modules_dir, ["app", "mariadb", "postgres"])
        assert len(resolution.warnings) == 1
        assert "postgres >= 13 OR mariadb" in resolution.warnings[0]

        with pytest.raises(VersionMismatch):
            resolve(modules_dir, ["app", "postgres"])

    def test_required_element(self, modules_dir: Path):
        make_module(modules_dir, "db", services={"genoring-db": {"image": "postgres"}})
        make_module(modules_dir, "app", dependencies=["REQUIRES db genoring-mysql"])

        with pytest.raises(UnsatisfiedDependency, match="genoring-mysql"):
            resolve(modules_dir, ["app", "db"])

    def test_volume_requirement(self, modules_dir: Path):
        make_module(modules_dir, "storage", volumes={"genoring-data": {}})
        make_module(modules_dir, "app", volume_dependencies=["REQUIRES storage genoring-data"])
        make_module(modules_dir, "other", volume_dependencies=["REQUIRES storage genoring-logs"])

        assert resolve(modules_dir, ["app", "storage"]).modules == ["storage", "app"]
        with pytest.raises(UnsatisfiedDependency):
            resolve(modules_dir, ["other", "storage"])

    def test_profile_scoped_requirement(self, modules_dir: Path):
        make_module(modules_dir, "mail")
        make_module(modules_dir, "app", dependencies=["prod: REQUIRES mail"])

        assert resolve(modules_dir, ["app"], profile="dev").modules == ["app"]
        with pytest.raises(UnsatisfiedDependency):
            resolve(modules_dir, ["app"], profile="prod")
        # Validation without a profile applies every constraint.
        with pytest.raises(UnsatisfiedDependency):
            resolve(modules_dir, ["app"])

    def test_auto_include_candidates(self, modules_dir: Path):
        make_module(modules_dir, "base")
        make_module(modules_dir, "db", dependencies=["REQUIRES base"])
        make_module(modules_dir, "web", dependencies=["REQUIRES db"])

        resolution = resolve(modules_dir, ["web"], candidates=["base", "db"])
        assert resolution.added == ["db", "base"]
        assert resolution.modules == ["base", "db", "web"]

    def test_conflict(self, modules_dir: Path):
        make_module(modules_dir, "apache")
        make_module(modules_dir, "nginx", dependencies=["CONFLICTS apache"])

        with pytest.raises(ConflictingModules) as exc_info:
            resolve(modules_dir, ["apache", "nginx"])
        assert exc_info.value.module == "nginx"
        assert exc_info.value.other == "apache"
        assert resolve(modules_dir, ["nginx"]).modules == ["nginx"]

    def test_conflict_with_version_bound(self, modules_dir: Path):
        make_module(modules_dir, "legacy", version="1.0")
        make_module(modules_dir, "app", dependencies=["CONFLICTS legacy < 2.0"])

        with pytest.raises(ConflictingModules):
            resolve(modules_dir, ["app", "legacy"])


@pytest.mark.unit
class TestServiceOrdering:
    """Test BEFORE/AFTER ordering."""

    def test_after_puts_target_first(self, modules_dir: Path):
        make_module(modules_dir, "aaa", services={"genoring-a": {}}, dependencies=["AFTER zzz"])
        make_module(modules_dir, "zzz", services={"genoring-z": {}})

        resolution = resolve(modules_dir, ["aaa", "zzz"])
        assert resolution.service_names == ["genoring-z", "genoring-a"]
        assert resolution.predecessors["genoring-a"] == ["genoring-z"]
        assert resolution.modules == ["zzz", "aaa"]

    def test_before_puts_source_first(self, modules_dir: Path):
        make_module(modules_dir, "aaa", services={"genoring-a": {}})
        make_module(modules_dir, "zzz", services={"genoring-z": {}}, dependencies=["BEFORE aaa"])

        resolution = resolve(modules_dir, ["aaa", "zzz"])
        assert resolution.service_names == ["genoring-z", "genoring-a"]

    def test_declaration_order_breaks_ties(self, modules_dir: Path):
        make_module(
            modules_dir,
            "app",
            services={"genoring-web": {}, "genoring-cron": {}, "genoring-api": {}},
        )
        resolution = resolve(modules_dir, ["app"])
        assert resolution.service_names == ["genoring-web", "genoring-cron", "genoring-api"]

    def test_inactive_target_ignored(self, modules_dir: Path):
        make_module(modules_dir, "aaa", services={"genoring-a": {}}, dependencies=["AFTER zzz"])
        make_module(modules_dir, "zzz", services={"genoring-z": {}})

        assert resolve(modules_dir, ["aaa"]).service_names == ["genoring-a"]

    def test_service_level_edge(self, modules_dir: Path):
        make_module(
            modules_dir,
            "app",
            services={"genoring-web": {}, "genoring-worker": {}},
            dependencies=["genoring-web AFTER db genoring-db"],
        )
        make_module(modules_dir, "db", services={"genoring-db": {}})

        resolution = resolve(modules_dir, ["app", "db"])
        names = resolution.service_names
        assert names.index("genoring-db") < names.index("genoring-web")
        assert resolution.predecessors["genoring-worker"] == []

    def test_cycle_names_both_modules(self, modules_dir: Path):
        make_module(modules_dir, "aaa", services={"genoring-a": {}}, dependencies=["BEFORE bbb"])
        make_module(modules_dir, "bbb", services={"genoring-b": {}}, dependencies=["BEFORE aaa"])

        with pytest.raises(DependencyCycle) as exc_info:
            resolve(modules_dir, ["aaa", "bbb"])
        assert exc_info.value.modules == ["aaa", "bbb"]
        assert "aaa" in str(exc_info.value)
        assert "bbb" in str(exc_info.value)

    def test_requirement_cycle_is_ordered(self, modules_dir: Path):
        """Mutual REQUIRES is allowed and yields a stable hook order."""
        make_module(modules_dir, "aaa", dependencies=["REQUIRES bbb"])
        make_module(modules_dir, "bbb", dependencies=["REQUIRES aaa"])

        first = resolve(modules_dir, ["aaa", "bbb"]).modules
        second = resolve(modules_dir, ["bbb", "aaa"]).modules
        assert first == second == ["aaa", "bbb"]

    def test_deterministic(self, db_and_web: Path):
        first = resolve(db_and_web, ["web", "db"])
        second = resolve(db_and_web, ["db", "web"])
        assert first.modules == second.modules
        assert first.service_names == second.service_names


@pytest.mark.unit
class TestAlternatives:
    """Test service alternatives."""

    @pytest.fixture
    def db_with_alternative(self, modules_dir: Path) -> Path:
        module_dir = make_module(
            modules_dir,
            "db",
            services={"genoring-db": {"image": "postgres"}, "genoring-backup": {"image": "cron"}},
            alternatives={
                "mysql": {
                    "substitute": {"genoring-db": "genoring-mysql"},
                    "add": ["genoring-admin"],
                    "remove": ["genoring-backup"],
                }
            },
        )
        write_fragment(module_dir / "services" / "alt" / "genoring-mysql.yml", {"image": "mysql"})
        write_fragment(module_dir / "services" / "alt" / "genoring-admin.yml", {"image": "adminer"})
        return modules_dir

    def test_alternative_applied(self, db_with_alternative: Path):
        resolution = resolve(db_with_alternative, ["db"], alternatives={"db": ["mysql"]})

        assert resolution.service_names == ["genoring-db", "genoring-admin"]
        db_service = resolution.services[0]
        assert db_service.module == "db"
        assert db_service.fragment.payload == {"image": "mysql"}
        assert [a.name for a in resolution.alternatives["db"]] == ["mysql"]

    def test_alternative_not_enabled(self, db_with_alternative: Path):
        resolution = resolve(db_with_alternative, ["db"])
        assert resolution.service_names == ["genoring-db", "genoring-backup"]
        assert resolution.services[0].fragment.payload == {"image": "postgres"}

    def test_added_service_collision(self, db_with_alternative: Path):
        make_module(db_with_alternative, "admin", services={"genoring-admin": {"image": "x"}})
        with pytest.raises(CompositionError):
            resolve(db_with_alternative, ["db", "admin"], alternatives={"db": ["mysql"]})
