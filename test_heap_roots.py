"""
test_heap_roots.py

Unit tests for root discovery.
"""

import types

import pytest
from heap_dump import InstanceRoot
from heap_roots import default_label, find_module, live_instances, module_types


class Outer:
    class Inner:
        pass


class Other:
    pass


class Tracked:
    def __init__(self, name=None):
        self.name = name


def make_module(name):
    module = types.ModuleType(name)
    module.Imported = Other

    class First:
        class Nested:
            pass

    class Second:
        pass

    for cls in (First, First.Nested, Second):
        cls.__module__ = name
    First.__qualname__ = "First"
    First.Nested.__qualname__ = "First.Nested"
    Second.__qualname__ = "Second"
    module.First = First
    module.Second = Second
    return module


# ============================================================
# find_module Tests
# ============================================================

class TestFindModule:
    """Tests for find_module."""

    @pytest.fixture
    def table(self):
        return {
            "game": types.ModuleType("game"),
            "game.world": types.ModuleType("game.world"),
            "game.player": types.ModuleType("game.player"),
            "broken": None,
        }

    def test_exact_name(self, table):
        """Test an exact match wins over fragments."""
        assert find_module("game", table) is table["game"]

    def test_fragment(self, table):
        """Test a fragment matching one module."""
        assert find_module("world", table) is table["game.world"]

    def test_ambiguous(self, table):
        """Test a fragment matching several modules."""
        with pytest.raises(LookupError):
            find_module("game.", table)

    def test_missing(self, table):
        """Test a name matching nothing."""
        with pytest.raises(LookupError):
            find_module("physics", table)

    def test_sys_modules_default(self):
        """Test the default table is sys.modules."""
        assert find_module("heap_roots").__name__ == "heap_roots"


# ============================================================
# module_types Tests
# ============================================================

class TestModuleTypes:
    """Tests for module_types."""

    def test_definition_order_with_nested(self):
        """Test classes are followed by their nested classes."""
        module = make_module("fake_level")
        names = [cls.__qualname__ for cls in module_types(module)]
        assert names == ["First", "First.Nested", "Second"]

    def test_imported_classes_excluded(self):
        """Test classes defined elsewhere are left out."""
        module = make_module("fake_level")
        assert Other not in module_types(module)

    def test_this_module(self):
        """Test on a real module."""
        import test_heap_roots

        found = module_types(test_heap_roots)
        assert found[:3] == [Outer, Outer.Inner, Other]


# ============================================================
# Instance Tests
# ============================================================

class TestLiveInstances:
    """Tests for live_instances and labels."""

    def test_default_label(self):
        """Test name attribute or address labels."""
        assert default_label(Tracked("player")) == "player"
        unnamed = Tracked()
        assert default_label(unnamed) == f"0x{id(unnamed):x}"

    def test_finds_live_objects(self):
        """Test live objects of a kind are found."""
        keep = [Tracked("a"), Tracked("b")]
        roots = live_instances(Tracked)
        assert all(isinstance(root, InstanceRoot) for root in roots)
        found = [root.value for root in roots]
        assert all(any(obj is item for item in found) for obj in keep)
        labels = {root.label for root in roots}
        assert {"a", "b"} <= labels

    def test_custom_label(self):
        """Test a custom label function."""
        keep = Tracked("c")
        roots = live_instances(Tracked, label=lambda obj: "tracked")
        assert any(root.value is keep for root in roots)
        assert {root.label for root in roots} == {"tracked"}
