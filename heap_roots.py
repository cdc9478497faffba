"""
heap_roots.py

Root discovery for heap dumps.

The dump itself only receives types, modules and instances; these helpers
find them in the running interpreter:

- find_module: the one imported module matching a name
- module_types: classes defined in a module, nested classes included
- live_instances: gc-tracked objects of a given kind, as InstanceRoots
"""

from __future__ import annotations

import gc
import sys
from types import ModuleType
from typing import Any, Callable, Dict, List, Optional

from heap_dump import InstanceRoot


def find_module(name: str, modules: Optional[Dict[str, ModuleType]] = None) -> ModuleType:
    """Return the imported module named ``name``, or the single module whose
    name contains it.

    Static roots are only collected from the modules the caller picks, so
    statics defined elsewhere are not part of the dump.

    Args:
        name: Exact module name or a fragment of it
        modules: Module table to search (defaults to sys.modules)

    Raises:
        LookupError: If no module or more than one module matches
    """
    table = sys.modules if modules is None else modules
    module = table.get(name)
    if module is not None:
        return module
    matches = sorted(
        (mod_name for mod_name, mod in table.items() if mod is not None and name in mod_name)
    )
    if len(matches) != 1:
        raise LookupError(f"expected one module matching '{name}', found {len(matches)}: {matches[:5]}")
    return table[matches[0]]


def _nested_types(cls: type) -> List[type]:
    result: List[type] = []
    for value in vars(cls).values():
        if isinstance(value, type) and value.__qualname__ == f"{cls.__qualname__}.{value.__name__}":
            result.append(value)
            result.extend(_nested_types(value))
    return result


def module_types(module: ModuleType) -> List[type]:
    """Classes defined in ``module`` in definition order, each followed by
    the classes nested inside it. Imported classes are left out."""
    result: List[type] = []
    seen = set()
    for value in vars(module).values():
        if not isinstance(value, type) or value.__module__ != module.__name__:
            continue
        if "." in value.__qualname__ or id(value) in seen:
            continue
        for cls in [value] + _nested_types(value):
            if id(cls) not in seen:
                seen.add(id(cls))
                result.append(cls)
    return result


def default_label(value: Any) -> str:
    name = getattr(value, "name", None)
    if isinstance(name, str):
        return name
    return f"0x{id(value):x}"


def live_instances(
    kind: type,
    label: Callable[[Any], str] = default_label,
) -> List[InstanceRoot]:
    """Every live object tracked by the garbage collector that is an
    instance of ``kind``.

    Objects the collector does not track (instances of some builtin types)
    are not found.
    """
    return [
        InstanceRoot(obj, label(obj))
        for obj in gc.get_objects()
        if isinstance(obj, kind)
    ]
