"""
heap_types.py

Type descriptors and native layout sizes for the heap dump.

This module provides:
- Display names for classes, generic aliases and nested classes
- Instance and static field enumeration along the MRO
- Native layout sizes for primitives, enums and ctypes aggregates
- Array shape detection (dimensions, element kind, element size)
- TypeRegistry caching one TypeDescriptor per class

Example:
    >>> from heap_types import format_name, all_instance_fields
    >>> from typing import Dict, List
    >>>
    >>> format_name(Dict[str, List[int]])
    'dict(str, list(int))'
    >>> [f.name for f in all_instance_fields(MyClass)]
    ['base_field', 'derived_field']
"""

from __future__ import annotations

import __future__
import array
import collections
import ctypes
import enum
import inspect
import struct
import sys
import types
import typing
from dataclasses import dataclass, field
from typing import Any, Dict, Iterator, List, Optional, Tuple


class HeapDumpError(Exception):
    """Base class for heap dump failures."""


class LayoutError(HeapDumpError):
    """Raised when the native layout size of a type cannot be computed."""


# ============================================================
#  Type names
# ============================================================

_UNSAFE_NAME_CHARS = str.maketrans({"<": "(", ">": ")"})


def _clean(name: str) -> str:
    return name.translate(_UNSAFE_NAME_CHARS)


def declaring_type(cls: type) -> Optional[type]:
    """Return the class a nested class is defined in, or None.

    Classes defined inside functions (``f.<locals>.C``) have no declaring
    type.
    """
    parts = getattr(cls, "__qualname__", "").split(".")
    if len(parts) < 2 or "<locals>" in parts:
        return None
    owner: Any = sys.modules.get(getattr(cls, "__module__", ""))
    for part in parts[:-1]:
        owner = getattr(owner, part, None)
        if owner is None:
            return None
    return owner if isinstance(owner, type) else None


def is_open_generic(cls: type) -> bool:
    """True for generic classes whose type parameters are still unbound."""
    params = getattr(cls, "__parameters__", ()) if isinstance(cls, type) else ()
    return isinstance(params, tuple) and bool(params)


def is_enum_type(cls: Any) -> bool:
    return isinstance(cls, type) and issubclass(cls, enum.Enum)


def format_name(tp: Any) -> str:
    """Render a readable type name.

    Angle brackets become parentheses, generic arguments are appended in
    parentheses (each formatted recursively) and nested classes are
    prefixed with their declaring class.

    Args:
        tp: A class, a typing alias, a TypeVar, a forward reference string
            or None

    Returns:
        The formatted name
    """
    if tp is None or tp is type(None):
        return "None"
    if tp is Ellipsis:
        return "..."
    if isinstance(tp, str):
        return _clean(tp)
    if isinstance(tp, typing.ForwardRef):
        return _clean(tp.__forward_arg__)
    if isinstance(tp, (list, tuple)):
        return "[" + ", ".join(format_name(arg) for arg in tp) + "]"
    if isinstance(tp, typing.TypeVar):
        return _clean(tp.__name__)

    origin = typing.get_origin(tp)
    if origin is not None:
        return _format_generic(origin, typing.get_args(tp))

    if not isinstance(tp, type):
        name = getattr(tp, "_name", None) or getattr(tp, "__name__", None) or repr(tp)
        return _clean(str(name))

    if is_open_generic(tp):
        return _format_generic(tp, tp.__parameters__)
    return _format_generic(tp, ())


def _format_generic(origin: Any, args: Tuple[Any, ...]) -> str:
    if origin is types.UnionType:
        # int | None and Optional[int] name the same type
        name = "Union"
    elif isinstance(origin, type):
        name = _clean(origin.__name__)
    else:
        name = format_name(origin)
    if args:
        name += "(" + ", ".join(format_name(arg) for arg in args) + ")"
    owner = declaring_type(origin) if isinstance(origin, type) else None
    if owner is not None:
        name = format_name(owner) + "." + name
    return name


def runtime_type(value: Any) -> Any:
    """Type of a value, keeping the parameterisation of generic instances.

    The parameterisation is read from the instance ``__dict__`` only, so
    proxies with a custom ``__getattr__`` are never asked for it.
    """
    if isinstance(value, type):
        return type(value)
    try:
        instance_dict = object.__getattribute__(value, "__dict__")
    except AttributeError:
        return type(value)
    orig = instance_dict.get("__orig_class__") if isinstance(instance_dict, dict) else None
    return orig if orig is not None else type(value)


# ============================================================
#  Field descriptors
# ============================================================

@dataclass(frozen=True)
class FieldDescriptor:
    """Describes one field of a class.

    Attributes:
        declaring_type: Class (or module, for module variables) declaring
            the field
        field_type: Declared type (annotation), ``object`` when undeclared
        name: Attribute name as stored (private names are mangled)
        is_static: True for class-level (static) fields and module variables
    """
    declaring_type: Any
    field_type: Any
    name: str
    is_static: bool = False

    def get_value(self, target: Any = None) -> Any:
        """Read the field from an instance (or from its owner when static).

        Raises:
            AttributeError: If the field holds no value (e.g. an unset slot)
        """
        if self.is_static:
            return vars(self.declaring_type)[self.name]
        instance_dict = getattr(target, "__dict__", None)
        if isinstance(instance_dict, dict) and self.name in instance_dict:
            return instance_dict[self.name]
        return getattr(target, self.name)


def _is_class_var(annotation: Any) -> bool:
    if isinstance(annotation, str):
        return annotation.startswith(("ClassVar", "typing.ClassVar"))
    return annotation is typing.ClassVar or typing.get_origin(annotation) is typing.ClassVar


def _own_annotations(cls: type) -> Dict[str, Any]:
    try:
        raw = dict(inspect.get_annotations(cls))
    except Exception:
        # deferred annotations naming undefined types, or a broken __annotations__
        raw = {}
    try:
        hints = typing.get_type_hints(cls)
    except Exception:
        # unresolvable forward references keep their string form
        hints = {}
    return {name: hints.get(name, annotation) for name, annotation in raw.items()}


def _mangle(cls: type, name: str) -> str:
    if name.startswith("__") and not name.endswith("__"):
        return f"_{cls.__name__.lstrip('_')}{name}"
    return name


def _own_slots(cls: type) -> List[str]:
    slots = cls.__dict__.get("__slots__", ())
    if isinstance(slots, str):
        slots = (slots,)
    return [
        _mangle(cls, name) for name in slots
        if name not in ("__dict__", "__weakref__")
    ]


def iter_instance_fields(cls: type) -> Iterator[FieldDescriptor]:
    """Lazily yield every instance field of ``cls``, base class first.

    Annotated names come in declaration order, followed by ``__slots__``
    entries the class did not annotate. A name already yielded by a base
    class is not repeated.
    """
    seen: set = set()
    for klass in reversed(cls.__mro__):
        if klass is object:
            continue
        annotations = _own_annotations(klass)
        for name, annotation in annotations.items():
            if _is_class_var(annotation):
                continue
            name = _mangle(klass, name)
            if name in seen or isinstance(klass.__dict__.get(name), property):
                continue
            seen.add(name)
            yield FieldDescriptor(klass, annotation, name)
        for name in _own_slots(klass):
            if name in seen:
                continue
            seen.add(name)
            yield FieldDescriptor(klass, object, name)


def all_instance_fields(cls: type) -> Tuple[FieldDescriptor, ...]:
    """All instance fields of ``cls`` and its ancestors, base class first."""
    return tuple(iter_instance_fields(cls))


def _is_static_storage(name: str, value: Any) -> bool:
    if name.startswith("__") and name.endswith("__"):
        return False
    if isinstance(value, (type, staticmethod, classmethod, property)):
        return False
    if inspect.isroutine(value) or inspect.isdatadescriptor(value):
        return False
    return True


def static_fields(cls: type) -> List[FieldDescriptor]:
    """Class-level data attributes declared directly on ``cls``.

    Values of annotated instance fields (dataclass defaults) are not static.
    """
    annotations = _own_annotations(cls)
    result: List[FieldDescriptor] = []
    for name, value in vars(cls).items():
        if name in annotations and not _is_class_var(annotations[name]):
            continue
        if not _is_static_storage(name, value):
            continue
        args = typing.get_args(annotations[name]) if name in annotations else ()
        field_type = args[0] if args else object
        result.append(FieldDescriptor(cls, field_type, name, is_static=True))
    return result


def module_fields(module: types.ModuleType) -> List[FieldDescriptor]:
    """Module-level variables of a module, in definition order.

    Imported modules, classes, functions, type variables and ``__future__``
    flags are code rather than data and are left out.
    """
    try:
        annotations = dict(inspect.get_annotations(module))
    except Exception:
        annotations = {}
    result: List[FieldDescriptor] = []
    for name, value in vars(module).items():
        if name.startswith("__") and name.endswith("__"):
            continue
        if isinstance(value, (types.ModuleType, type, typing.TypeVar, __future__._Feature)):
            continue
        if inspect.isroutine(value) or typing.get_origin(value) is not None:
            continue
        result.append(FieldDescriptor(module, annotations.get(name, object), name, is_static=True))
    return result


# ============================================================
#  Type registry
# ============================================================

@dataclass
class TypeDescriptor:
    """Structural facts about one class, computed once.

    Attributes:
        type: The described class
        name: Formatted display name
        fields: Instance fields, base class first
    """
    type: type
    name: str
    fields: Tuple[FieldDescriptor, ...]


@dataclass
class TypeRegistry:
    """Cache of type descriptors keyed by class identity."""
    descriptors: Dict[type, TypeDescriptor] = field(default_factory=dict)

    def describe(self, cls: type) -> TypeDescriptor:
        """Return the (cached) descriptor of a class."""
        desc = self.descriptors.get(cls)
        if desc is None:
            desc = TypeDescriptor(cls, format_name(cls), all_instance_fields(cls))
            self.descriptors[cls] = desc
        return desc

    def fields_of(self, value: Any) -> List[FieldDescriptor]:
        """Declared fields of a value followed by its undeclared attributes."""
        cls = type(value)
        fields = list(self.describe(cls).fields)
        instance_dict = getattr(value, "__dict__", None)
        if isinstance(instance_dict, dict):
            declared = {f.name for f in fields}
            for name in instance_dict:
                if name not in declared:
                    fields.append(FieldDescriptor(cls, object, name))
        return fields


def fields_of(value: Any) -> List[FieldDescriptor]:
    return TypeRegistry().fields_of(value)


# ============================================================
#  Native layout
# ============================================================

# Builtin primitives sized by their C counterpart
PRIMITIVE_FORMATS: Dict[type, str] = {
    bool: "?",
    int: "q",
    float: "d",
    complex: "dd",
}

_CTYPES_COMPOSITE = (ctypes.Structure, ctypes.Union)


def is_primitive(value: Any) -> bool:
    if isinstance(value, ctypes._SimpleCData):
        return not isinstance(value, ctypes.py_object)
    return isinstance(value, (bool, int, float, complex))


def primitive_size(value: Any) -> int:
    """Native byte width of a primitive value."""
    if isinstance(value, ctypes._SimpleCData):
        return ctypes.sizeof(value)
    for kind in (bool, int, float, complex):
        if isinstance(value, kind):
            return struct.calcsize(PRIMITIVE_FORMATS[kind])
    raise LayoutError(f"{format_name(type(value))} is not a primitive")


def primitive_value(value: Any) -> Any:
    """Literal value of a primitive (unwraps ctypes scalars)."""
    if isinstance(value, ctypes._SimpleCData):
        return value.value
    return value


def enum_underlying_type(enum_cls: type) -> Optional[type]:
    """Underlying primitive type of an enum, or None for non-numeric enums."""
    for kind in (bool, int, float, complex):
        if issubclass(enum_cls, kind):
            return kind
    kinds = {type(member.value) for member in enum_cls}
    if len(kinds) == 1:
        kind = kinds.pop()
        if kind in PRIMITIVE_FORMATS:
            return kind
    return None


def enum_size(member: enum.Enum, reference_width: int) -> int:
    """Byte width of an enum member's underlying numeric representation.

    Enums without a numeric representation are sized as a reference to the
    shared member object.
    """
    kind = enum_underlying_type(type(member))
    if kind is None:
        return reference_width
    return struct.calcsize(PRIMITIVE_FORMATS[kind])


def is_composite(value: Any) -> bool:
    return isinstance(value, _CTYPES_COMPOSITE)


def _check_reference_free(ctype: Any) -> None:
    if ctype is ctypes.py_object or (isinstance(ctype, type) and issubclass(ctype, ctypes.py_object)):
        raise LayoutError("layout holds a reference-typed member")
    if isinstance(ctype, type) and issubclass(ctype, ctypes.Array):
        _check_reference_free(ctype._type_)
    elif isinstance(ctype, type) and issubclass(ctype, _CTYPES_COMPOSITE):
        for member in getattr(ctype, "_fields_", ()):
            _check_reference_free(member[1])


def layout_size(ctype: Any) -> int:
    """Native layout size of a ctypes type.

    Raises:
        LayoutError: If the layout contains a ``py_object`` member or the
            size cannot be computed
    """
    _check_reference_free(ctype)
    try:
        return ctypes.sizeof(ctype)
    except TypeError as exc:
        raise LayoutError(str(exc)) from exc


# ============================================================
#  Arrays
# ============================================================

class ElementKind(enum.Enum):
    """How the elements of an array are sized."""
    FIXED = "fixed"
    OBJECT = "object"


@dataclass
class ArrayInfo:
    """Shape of an array-like value.

    Attributes:
        dims: Length of each dimension
        kind: FIXED (sized as element_size * count) or OBJECT (walked)
        element_size: Native element size for FIXED arrays
        slots_per_element: Reference slots per element (2 for dict entries)
    """
    dims: Tuple[int, ...]
    kind: ElementKind
    element_size: int = 0
    slots_per_element: int = 1

    @property
    def rank(self) -> int:
        return len(self.dims)

    @property
    def total_length(self) -> int:
        """Element count across all dimensions."""
        total = 1
        for length in self.dims:
            total *= length
        return total


OBJECT_SEQUENCES = (list, tuple, set, frozenset, collections.deque)


def _ctypes_array_info(value: ctypes.Array) -> ArrayInfo:
    dims: List[int] = []
    ctype: Any = type(value)
    while isinstance(ctype, type) and issubclass(ctype, ctypes.Array):
        dims.append(ctype._length_)
        ctype = ctype._type_
    if ctype is ctypes.py_object:
        return ArrayInfo(tuple(dims), ElementKind.OBJECT)
    return ArrayInfo(tuple(dims), ElementKind.FIXED, ctypes.sizeof(ctype))


def array_info(value: Any) -> Optional[ArrayInfo]:
    """Describe an array-shaped value, or return None for other shapes."""
    if isinstance(value, dict):
        return ArrayInfo((len(value),), ElementKind.OBJECT, slots_per_element=2)
    if isinstance(value, OBJECT_SEQUENCES):
        return ArrayInfo((len(value),), ElementKind.OBJECT)
    if isinstance(value, (bytes, bytearray)):
        return ArrayInfo((len(value),), ElementKind.FIXED, 1)
    if isinstance(value, array.array):
        return ArrayInfo((len(value),), ElementKind.FIXED, value.itemsize)
    if isinstance(value, memoryview):
        # raises ValueError once the view has been released
        return ArrayInfo(tuple(value.shape), ElementKind.FIXED, value.itemsize)
    if isinstance(value, ctypes.Array):
        return _ctypes_array_info(value)
    return None


def iter_elements(value: Any) -> Iterator[Any]:
    """Iterate the elements of an OBJECT array, flattening ctypes dimensions."""
    if isinstance(value, ctypes.Array):
        for item in value:
            if isinstance(item, ctypes.Array):
                yield from iter_elements(item)
            else:
                yield item
    else:
        yield from value
