"""Codecs describing how values are laid out in a CommBuffer.

Every codec writes through the buffer's aligned primitives, so the same call
sequence works against a sizing-mode buffer (only the cursor moves) and a
transfer-mode buffer (bytes are copied and bounds checked).

Wire format:
- fixed-layout scalars: native numpy layout, aligned to their own size
- string/bytes: uint64 byte length, then the raw bytes
- pair: first member, then second member
- mapping: uint64 element count, then key/value for each entry
- sequence: uint32 element count, then each element
"""
from __future__ import annotations

import ctypes
from typing import TYPE_CHECKING, Any, Optional, Protocol, runtime_checkable

import numpy as np

from .errors import NotSupportedError, PreconditionError

if TYPE_CHECKING:  # pragma: no cover
    from .buffer import CommBuffer


_MAX_SEQUENCE = (1 << 32) - 1


@runtime_checkable
class Serializable(Protocol):
    """Value types that know how to write and read themselves."""

    def write(self, buf: "CommBuffer") -> None:
        ...

    @classmethod
    def read(cls, buf: "CommBuffer") -> Any:
        ...


class Codec:
    """Base codec. Subclasses implement write/read and optionally skip."""

    peekable = True

    def write(self, buf: "CommBuffer", value: Any) -> None:
        raise NotImplementedError

    def read(self, buf: "CommBuffer") -> Any:
        raise NotImplementedError

    def skip(self, buf: "CommBuffer", count: int) -> None:
        raise NotSupportedError(f"skip is not supported for {self!r}")


class Scalar(Codec):
    """A fixed-layout value backed by a numpy dtype."""

    def __init__(self, dtype: Any) -> None:
        dt = np.dtype(dtype)
        if dt.hasobject:
            raise PreconditionError(f"dtype {dt} holds object references and cannot be packed")
        self.dtype = dt

    @property
    def itemsize(self) -> int:
        return int(self.dtype.itemsize)

    def write(self, buf: "CommBuffer", value: Any) -> None:
        reject_handle(value)
        if isinstance(value, (str, bytes, bytearray)) and self.dtype.kind != "S":
            raise PreconditionError(f"cannot pack {type(value).__name__} as {self.dtype}")
        try:
            with np.errstate(all="ignore"):
                arr = np.asarray(value, dtype=self.dtype).reshape(1)
        except (OverflowError, TypeError, ValueError) as e:
            raise PreconditionError(f"cannot pack {value!r} as {self.dtype}: {e}") from e
        if not self._lossless(arr, value):
            raise PreconditionError(f"packing {value!r} as {self.dtype} would change its value")
        buf.pack_array(arr)

    def _lossless(self, arr: np.ndarray, value: Any) -> bool:
        want = value.item() if isinstance(value, (np.generic, np.ndarray)) else value
        if self.dtype.kind in "fc":
            # float targets may round but must not overflow or drop an imaginary part
            if not isinstance(want, (int, float, complex)):
                return False
            if isinstance(want, complex) and self.dtype.kind == "f":
                return False
            if bool(np.isfinite(arr).all()):
                return True
            return not isinstance(want, int) and not np.isfinite(want)
        if self.dtype.names is not None and isinstance(want, list):
            want = tuple(want)
        return arr[0].item() == want

    def read(self, buf: "CommBuffer") -> Any:
        return buf.unpack_array(self.dtype, 1)[0].item()

    def skip(self, buf: "CommBuffer", count: int) -> None:
        buf.skip_items(self.itemsize, count)

    def __eq__(self, other: object) -> bool:
        return isinstance(other, Scalar) and other.dtype == self.dtype

    def __hash__(self) -> int:
        return hash(("scalar", self.dtype.str))

    def __repr__(self) -> str:
        return f"Scalar({self.dtype})"


BOOL = Scalar(np.bool_)
CHAR = Scalar("S1")
INT8 = Scalar(np.int8)
UINT8 = Scalar(np.uint8)
INT16 = Scalar(np.int16)
UINT16 = Scalar(np.uint16)
INT32 = Scalar(np.int32)
UINT32 = Scalar(np.uint32)
INT64 = Scalar(np.int64)
UINT64 = Scalar(np.uint64)
FLOAT32 = Scalar(np.float32)
FLOAT64 = Scalar(np.float64)

# Length prefix for strings and mappings; sequences use a portable 32-bit count
LENGTH = UINT64
COUNT = UINT32


class _Bytes(Codec):
    def write(self, buf: "CommBuffer", value: Any) -> None:
        if not isinstance(value, (bytes, bytearray)):
            raise PreconditionError(f"BYTES expects bytes, got {type(value).__name__}")
        data = bytes(value)
        LENGTH.write(buf, len(data))
        buf.pack_bytes(data)

    def read(self, buf: "CommBuffer") -> bytes:
        n = LENGTH.read(buf)
        return buf.unpack_bytes(n)

    def __repr__(self) -> str:
        return "BYTES"


class _String(Codec):
    def write(self, buf: "CommBuffer", value: Any) -> None:
        if not isinstance(value, str):
            raise PreconditionError(f"STRING expects str, got {type(value).__name__}")
        BYTES.write(buf, value.encode("utf-8"))

    def read(self, buf: "CommBuffer") -> str:
        return BYTES.read(buf).decode("utf-8")

    def __repr__(self) -> str:
        return "STRING"


BYTES = _Bytes()
STRING = _String()


class Pair(Codec):
    def __init__(self, first: Codec, second: Codec) -> None:
        self.first = first
        self.second = second

    def write(self, buf: "CommBuffer", value: Any) -> None:
        a, b = value
        self.first.write(buf, a)
        self.second.write(buf, b)

    def read(self, buf: "CommBuffer") -> tuple:
        a = self.first.read(buf)
        b = self.second.read(buf)
        return (a, b)

    def skip(self, buf: "CommBuffer", count: int) -> None:
        self.first.skip(buf, count)
        self.second.skip(buf, count)

    def __repr__(self) -> str:
        return f"Pair({self.first!r}, {self.second!r})"


class Mapping(Codec):
    # Peeking a mapping has never been supported
    peekable = False

    def __init__(self, key: Codec, value: Codec) -> None:
        self.key = key
        self.value = value

    def write(self, buf: "CommBuffer", value: Any) -> None:
        LENGTH.write(buf, len(value))
        for k, v in value.items():
            self.key.write(buf, k)
            self.value.write(buf, v)

    def read(self, buf: "CommBuffer") -> dict:
        out: dict = {}
        n = LENGTH.read(buf)
        for _ in range(n):
            k = self.key.read(buf)
            out[k] = self.value.read(buf)
        return out

    def __repr__(self) -> str:
        return f"Mapping({self.key!r}, {self.value!r})"


class Sequence(Codec):
    def __init__(self, element: Codec) -> None:
        self.element = element

    def write(self, buf: "CommBuffer", value: Any) -> None:
        n = len(value)
        if n > _MAX_SEQUENCE:
            raise PreconditionError(f"sequence of {n} elements exceeds the 32-bit count prefix")
        COUNT.write(buf, n)
        for item in value:
            self.element.write(buf, item)

    def read(self, buf: "CommBuffer") -> list:
        n = COUNT.read(buf)
        return [self.element.read(buf) for _ in range(n)]

    def __repr__(self) -> str:
        return f"Sequence({self.element!r})"


class Record(Codec):
    """Adapter for classes implementing the Serializable contract."""

    def __init__(self, cls: type) -> None:
        if not callable(getattr(cls, "read", None)) or not callable(getattr(cls, "write", None)):
            raise PreconditionError(f"{cls!r} does not implement write/read")
        self.cls = cls

    def write(self, buf: "CommBuffer", value: Any) -> None:
        value.write(buf)

    def read(self, buf: "CommBuffer") -> Any:
        return self.cls.read(buf)

    def __repr__(self) -> str:
        return f"Record({self.cls.__name__})"


_POINTER_TYPES: tuple[type, ...] = (
    memoryview,
    ctypes._Pointer,  # type: ignore[attr-defined]
    ctypes.c_void_p,
    ctypes.c_char_p,
    ctypes.c_wchar_p,
)


def reject_handle(value: Any) -> None:
    """Refuse address/handle values; payloads must be plain values."""
    if isinstance(value, _POINTER_TYPES):
        raise PreconditionError(
            f"cannot pack {type(value).__name__}: process-local references are not communicable"
        )
    if isinstance(value, np.ndarray) and value.dtype.hasobject:
        raise PreconditionError("cannot pack an object array: elements are process-local references")


def infer_codec(value: Any) -> Codec:
    """Pick a codec for a Python value when the caller did not name one.

    Containers are typed from all of their elements. Numeric scalars of
    different kinds widen to a common dtype (``[1, 2.5]`` packs as float64),
    any other mix is rejected. Element types of empty containers default to
    int64.
    """
    return _resolve(_infer(value))


def _infer(value: Any) -> Optional[Codec]:
    reject_handle(value)
    if isinstance(value, str):
        return STRING
    if isinstance(value, (bytes, bytearray)):
        return BYTES
    if isinstance(value, (bool, np.bool_)):
        return BOOL
    if isinstance(value, np.generic):
        return Scalar(value.dtype)
    if isinstance(value, int):
        if -(1 << 63) <= value < (1 << 63):
            return INT64
        if 0 <= value < (1 << 64):
            return UINT64
        raise PreconditionError(f"integer {value} does not fit in 64 bits")
    if isinstance(value, float):
        return FLOAT64
    if isinstance(value, tuple) and len(value) == 2:
        return Pair(_infer(value[0]), _infer(value[1]))
    if isinstance(value, dict):
        key: Optional[Codec] = None
        val: Optional[Codec] = None
        for k, v in value.items():
            key = _merge(key, _infer(k))
            val = _merge(val, _infer(v))
        return Mapping(key, val)
    if isinstance(value, list):
        elem: Optional[Codec] = None
        for item in value:
            elem = _merge(elem, _infer(item))
        return Sequence(elem)
    if isinstance(value, Serializable) and not isinstance(value, type):
        return Record(type(value))
    raise PreconditionError(f"no codec for values of type {type(value).__name__}")


def _merge(a: Optional[Codec], b: Optional[Codec]) -> Optional[Codec]:
    # None stands for "no element seen yet"
    if a is None:
        return b
    if b is None:
        return a
    if isinstance(a, Scalar) and isinstance(b, Scalar):
        if a == b:
            return a
        if a.dtype.kind in "biufc" and b.dtype.kind in "biufc":
            return Scalar(np.result_type(a.dtype, b.dtype))
    elif isinstance(a, Pair) and isinstance(b, Pair):
        return Pair(_merge(a.first, b.first), _merge(a.second, b.second))
    elif isinstance(a, Mapping) and isinstance(b, Mapping):
        return Mapping(_merge(a.key, b.key), _merge(a.value, b.value))
    elif isinstance(a, Sequence) and isinstance(b, Sequence):
        return Sequence(_merge(a.element, b.element))
    elif isinstance(a, Record) and isinstance(b, Record):
        if a.cls is b.cls:
            return a
    elif a is b:
        return a
    raise PreconditionError(f"mixed element types {a!r} and {b!r} in one container")


def _resolve(codec: Optional[Codec]) -> Codec:
    if codec is None:
        return INT64
    if isinstance(codec, Pair):
        return Pair(_resolve(codec.first), _resolve(codec.second))
    if isinstance(codec, Mapping):
        return Mapping(_resolve(codec.key), _resolve(codec.value))
    if isinstance(codec, Sequence):
        return Sequence(_resolve(codec.element))
    return codec
