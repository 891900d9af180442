import struct
from typing import Any, Dict, List, NamedTuple, Optional, Sequence, Tuple, Type, TypeVar, Union

from netdimm.exceptions import CodecError, FormatArityError, TruncatedDataError


Record = TypeVar("Record", bound=Tuple[Any, ...])
BytesLike = Union[bytes, bytearray, memoryview]


class StructField(NamedTuple):
    name: str
    code: str
    width: int
    signed: bool

    @property
    def padding(self) -> bool:
        return self.code == "x"


class Struct:
    """
    A compiled format string, laid out as an ordered list of fixed-width decode steps.

    Formats follow the same letters as the standard struct module, restricted to
    what the NetDimm protocol needs. An optional leading '<' or '>' selects little
    or big endian (little is the default), followed by one letter per field:

        b/B - 8-bit signed/unsigned integer
        h/H - 16-bit signed/unsigned integer
        i/I - 32-bit signed/unsigned integer
        q/Q - 64-bit signed/unsigned integer
        ?   - 1-byte boolean
        x   - a single padding byte, which consumes no value
    """

    SCALARS: Dict[str, Tuple[int, bool]] = {
        "b": (1, True),
        "B": (1, False),
        "h": (2, True),
        "H": (2, False),
        "i": (4, True),
        "I": (4, False),
        "q": (8, True),
        "Q": (8, False),
        "?": (1, False),
        "x": (1, False),
    }

    def __init__(self, fmt: str, names: Optional[Sequence[str]] = None) -> None:
        self.format = fmt
        self.endian = "<"

        codes = fmt
        if codes[:1] in {"<", ">"}:
            self.endian = codes[0]
            codes = codes[1:]

        for code in codes:
            if code not in Struct.SCALARS:
                raise CodecError(f"Unsupported scalar type {code!r} in format {fmt!r}!")

        valuecount = len([c for c in codes if c != "x"])
        if names is None:
            names = [f"field{i}" for i in range(valuecount)]
        elif len(names) != valuecount:
            raise FormatArityError(f"Format {fmt!r} has {valuecount} fields but {len(names)} names were given!")

        self.steps: List[StructField] = []
        namelist = list(names)
        for code in codes:
            width, signed = Struct.SCALARS[code]
            name = "" if code == "x" else namelist.pop(0)
            self.steps.append(StructField(name, code, width, signed))

    def __repr__(self) -> str:
        return f"Struct({self.format!r})"

    @property
    def fields(self) -> List[StructField]:
        return [step for step in self.steps if not step.padding]

    @property
    def size(self) -> int:
        return sum(step.width for step in self.steps)

    def pack(self, *values: Any) -> bytes:
        fields = self.fields
        if len(values) < len(fields):
            raise FormatArityError(f"Too few values for format {self.format!r}, expected {len(fields)} but got {len(values)}!")
        if len(values) > len(fields):
            raise FormatArityError(f"Too many values for format {self.format!r}, expected {len(fields)} but got {len(values)}!")

        chunks: List[bytes] = []
        remaining = list(values)
        for step in self.steps:
            if step.padding:
                chunks.append(b"\x00")
            else:
                chunks.append(self.__encode(step, remaining.pop(0)))
        return b"".join(chunks)

    def unpack(self, data: BytesLike) -> Tuple[Any, ...]:
        if len(data) < self.size:
            raise TruncatedDataError(f"Format {self.format!r} needs {self.size} bytes but only {len(data)} are available!")

        values: List[Any] = []
        offset = 0
        for step in self.steps:
            if not step.padding:
                values.append(self.__decode(step, bytes(data[offset:(offset + step.width)])))
            offset += step.width
        return tuple(values)

    def unpack_into(self, record: Type[Record], data: BytesLike) -> Record:
        # Record types are NamedTuples, so their declared field count is the arity.
        recordfields = getattr(record, "_fields", None)
        if recordfields is None:
            raise CodecError(f"Cannot unpack into {record!r}, it is not a NamedTuple!")
        if len(recordfields) != len(self.fields):
            raise FormatArityError(
                f"Format {self.format!r} has {len(self.fields)} fields but {record.__name__} has {len(recordfields)}!"
            )
        return record(*self.unpack(data))

    def unpack_named(self, data: BytesLike) -> Dict[str, Any]:
        return {field.name: value for field, value in zip(self.fields, self.unpack(data))}

    def __encode(self, step: StructField, value: Any) -> bytes:
        if step.code == "?":
            return b"\x01" if value else b"\x00"
        if isinstance(value, bool) or not isinstance(value, int):
            raise CodecError(f"Field {step.name} ({step.code}) requires an integer, got {value!r}!")
        try:
            return struct.pack(self.endian + step.code, value)
        except struct.error as e:
            raise CodecError(f"Value {value} does not fit in field {step.name} ({step.code})!") from e

    def __decode(self, step: StructField, chunk: bytes) -> Any:
        if step.code == "?":
            return chunk[0] != 0
        return struct.unpack(self.endian + step.code, chunk)[0]


def pack(fmt: str, *values: Any) -> bytes:
    return Struct(fmt).pack(*values)


def unpack(fmt: str, data: BytesLike, record: Optional[Type[Record]] = None) -> Any:
    if record is not None:
        return Struct(fmt).unpack_into(record, data)
    return Struct(fmt).unpack(data)


def unpack_single(fmt: str, data: BytesLike) -> Any:
    compiled = Struct(fmt)
    if len(compiled.fields) != 1:
        raise FormatArityError(f"Format {fmt!r} must describe exactly one field, it has {len(compiled.fields)}!")
    return compiled.unpack(data)[0]


class ByteBuilder:
    def __init__(self, data: BytesLike = b"") -> None:
        self.__buffer = bytearray(data)

    def __len__(self) -> int:
        return len(self.__buffer)

    def append_byte(self, value: int) -> None:
        if value < 0 or value > 0xFF:
            raise CodecError(f"Byte value {value} is out of range!")
        self.__buffer.append(value)

    def append_bytes(self, data: BytesLike) -> None:
        self.__buffer.extend(data)

    def append_values(self, fmt: str, *values: Any) -> None:
        self.__buffer.extend(pack(fmt, *values))

    def build(self) -> bytes:
        # Hand back a copy so further appends never alter what the caller holds.
        return bytes(self.__buffer)
