"""Partition tables: parsing the CSV definition and writing the binary table."""

from __future__ import annotations

import csv
import hashlib
import re
from dataclasses import dataclass, field
from enum import Enum
from typing import BinaryIO, Union

from espimage.errors import (
    CsvError,
    DuplicatePartitionsError,
    InvalidSubTypeError,
    NoAppError,
    OverlappingPartitionsError,
    UnalignedPartitionError,
)

MAX_PARTITION_LENGTH = 0xC00
PARTITION_TABLE_SIZE = 0x1000
PARTITION_SIZE = 32
MAX_NAME_LENGTH = 16
DEFAULT_FIRST_OFFSET = 0x9000

_U32_MAX = 0xFFFFFFFF
_SIZE_FORMAT_ERROR = "invalid partition size/offset format"
_MULTIPLIER_RE = re.compile(r"^([0-9]+)([km])$", re.IGNORECASE)
_DECIMAL_RE = re.compile(r"\+?[0-9]+")
_HEX_RE = re.compile(r"\+?[0-9a-fA-F]+")
_LINE_BREAK_RE = re.compile(r"\r\n|\r|\n")
_TABLE_MARKER = bytes([0xEB, 0xEB]) + b"\xff" * 14


class PartitionType(Enum):
    """Top level partition type."""

    APP = 0x00
    DATA = 0x01

    def __str__(self) -> str:
        return self.name.lower()

    def subtype_hint(self) -> str:
        """Human readable list of the sub-types this type accepts."""
        if self is PartitionType.APP:
            return "'factory', 'ota_0' through 'ota_15' and 'test'"
        types = [
            DataType.OTA,
            DataType.PHY,
            DataType.NVS,
            DataType.COREDUMP,
            DataType.NVSKEYS,
            DataType.EFUSE,
            DataType.ESPHTTPD,
            DataType.FAT,
            DataType.SPIFFS,
        ]
        middle = "".join(f", '{ty}'" for ty in types[1:-2])
        return f"'{types[0]}'{middle} and '{types[-1]}'"


class AppType(Enum):
    """Sub-types of application partitions."""

    FACTORY = 0x00
    OTA_0 = 0x10
    OTA_1 = 0x11
    OTA_2 = 0x12
    OTA_3 = 0x13
    OTA_4 = 0x14
    OTA_5 = 0x15
    OTA_6 = 0x16
    OTA_7 = 0x17
    OTA_8 = 0x18
    OTA_9 = 0x19
    OTA_10 = 0x1A
    OTA_11 = 0x1B
    OTA_12 = 0x1C
    OTA_13 = 0x1D
    OTA_14 = 0x1E
    OTA_15 = 0x1F
    TEST = 0x20

    def __str__(self) -> str:
        return self.name.lower()


class DataType(Enum):
    """Sub-types of data partitions."""

    OTA = 0x00
    PHY = 0x01
    NVS = 0x02
    COREDUMP = 0x03
    NVSKEYS = 0x04
    EFUSE = 0x05
    UNDEFINED = 0x06
    ESPHTTPD = 0x80
    FAT = 0x81
    SPIFFS = 0x82

    def __str__(self) -> str:
        return self.name.lower()

    def is_multiple_allowed(self) -> bool:
        """Whether a table may hold several partitions of this sub-type."""
        return self in (DataType.FAT, DataType.SPIFFS)


SubType = Union[AppType, DataType]

_SUBTYPES_BY_NAME: dict[str, SubType] = {
    **{str(member): member for member in AppType},
    **{str(member): member for member in DataType},
}
_TYPES_BY_NAME = {str(member): member for member in PartitionType}


def _type_of(sub_type: SubType) -> PartitionType:
    return PartitionType.APP if isinstance(sub_type, AppType) else PartitionType.DATA


def _multiple_allowed(sub_type: SubType) -> bool:
    return isinstance(sub_type, DataType) and sub_type.is_multiple_allowed()


def parse_subtype(text: str) -> SubType:
    """Parse a sub-type name, trying application sub-types before data ones."""
    try:
        return _SUBTYPES_BY_NAME[text]
    except KeyError:
        raise ValueError(f"unknown sub-type {text!r}") from None


def _check_u32(value: int) -> int:
    if value > _U32_MAX:
        raise ValueError(_SIZE_FORMAT_ERROR)
    return value


def parse_offset_or_size(text: str) -> int | None:
    """Parse an offset or size field: hex, decimal or with a k/M suffix.

    Returns None for a blank field and raises ValueError for anything else
    that cannot be read.
    """
    if not text.strip():
        return None
    if text.startswith("0x"):
        digits = text
        while digits.startswith("0x"):
            digits = digits[2:]
        if not _HEX_RE.fullmatch(digits):
            raise ValueError(_SIZE_FORMAT_ERROR)
        return _check_u32(int(digits, 16))
    if _DECIMAL_RE.fullmatch(text) and int(text) <= _U32_MAX:
        return int(text)
    match = _MULTIPLIER_RE.match(text)
    if match is None:
        raise ValueError(_SIZE_FORMAT_ERROR)
    multiplier = 1024 if match.group(2).lower() == "k" else 1024 * 1024
    return _check_u32(int(match.group(1)) * multiplier)


def truncate_name(name: str) -> str:
    """Cut a partition name down to the 16 characters the table can hold."""
    return name[:MAX_NAME_LENGTH]


def align_offset(offset: int, ty: PartitionType) -> int:
    """Round ``offset`` up to the alignment partitions of ``ty`` require."""
    pad = 0x10000 if ty is PartitionType.APP else 4
    remainder = offset % pad
    return offset if remainder == 0 else offset + pad - remainder


@dataclass
class Partition:
    """One entry of a partition table."""

    name: str
    ty: PartitionType
    sub_type: SubType
    offset: int
    size: int
    flags: int | None = None
    line: int | None = field(default=None, compare=False)

    def to_bytes(self) -> bytes:
        """Binary form of this entry, 32 bytes long."""
        name_bytes = self.name.encode("utf-8")[:MAX_NAME_LENGTH].ljust(MAX_NAME_LENGTH, b"\0")
        return b"".join(
            (
                bytes([0xAA, 0x50, self.ty.value, self.sub_type.value]),
                self.offset.to_bytes(4, "little"),
                self.size.to_bytes(4, "little"),
                name_bytes,
                (self.flags or 0).to_bytes(4, "little"),
            )
        )

    def overlaps(self, other: Partition) -> bool:
        """Whether the address ranges of the two partitions intersect."""
        return max(self.offset, other.offset) < min(
            self.offset + self.size, other.offset + other.size
        )


_FIELD_NAMES = ("name", "ty", "sub_type", "offset", "size")


def _parse_record(fields: list[str], line: int, source: str) -> Partition:
    """Turn the fields of one CSV record into a partition with an optional offset."""

    def fail(hint: str, help_text: str = "") -> CsvError:
        return CsvError(source, line, hint, help_text)

    if len(fields) < len(_FIELD_NAMES):
        raise fail(f"missing field `{_FIELD_NAMES[len(fields)]}`")

    name = truncate_name(fields[0])

    ty = _TYPES_BY_NAME.get(fields[1])
    if ty is None:
        raise fail(f"unknown variant `{fields[1]}`, expected `app` or `data`")

    try:
        sub_type = parse_subtype(fields[2])
    except ValueError:
        help_text = (
            "the following sub-types are supported:\n"
            f"    {PartitionType.DATA.subtype_hint()} for data partitions\n"
            f"    {PartitionType.APP.subtype_hint()} for app partitions\n\n"
        )
        raise fail("Unknown sub-type", help_text) from None

    try:
        offset = parse_offset_or_size(fields[3])
        size = parse_offset_or_size(fields[4])
    except ValueError as exc:
        raise fail(str(exc)) from None
    if size is None:
        raise fail(_SIZE_FORMAT_ERROR)

    flags = None
    if len(fields) > 5 and fields[5]:
        text = fields[5]
        if not _DECIMAL_RE.fullmatch(text) or int(text) > _U32_MAX:
            raise fail(f"invalid flags value `{text}`")
        flags = int(text)

    return Partition(
        name=name,
        ty=ty,
        sub_type=sub_type,
        offset=-1 if offset is None else offset,
        size=size,
        flags=flags,
        line=line,
    ) if offset is not None else _PendingOffset(name, ty, sub_type, size, flags, line)


@dataclass
class _PendingOffset:
    """A parsed record whose offset is to be filled in from its predecessor."""

    name: str
    ty: PartitionType
    sub_type: SubType
    size: int
    flags: int | None
    line: int

    def place(self, offset: int) -> Partition:
        return Partition(
            name=self.name,
            ty=self.ty,
            sub_type=self.sub_type,
            offset=offset,
            size=self.size,
            flags=self.flags,
            line=self.line,
        )


def _records(text: str):
    """Yield ``(line, fields)`` for each non-comment, non-empty line of ``text``."""
    for line_number, line in enumerate(_LINE_BREAK_RE.split(text), start=1):
        if not line or line.startswith("#"):
            continue
        fields = next(csv.reader([line]), [])
        yield line_number, [value.strip() for value in fields]


@dataclass
class PartitionTable:
    """An ordered collection of partitions."""

    partitions: list[Partition] = field(default_factory=list)

    @classmethod
    def basic(
        cls,
        nvs_offset: int,
        nvs_size: int,
        phy_init_data_offset: int,
        phy_init_data_size: int,
        app_offset: int,
        app_size: int,
    ) -> PartitionTable:
        """A table with NVS, PHY init data and a factory app partition."""
        entries = [
            ("nvs", DataType.NVS, nvs_offset, nvs_size),
            ("phy_init", DataType.PHY, phy_init_data_offset, phy_init_data_size),
            ("factory", AppType.FACTORY, app_offset, app_size),
        ]
        return cls(
            [
                Partition(name, _type_of(sub_type), sub_type, offset, size)
                for name, sub_type, offset, size in entries
            ]
        )

    @classmethod
    def from_csv(cls, data: str) -> PartitionTable:
        """Parse and validate a partition table in the CSV format.

        Raises a PartitionTableError subclass when the table is malformed.
        """
        offset = DEFAULT_FIRST_OFFSET
        expected_len: int | None = None
        partitions = []
        for line, fields in _records(data.strip()):
            if expected_len is None:
                expected_len = len(fields)
            elif len(fields) != expected_len:
                raise CsvError(
                    data,
                    line,
                    f"record has {len(fields)} fields, "
                    f"but the previous record has {expected_len} fields",
                )
            record = _parse_record(fields, line, data)
            if isinstance(record, _PendingOffset):
                record = record.place(align_offset(offset, record.ty))
            offset = record.offset + record.size
            partitions.append(record)

        table = cls(partitions)
        table.validate(data)
        return table

    def to_bytes(self) -> bytes:
        """Binary form of the table: entries, MD5 marker and 0xFF padding."""
        written = len(self.partitions) * PARTITION_SIZE + 32
        if written > MAX_PARTITION_LENGTH:
            raise ValueError(f"too many partitions: {len(self.partitions)}")
        entries = b"".join(partition.to_bytes() for partition in self.partitions)
        digest = hashlib.md5(entries).digest()
        padding = b"\xff" * (MAX_PARTITION_LENGTH - written)
        return entries + _TABLE_MARKER + digest + padding

    def save(self, writer: BinaryIO) -> None:
        """Write the binary table to ``writer``."""
        writer.write(self.to_bytes())

    def find(self, name: str) -> Partition | None:
        """The first partition called ``name``, if any."""
        return next((p for p in self.partitions if p.name == name), None)

    def find_by_type(self, ty: PartitionType) -> Partition | None:
        """The first partition of type ``ty``, if any."""
        return next((p for p in self.partitions if p.ty is ty), None)

    def validate(self, source: str) -> None:
        """Check the table for consistency, raising on the first problem found."""
        located = [p for p in self.partitions if p.line is not None]
        for partition in located:
            if _type_of(partition.sub_type) is not partition.ty:
                raise InvalidSubTypeError(
                    source,
                    partition.line,
                    partition.ty,
                    partition.sub_type,
                    partition.ty.subtype_hint(),
                )
            if partition.ty is PartitionType.APP and partition.offset % 0x10000 != 0:
                raise UnalignedPartitionError(source, partition.line)

        for first in located:
            for second in located:
                if first.line == second.line:
                    continue
                if first.overlaps(second):
                    raise OverlappingPartitionsError(source, first.line, second.line)
                if first.name == second.name:
                    raise DuplicatePartitionsError(source, first.line, second.line, "name")
                if first.sub_type is second.sub_type and not _multiple_allowed(first.sub_type):
                    raise DuplicatePartitionsError(
                        source, first.line, second.line, "sub-type"
                    )

        if self.find_by_type(PartitionType.APP) is None:
            raise NoAppError(source)