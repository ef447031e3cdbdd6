"""Exceptions raised while talking to a device and while building images."""

from __future__ import annotations

from enum import IntEnum

Span = tuple[int, int]

_IMAGE_FORMAT_NAMES = ("bootloader", "direct-boot")
_ROM_RECOVERY_HELP = (
    "Try hard-resetting the device and try again, "
    "if the error persists your rom might be corrupted"
)


def _offset_from_location(source: str, line: int, column: int) -> int:
    """Character offset of a 1-based (line, column) location in ``source``."""
    current_line = 0
    current_col = 0
    offset = 0
    for char in source:
        if current_line + 1 >= line and current_col + 1 >= column:
            break
        if char == "\n":
            current_col = 0
            current_line += 1
        else:
            current_col += 1
        offset += 1
    return offset


def line_to_span(source: str, line: int) -> Span:
    """Return ``(offset, length)`` highlighting a whole 1-based line of ``source``."""
    lines = source.split("\n")
    if source.endswith("\n"):
        lines.pop()
    if line < 1 or line > len(lines):
        raise ValueError(f"line {line} is outside the source")
    length = len(lines[line - 1].removesuffix("\r"))
    return _offset_from_location(source, line, 2), length


class FlashError(Exception):
    """Base class of every error raised by this package."""

    default_message = "Flashing error"
    code: str | None = None
    help: str | None = None

    def __init__(self, message: str | None = None) -> None:
        super().__init__(self.default_message if message is None else message)

    @property
    def message(self) -> str:
        return str(self.args[0]) if self.args else ""


class _CommunicationError(FlashError):
    """An error on the serial link, either while connecting or while flashing."""

    during_flashing = False

    @property
    def context(self) -> str:
        if self.during_flashing:
            return "Communication error while flashing device"
        return "Error while connecting to device"


class ConnectionFailedError(_CommunicationError):
    default_message = "Failed to connect to the device"
    code = "espflash::connection_failed"
    help = (
        "Ensure that the device is connected and the reset and boot pins "
        "are not being held down"
    )


class DeviceNotFoundError(_CommunicationError):
    default_message = "Serial port not found"
    code = "espflash::connection_failed"
    help = (
        "Ensure that the device is connected and your host recognizes "
        "the serial adapter"
    )


class CommandTimeoutError(_CommunicationError):
    code = "espflash::timeout"

    def __init__(self, command: object = None) -> None:
        self.command = command
        prefix = "" if command is None else f"{command} "
        super().__init__(f"Timeout while running {prefix}command")


class FramingError(_CommunicationError):
    default_message = "Received packet has invalid SLIP framing"
    code = "espflash::slip_framing"
    help = _ROM_RECOVERY_HELP


class OversizedPacketError(_CommunicationError):
    default_message = "Received packet to large for buffer"
    code = "espflash::oversized_packet"
    help = _ROM_RECOVERY_HELP


class FlashConnectError(FlashError):
    default_message = "Failed to connect to on-device flash"
    code = "espflash::flash_connect"


class ElfError(FlashError):
    code = "espflash::invalid_elf"
    help = "Try running `cargo clean` and rebuilding the image"

    def __init__(self, reason: str) -> None:
        self.reason = reason
        super().__init__(f"Supplied elf image is not valid: {reason}")


class ElfNotRamLoadableError(FlashError):
    default_message = (
        "Supplied elf image can not be ran from ram as it includes segments "
        "mapped to rom addresses"
    )
    code = "espflash::not_ram_loadable"
    help = (
        "Either build the binary to be all in ram or remove the `--ram` "
        "option to load the image to flash"
    )


class InvalidDirectBootBinaryError(FlashError):
    default_message = "binary is not setup correct to support direct boot"
    code = "espflash::invalid_direct_boot"
    help = "See the direct boot documentation on how to setup your binary for direct boot"


class ChipDetectError(FlashError):
    code = "espflash::unrecognized_chip"
    help = "If your chip is supported, try hard-resetting the device and try again"

    def __init__(self, magic: int) -> None:
        self.magic = magic
        super().__init__(f"Unrecognized magic value {magic:#x}")


class FlashDetectError(FlashError):
    code = "espflash::unrecognized_flash"
    help = "Flash chip not supported, flash sizes from 1 to 16MB are supported"

    def __init__(self, flash_id: int) -> None:
        self.flash_id = flash_id
        super().__init__(f"Unrecognized flash id {flash_id:#x}")


class UnknownImageFormatError(FlashError):
    code = "espflash::unknown_format"
    help = f"The following image formats are {', '.join(_IMAGE_FORMAT_NAMES)}"

    def __init__(self, name: str) -> None:
        self.name = name
        super().__init__(f"Unrecognized image format {name}")


class RomErrorKind(IntEnum):
    """Error codes reported by the ROM bootloader."""

    INVALID_MESSAGE = 0x05
    FAILED_TO_ACT = 0x06
    INVALID_CRC = 0x07
    FLASH_WRITE_ERROR = 0x08
    FLASH_READ_ERROR = 0x09
    FLASH_READ_LENGTH_ERROR = 0x0A
    DEFLATE_ERROR = 0x0B
    OTHER = 0xFF

    @classmethod
    def from_code(cls, raw: int) -> RomErrorKind:
        try:
            return cls(raw)
        except ValueError:
            return cls.OTHER

    @property
    def message(self) -> str:
        return _ROM_KIND_TEXT[self][0]

    @property
    def code(self) -> str:
        return _ROM_KIND_TEXT[self][1]

    def __str__(self) -> str:
        return self.message


_ROM_KIND_TEXT = {
    RomErrorKind.INVALID_MESSAGE: ("Invalid message received", "espflash::rom::invalid_message"),
    RomErrorKind.FAILED_TO_ACT: ("Bootloader failed to execute command", "espflash::rom::failed"),
    RomErrorKind.INVALID_CRC: ("Received message has invalid crc", "espflash::rom::crc"),
    RomErrorKind.FLASH_WRITE_ERROR: (
        "Bootloader failed to write to flash",
        "espflash::rom::flash_write",
    ),
    RomErrorKind.FLASH_READ_ERROR: (
        "Bootloader failed to read from flash",
        "espflash::rom::flash_read",
    ),
    RomErrorKind.FLASH_READ_LENGTH_ERROR: (
        "Invalid length for flash read",
        "espflash::rom::flash_read_length",
    ),
    RomErrorKind.DEFLATE_ERROR: ("Malformed compressed data received", "espflash::rom::deflate"),
    RomErrorKind.OTHER: ("Other", "espflash::rom::other"),
}


class RomError(FlashError):
    """The bootloader reported a failure for a command."""

    def __init__(self, command: object, kind: RomErrorKind | int) -> None:
        self.command = command
        self.kind = kind if isinstance(kind, RomErrorKind) else RomErrorKind.from_code(kind)
        self.code = self.kind.code
        self.help = self.kind.message
        super().__init__(f"Error while running {command} command")


class PartitionTableError(FlashError):
    """Base class of errors found in a partition table definition."""

    def __init__(self, message: str | None, source: str) -> None:
        super().__init__(message)
        self.source = source
        self.labels: list[tuple[Span, str]] = []


class CsvError(PartitionTableError):
    default_message = "Malformed partition table"
    code = "espflash::partition_table::mallformed"

    def __init__(self, source: str, line: int | None, hint: str, help_text: str = "") -> None:
        super().__init__(None, source)
        self.line = line
        self.hint = hint
        self.help = (
            f"{help_text}See the partition table documentation for information "
            "on the partition table format"
        )
        self.span = line_to_span(source, line) if line else None
        if self.span is not None:
            self.labels.append((self.span, hint))


class OverlappingPartitionsError(PartitionTableError):
    default_message = "Overlapping partitions"
    code = "espflash::partition_table::overlapping"

    def __init__(self, source: str, line1: int, line2: int) -> None:
        super().__init__(None, source)
        self.line1 = line1
        self.line2 = line2
        self.labels.append((line_to_span(source, line1), "This partition"))
        self.labels.append((line_to_span(source, line2), "overlaps with this partition"))


class DuplicatePartitionsError(PartitionTableError):
    default_message = "Duplicate partitions"
    code = "espflash::partition_table::duplicate"

    def __init__(self, source: str, line1: int, line2: int, kind: str) -> None:
        super().__init__(None, source)
        self.line1 = line1
        self.line2 = line2
        self.kind = kind
        self.labels.append((line_to_span(source, line1), "This partition"))
        self.labels.append(
            (line_to_span(source, line2), f"has the same {kind} as this partition")
        )


class InvalidSubTypeError(PartitionTableError):
    default_message = "Invalid subtype for type"
    code = "espflash::partition_table::invalid_type"

    def __init__(self, source: str, line: int, ty: object, sub_type: object, hint: str) -> None:
        super().__init__(None, source)
        self.line = line
        self.ty = ty
        self.sub_type = sub_type
        self.help = f"'{ty}' supports the following subtypes: {hint}"
        self.labels.append(
            (line_to_span(source, line), f"'{sub_type}' is not a valid subtype for '{ty}'")
        )


class NoAppError(PartitionTableError):
    default_message = "No app partition was found"
    code = "espflash::partition_table::no_app"
    help = "Partition table must contain a factory or ota app partition"

    def __init__(self, source: str) -> None:
        super().__init__(None, source)


class UnalignedPartitionError(PartitionTableError):
    default_message = "Unaligned partition"
    code = "espflash::partition_table::unaligned"

    def __init__(self, source: str, line: int) -> None:
        super().__init__(None, source)
        self.line = line
        self.labels.append(
            (line_to_span(source, line), "App partition is not aligned to 64k (0x10000)")
        )


def mark_flashing(error: BaseException) -> BaseException:
    """Mark a communication error as having happened while flashing."""
    if isinstance(error, _CommunicationError):
        error.during_flashing = True
    return error


def for_command(error: BaseException, command: object) -> BaseException:
    """Attach the command that timed out to a timeout error; leave others as they are."""
    if isinstance(error, CommandTimeoutError):
        tagged = CommandTimeoutError(command)
        tagged.during_flashing = error.during_flashing
        return tagged
    return error