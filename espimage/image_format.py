"""Firmware image formats: identifiers, header encodings and segment layout helpers."""

from __future__ import annotations

import struct
from collections.abc import Iterable
from enum import Enum

from espimage.errors import FlashDetectError, UnknownImageFormatError
from espimage.flashing import FlashSize

ESP_MAGIC = 0xE9
WP_PIN_DISABLED = 0xEE
IROM_ALIGN = 65536
SEG_HEADER_LEN = 8
IROM_MAP_START = 0x40200000

_COMMON_HEADER = struct.Struct("<BBBBI")
_SEGMENT_HEADER = struct.Struct("<II")
_EXTENDED_HEADER = struct.Struct("<BBBBHB8sB")


class ImageFormatId(Enum):
    """The image formats a firmware image can be written in."""

    BOOTLOADER = "bootloader"
    DIRECT_BOOT = "direct-boot"

    @classmethod
    def parse(cls, text: str) -> ImageFormatId:
        """Look up a format by its name, raising UnknownImageFormatError otherwise."""
        try:
            return cls(text)
        except ValueError:
            raise UnknownImageFormatError(text) from None

    def __str__(self) -> str:
        return self.value


def encode_common_header(
    segment_count: int, flash_mode: int, flash_config: int, entry: int
) -> bytes:
    """The 8 byte header every image starts with."""
    return _COMMON_HEADER.pack(ESP_MAGIC, segment_count, flash_mode, flash_config, entry)


def encode_segment_header(addr: int, length: int) -> bytes:
    """The 8 byte header that precedes each segment's data."""
    return _SEGMENT_HEADER.pack(addr, length)


def encode_esp32_extended_header(chip_id: int) -> bytes:
    """The 16 byte extended header of esp32 family images."""
    return _EXTENDED_HEADER.pack(
        WP_PIN_DISABLED,  # wp_pin
        0,  # clk_q_drv
        0,  # d_cs_drv
        0,  # gd_wp_drv
        chip_id,
        0,  # min_rev
        bytes(8),
        1,  # append_digest
    )


_ESP32_FLASH_SIZES = {
    FlashSize.FLASH_1MB: 0x00,
    FlashSize.FLASH_2MB: 0x10,
    FlashSize.FLASH_4MB: 0x20,
    FlashSize.FLASH_8MB: 0x30,
    FlashSize.FLASH_16MB: 0x40,
}

_ESP8266_FLASH_SIZES = {
    FlashSize.FLASH_256KB: 0x10,
    FlashSize.FLASH_512KB: 0x00,
    FlashSize.FLASH_1MB: 0x20,
    FlashSize.FLASH_2MB: 0x30,
    FlashSize.FLASH_4MB: 0x40,
    FlashSize.FLASH_8MB: 0x80,
    FlashSize.FLASH_16MB: 0x90,
}


def _encode_flash_size(table: dict[FlashSize, int], size: FlashSize) -> int:
    try:
        return table[size]
    except KeyError:
        raise FlashDetectError(int(size)) from None


def encode_flash_size_esp32(size: FlashSize) -> int:
    """Flash size bits of the header's flash config byte for esp32 chips."""
    return _encode_flash_size(_ESP32_FLASH_SIZES, size)


def encode_flash_size_esp8266(size: FlashSize) -> int:
    """Flash size bits of the header's flash config byte for esp8266 chips."""
    return _encode_flash_size(_ESP8266_FLASH_SIZES, size)


def segment_padding(offset: int, addr: int) -> int:
    """Bytes of padding needed before a segment header at ``offset``.

    After the padding and the next 8 byte header, the file offset and the
    segment address agree modulo the 64 KiB IROM alignment.
    """
    align_past = (addr - SEG_HEADER_LEN) % IROM_ALIGN
    pad_len = ((IROM_ALIGN - (offset % IROM_ALIGN)) + align_past) % IROM_ALIGN
    if pad_len == 0:
        return 0
    if pad_len > SEG_HEADER_LEN:
        return pad_len - SEG_HEADER_LEN
    return pad_len + IROM_ALIGN - SEG_HEADER_LEN


def merge_rom_segments(
    segments: Iterable[tuple[int, bytes]],
) -> tuple[int, bytes] | None:
    """Join irom segments into one flash segment, zero filling the gaps.

    Takes ``(addr, data)`` pairs in address order and returns the flash
    offset and data of the merged segment, or None if there are none.
    """
    iterator = iter(segments)
    first = next(iterator, None)
    if first is None:
        return None
    first_addr, first_data = first
    data = bytearray(first_data)
    for addr, chunk in iterator:
        gap = addr - first_addr - len(data)
        if gap < 0:
            raise ValueError(f"segment at {addr:#x} overlaps the previous segment")
        data.extend(bytes(gap))
        data.extend(chunk)
    return first_addr - IROM_MAP_START, bytes(data)