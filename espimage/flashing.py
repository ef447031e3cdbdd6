"""Flash geometry, SPI attach parameters and the flashing helpers built on them."""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from enum import IntEnum

from espimage.errors import FlashDetectError

FLASH_SECTOR_SIZE = 0x1000
FLASH_WRITE_SIZE = 0x400
FLASH_BLOCK_SIZE = 0x100
FLASH_SECTORS_PER_BLOCK = FLASH_SECTOR_SIZE // FLASH_BLOCK_SIZE

CHIP_DETECT_MAGIC_REG_ADDR = 0x40001000
DEFAULT_CONNECT_ATTEMPTS = 7
DEFAULT_TIMEOUT = 3.0

CHECKSUM_INIT = 0xEF


class FlashSize(IntEnum):
    """Flash sizes as reported by the size byte of the flash id."""

    FLASH_256KB = 0x12
    FLASH_512KB = 0x13
    FLASH_1MB = 0x14
    FLASH_2MB = 0x15
    FLASH_4MB = 0x16
    FLASH_8MB = 0x17
    FLASH_16MB = 0x18
    FLASH_32MB = 0x19
    FLASH_64MB = 0x1A
    # Hints that an alternate detection method should be tried.
    FLASH_RETRY = 0xFF

    @classmethod
    def from_id(cls, value: int) -> FlashSize:
        """Return the size for a size id, raising FlashDetectError if unknown."""
        try:
            return cls(value)
        except ValueError:
            raise FlashDetectError(value) from None

    def __str__(self) -> str:
        return _FLASH_SIZE_NAMES[self]


_FLASH_SIZE_NAMES = {
    FlashSize.FLASH_256KB: "256KB",
    FlashSize.FLASH_512KB: "512KB",
    FlashSize.FLASH_1MB: "1MB",
    FlashSize.FLASH_2MB: "2MB",
    FlashSize.FLASH_4MB: "4MB",
    FlashSize.FLASH_8MB: "8MB",
    FlashSize.FLASH_16MB: "16MB",
    FlashSize.FLASH_32MB: "32MB",
    FlashSize.FLASH_64MB: "64MB",
    FlashSize.FLASH_RETRY: "FlashRetry",
}


@dataclass(frozen=True)
class SpiAttachParams:
    """GPIO pins used to attach the SPI flash."""

    clk: int = 0
    q: int = 0
    d: int = 0
    hd: int = 0
    cs: int = 0

    @classmethod
    def esp32_pico_d4(cls) -> SpiAttachParams:
        """Pin assignment of the ESP32-PICO-D4 package."""
        return cls(clk=6, q=17, d=8, hd=11, cs=16)

    def encode(self) -> bytes:
        """Encode the pins as the payload of the SPI attach command."""
        packed = (
            (self.hd << 24)
            | (self.cs << 18)
            | (self.d << 12)
            | (self.q << 6)
            | self.clk
        ) & 0xFFFFFFFF
        if packed == 0:
            return bytes(5)
        return packed.to_bytes(4, "little")


TRY_SPI_PARAMS = (SpiAttachParams(), SpiAttachParams.esp32_pico_d4())


def get_erase_size(offset: int, size: int) -> int:
    """Size to request for erasing, working around the ROM's erase-size quirk."""
    sector_count = (size + FLASH_SECTOR_SIZE - 1) // FLASH_SECTOR_SIZE
    start_sector = offset // FLASH_SECTOR_SIZE

    head_sectors = min(
        FLASH_SECTORS_PER_BLOCK - (start_sector % FLASH_SECTORS_PER_BLOCK),
        sector_count,
    )

    if sector_count < 2 * head_sectors:
        return (sector_count + 1) // 2 * FLASH_SECTOR_SIZE
    return (sector_count - head_sectors) * FLASH_SECTOR_SIZE


def checksum(data: Iterable[int], initial: int = CHECKSUM_INIT) -> int:
    """XOR every byte of ``data`` into ``initial``."""
    result = initial & 0xFF
    for byte in data:
        result ^= byte
    return result