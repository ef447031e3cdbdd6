# espimage

Building blocks for the binary data that goes onto an ESP32 or ESP8266
flash chip: ESP-IDF partition tables, image header and segment
encodings, flash geometry helpers, and the exceptions raised when any
of them are malformed. It depends only on the standard library.

## Installation

```
pip install espimage
```

To run the test suite:

```
pip install "espimage[test]"
pytest
```

## Partition tables

`espimage.partition_table.PartitionTable.from_csv` parses an ESP-IDF
partition table CSV, validates it and returns a `PartitionTable`:

```python
from espimage.partition_table import PartitionTable, PartitionType

csv_text = """
# Name,   Type, SubType, Offset,  Size, Flags
nvs,      data, nvs,     0x9000,  0x6000,
phy_init, data, phy,     0xf000,  0x1000,
factory,  app,  factory, 0x10000, 1M,
"""

table = PartitionTable.from_csv(csv_text)
binary = table.to_bytes()          # 0xC00 bytes
factory = table.find("factory")    # Partition(offset=0x10000, size=0x100000, ...)
first_app = table.find_by_type(PartitionType.APP)
```

- Lines starting with `#` and blank lines are skipped; fields are
  trimmed.
- Offsets and sizes accept hexadecimal (`0x1000`), decimal and `k`/`M`
  suffixes (`64K`, `1M`), all limited to 32 bits.
- A blank offset is filled in from the end of the previous partition
  (starting at `0x9000`), rounded up to 64 KiB for app partitions and
  to 4 bytes for data partitions.
- Names longer than 16 characters are truncated.

`to_bytes()` writes 32 bytes per partition, then the `0xEB 0xEB` marker
line with the MD5 of the entries, then `0xFF` padding up to `0xC00`
bytes. `save(writer)` writes the same bytes to a binary file object.
`PartitionTable.basic(...)` builds a table with `nvs`, `phy_init` and
`factory` partitions at the offsets and sizes given.

A malformed table raises a subclass of
`espimage.errors.PartitionTableError`:

| Exception | Raised for |
|---|---|
| `CsvError` | unreadable records, unknown types or sub-types, bad sizes, unequal field counts |
| `InvalidSubTypeError` | a sub-type that does not belong to the partition's type |
| `UnalignedPartitionError` | an app partition not aligned to `0x10000` |
| `OverlappingPartitionsError` | two partitions whose address ranges intersect |
| `DuplicatePartitionsError` | a repeated name, or a repeated sub-type other than `fat`/`spiffs` |
| `NoAppError` | a table with no app partition |

Each carries the source text in `source`, a `code`, an optional `help`
and `labels`: `((offset, length), text)` pairs marking the offending
lines, computed with `espimage.errors.line_to_span`.

## Image helpers

`espimage.image_format` provides:

- `ImageFormatId` with `parse("bootloader")` / `parse("direct-boot")`;
  other names raise `UnknownImageFormatError`.
- `encode_common_header`, `encode_segment_header` and
  `encode_esp32_extended_header`, producing the little-endian headers
  of an image.
- `encode_flash_size_esp32` and `encode_flash_size_esp8266`, giving the
  flash-size bits of the header's flash config byte for a `FlashSize`;
  unsupported sizes raise `FlashDetectError`.
- `segment_padding(offset, addr)`, the padding to insert so a segment
  lands on the 64 KiB IROM alignment, and `merge_rom_segments`, which
  joins `(addr, data)` irom segments into one zero-filled block at its
  flash offset.

## Flashing helpers

`espimage.flashing` provides `FlashSize` (with `from_id` for the size
byte of a flash id, and names such as `"4MB"` as its string form),
`SpiAttachParams` with `encode()` and the `esp32_pico_d4()` pin set,
`get_erase_size(offset, size)` and `checksum(data, initial=0xEF)`.

`espimage.errors` also defines `RomError`/`RomErrorKind` for ROM
bootloader error codes and connection errors such as
`ConnectionFailedError` and `CommandTimeoutError`, together with
`mark_flashing` and `for_command` to tag them with their context.

## What this package does not do

It does not open serial ports or talk to a device: nothing here
connects, detects chips, or writes flash. It does not read ELF files,
and it does not assemble a complete application image by itself; it
supplies the headers, padding and partition table to build one. There
is no command-line tool.