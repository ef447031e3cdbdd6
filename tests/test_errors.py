import pytest

from espimage.errors import (
    ChipDetectError,
    CommandTimeoutError,
    ConnectionFailedError,
    CsvError,
    DeviceNotFoundError,
    DuplicatePartitionsError,
    ElfError,
    FlashDetectError,
    FlashError,
    FramingError,
    InvalidSubTypeError,
    NoAppError,
    OverlappingPartitionsError,
    OversizedPacketError,
    PartitionTableError,
    RomError,
    RomErrorKind,
    UnalignedPartitionError,
    UnknownImageFormatError,
    for_command,
    line_to_span,
    mark_flashing,
)

SOURCE = "nvs, data, nvs, 0x9000, 0x6000\nfactory, app, factory, 0x10000, 1M\n"


def _spanned(source, span):
    offset, length = span
    return source[offset - 1 : offset - 1 + length]


def test_rom_error_kind_known_codes():
    assert RomErrorKind.from_code(0x05) is RomErrorKind.INVALID_MESSAGE
    assert RomErrorKind.from_code(0x07) is RomErrorKind.INVALID_CRC
    assert RomErrorKind.from_code(0x0B) is RomErrorKind.DEFLATE_ERROR


@pytest.mark.parametrize("raw", [0x00, 0x04, 0x0C, 0x80, 0xFF])
def test_rom_error_kind_unknown_codes_map_to_other(raw):
    assert RomErrorKind.from_code(raw) is RomErrorKind.OTHER


def test_rom_error_kind_messages():
    kind = RomErrorKind.from_code(0x07)
    assert kind.message == "Received message has invalid crc"
    assert RomErrorKind.from_code(0x08).message == "Bootloader failed to write to flash"


def test_rom_error_message_and_kind():
    err = RomError("Sync", 0x06)
    assert str(err) == "Error while running Sync command"
    assert err.kind is RomErrorKind.FAILED_TO_ACT
    assert isinstance(err, FlashError)


def test_timeout_message_with_and_without_command():
    assert str(CommandTimeoutError()) == "Timeout while running command"
    assert str(CommandTimeoutError("FlashBegin")) == "Timeout while running FlashBegin command"


def test_connection_failed_message():
    err = ConnectionFailedError()
    assert str(err) == "Failed to connect to the device"
    assert err.context == "Error while connecting to device"


def test_mark_flashing_changes_context():
    err = mark_flashing(DeviceNotFoundError())
    assert err.during_flashing is True
    assert err.context == "Communication error while flashing device"


def test_mark_flashing_leaves_other_errors():
    err = ChipDetectError(0x1234)
    result = mark_flashing(err)
    assert result is err
    assert not hasattr(result, "during_flashing")


def test_for_command_tags_timeout_and_keeps_flashing_flag():
    err = mark_flashing(CommandTimeoutError())
    tagged = for_command(err, "SpiAttach")
    assert tagged.command == "SpiAttach"
    assert str(tagged) == "Timeout while running SpiAttach command"
    assert tagged.during_flashing is True


def test_for_command_leaves_non_timeout():
    err = FramingError()
    assert for_command(err, "Sync") is err


def test_slip_error_messages():
    assert str(FramingError()) == "Received packet has invalid SLIP framing"
    assert str(OversizedPacketError()) == "Received packet to large for buffer"


def test_chip_and_flash_detect_messages():
    assert str(ChipDetectError(0xDEADBEEF)) == "Unrecognized magic value 0xdeadbeef"
    err = FlashDetectError(0x1B)
    assert err.flash_id == 0x1B
    assert str(err).startswith("Unrecognized flash id 0x")


def test_unknown_image_format():
    err = UnknownImageFormatError("foo")
    assert str(err) == "Unrecognized image format foo"
    assert "direct-boot" in err.help


def test_elf_error_carries_reason():
    err = ElfError("no entry point")
    assert err.reason == "no entry point"
    assert "no entry point" in str(err)


def test_line_to_span_covers_whole_line():
    for number, text in enumerate(SOURCE.splitlines(), start=1):
        assert _spanned(SOURCE, line_to_span(SOURCE, number)) == text


def test_line_to_span_out_of_range():
    with pytest.raises(ValueError):
        line_to_span(SOURCE, 3)
    with pytest.raises(ValueError):
        line_to_span(SOURCE, 0)


def test_overlapping_labels():
    err = OverlappingPartitionsError(SOURCE, 1, 2)
    assert str(err) == "Overlapping partitions"
    assert [text for _, text in err.labels] == ["This partition", "overlaps with this partition"]
    assert _spanned(SOURCE, err.labels[1][0]) == SOURCE.splitlines()[1]


def test_duplicate_labels_name_kind():
    err = DuplicatePartitionsError(SOURCE, 2, 1, "sub-type")
    assert err.labels[1][1] == "has the same sub-type as this partition"
    assert isinstance(err, PartitionTableError)


def test_invalid_subtype_texts():
    err = InvalidSubTypeError(SOURCE, 1, "app", "nvs", "'factory'")
    assert err.labels[0][1] == "'nvs' is not a valid subtype for 'app'"
    assert err.help == "'app' supports the following subtypes: 'factory'"


def test_no_app_and_unaligned():
    assert str(NoAppError(SOURCE)) == "No app partition was found"
    err = UnalignedPartitionError(SOURCE, 2)
    assert err.labels[0][1] == "App partition is not aligned to 64k (0x10000)"


def test_csv_error_with_and_without_line():
    with_line = CsvError(SOURCE, 2, "Unknown sub-type", "extra help. ")
    assert str(with_line) == "Malformed partition table"
    assert with_line.help.startswith("extra help. ")
    assert _spanned(SOURCE, with_line.span) == SOURCE.splitlines()[1]
    without = CsvError(SOURCE, None, "")
    assert without.span is None
    assert without.labels == []
    with pytest.raises(PartitionTableError):
        raise without