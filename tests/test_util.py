import base64

import pytest

from pcroracle import util


def test_parse_pcr_index():
    assert util.parse_pcr_index("7") == 7
    assert util.parse_pcr_index("23") == 23


@pytest.mark.parametrize("word", ["7x", "", "-1", "a"])
def test_parse_pcr_index_rejects(word):
    with pytest.raises(ValueError):
        util.parse_pcr_index(word)


def test_parse_pcr_mask_all_matches_full_range():
    assert util.parse_pcr_mask("all") == util.parse_pcr_mask("0-31")
    assert util.parse_pcr_mask("all") == util.ALL_PCRS


def test_parse_pcr_mask_single_bits():
    assert util.parse_pcr_mask("0") == 1
    assert util.parse_pcr_mask("4") == 1 << 4


def test_parse_pcr_mask_list_equals_range():
    assert util.parse_pcr_mask("0,1,2") == util.parse_pcr_mask("0-2")
    assert util.parse_pcr_mask("2,,3") == util.parse_pcr_mask("2-3")


def test_parse_pcr_mask_reverse_range_is_single():
    assert util.parse_pcr_mask("3-1") == util.parse_pcr_mask("3")


def test_parse_pcr_mask_empty():
    assert util.parse_pcr_mask("") == 0


@pytest.mark.parametrize("word", ["32", "x", "1-", "0-32", "1;2"])
def test_parse_pcr_mask_rejects(word):
    with pytest.raises(ValueError):
        util.parse_pcr_mask(word)


@pytest.mark.parametrize("text", ["0-7,9", "4", "0,2,4", "0-31", "8-10,14,16-17,31"])
def test_pcr_mask_round_trip(text):
    assert util.print_pcr_mask(util.parse_pcr_mask(text)) == text


def test_print_pcr_mask_empty():
    assert util.print_pcr_mask(0) == ""


def test_parse_octet_string():
    assert util.parse_octet_string("deadbeef") == bytes.fromhex("deadbeef")
    assert util.parse_octet_string("DEADBEEF") == util.parse_octet_string("deadbeef")
    assert util.parse_octet_string("") == b""


@pytest.mark.parametrize("text", ["abc", "zz", "de ad", "0x00"])
def test_parse_octet_string_rejects(text):
    with pytest.raises(ValueError):
        util.parse_octet_string(text)


def test_print_octet_string_short():
    data = bytes(range(5, 20))
    text = util.print_octet_string(data)
    assert bytes.fromhex("".join(text.split(":"))) == data
    assert text.count(":") == len(data) - 1


def test_print_octet_string_long():
    data = bytes(40)
    assert util.print_octet_string(data) == f"<{len(data)} bytes of data>"


def test_print_hex_string():
    data = bytes(range(64))
    assert util.parse_octet_string(util.print_hex_string(data)) == data
    long_data = bytes(65)
    assert util.print_hex_string(long_data) == f"<{len(long_data)} bytes of data>"


@pytest.mark.parametrize("data", [b"", b"a", b"ab", b"abc", b"abcd", bytes(range(256))])
def test_print_base64_value(data):
    text = util.print_base64_value(data)
    assert base64.b64decode(text) == data
    assert len(text) % 4 == 0


def test_hexdump_lines():
    lines = []
    data = b"AB\x00" + bytes(40)
    util.hexdump(data, lines.append, 2)
    assert len(lines) == 2
    assert lines[0].startswith("  0000 ")
    assert lines[0].endswith(" AB" + "." * 29)
    assert lines[1].startswith("  0020 ")
    assert all(len(line) == len(lines[0]) - 32 + 11 for line in lines[1:])


def test_utf16_round_trip():
    text = "shim\u00e9x64.efi"
    encoded = util.convert_to_utf16le(text)
    assert len(encoded) == 2 * len(text)
    assert util.convert_from_utf16le(encoded) == text


def test_utf16_pins_one_value():
    assert util.convert_to_utf16le("A") == b"A\x00"


def test_utf16_odd_length_rejected():
    with pytest.raises(ValueError):
        util.convert_from_utf16le(b"A\x00B")


def test_timing():
    start = util.timing_begin()
    later = util.timing_begin()
    assert later >= start
    assert util.timing_since(start) >= 0


@pytest.mark.parametrize(
    "a, b, expected",
    [("3.2", "3.1", 1), ("3.1", "3.1", 0), ("3", "3.1", -1), ("4.0.1", "3.1", 1), ("3.1..2", "3.1.2", 0)],
)
def test_version_string_compare(a, b, expected):
    assert util.version_string_compare(a, b) == expected
    assert util.version_string_compare(b, a) == -expected


def test_version_string_compare_partial_parse():
    assert util.version_string_compare("3.1.rc1", "3.1") == 0


def test_path_conversion_round_trip():
    path = "/EFI/BOOT/grub.efi"
    dos = util.path_unix2dos(path)
    assert "/" not in dos
    assert dos.split("\\") == path.split("/")
    assert util.path_dos2unix(dos) == path


def test_path_too_long():
    with pytest.raises(ValueError):
        util.path_unix2dos("a" * util.PATH_MAX)


@pytest.mark.parametrize(
    "path, suffix, expected",
    [
        ("key.pem", "pem", True),
        ("KEY.PEM", ".pem", True),
        ("entry.conf", ".conf", True),
        ("pem", "pem", False),
        ("keypem", "pem", False),
        ("key.der", "pem", False),
    ],
)
def test_path_has_file_extension(path, suffix, expected):
    assert util.path_has_file_extension(path, suffix) is expected


def test_read_single_line_file(tmp_path):
    path = tmp_path / "machine-id"
    path.write_text("abc\ndef\n")
    assert util.read_single_line_file(str(path)) == "abc"


def test_read_single_line_file_empty(tmp_path):
    path = tmp_path / "empty"
    path.write_text("")
    assert util.read_single_line_file(str(path)) == ""


def test_read_single_line_file_missing(tmp_path):
    assert util.read_single_line_file(str(tmp_path / "missing")) is None