# tests/test_records.py
import pytest

from hostblock import records
from hostblock.models import AddressRecord, LogFile


def test_address_line_layout():
    record = AddressRecord(
        address="203.0.113.5",
        last_activity=1700000000,
        activity_score=7,
        activity_count=3,
        refused_count=12,
        whitelisted=False,
        blacklisted=True,
    )
    line = records.format_address_line(record)

    assert len(line) == 93
    assert line.endswith(b"\n")
    assert line[:1] == b"d"
    assert line[1:40] == b"203.0.113.5".rjust(39)
    assert line[40:60] == b"1700000000".rjust(20)
    assert line[60:70] == b"         7"
    assert line[70:80] == b"         3"
    assert line[80:90] == b"        12"
    assert line[90:92] == b"ny"


def test_parse_address_line():
    line = (
        b"d" + b"2001:db8::1".rjust(39) + b"42".rjust(20)
        + b"5".rjust(10) + b"6".rjust(10) + b"0".rjust(10) + b"yn\n"
    )
    record = records.parse_address_line(line)

    assert record == AddressRecord(
        address="2001:db8::1",
        last_activity=42,
        activity_score=5,
        activity_count=6,
        refused_count=0,
        whitelisted=True,
        blacklisted=False,
    )
    assert record.iptables_rule is False


def test_parse_address_line_rejects_wrong_length():
    line = records.format_address_line(AddressRecord(address="10.0.0.1"))
    assert records.parse_address_line(line[:-2] + b"\n") is None
    assert records.parse_address_line(line[:-1] + b"n\n") is None


def test_parse_address_line_rejects_garbage_numbers():
    line = bytearray(records.format_address_line(AddressRecord(address="10.0.0.1")))
    line[65] = ord("x")
    assert records.parse_address_line(bytes(line)) is None


def test_counters_are_clamped_to_column_width():
    record = AddressRecord(
        address="10.0.0.1",
        last_activity=10 ** 25,
        activity_score=10 ** 10,
        activity_count=9999999999,
        refused_count=-3,
    )
    line = records.format_address_line(record)

    assert len(line) == 93
    assert line[40:60] == b"9" * 20
    assert line[60:70] == b"9" * 10
    assert line[70:80] == b"9" * 10
    assert line[80:90] == b"         0"


@pytest.mark.parametrize(
    "address",
    ["", "a" * 40, "10.0.0.1 x", "адрес"],
)
def test_invalid_addresses_are_rejected(address):
    with pytest.raises(ValueError):
        records.format_address_line(AddressRecord(address=address))


def test_longest_address_fits():
    address = "ffff:ffff:ffff:ffff:ffff:ffff:ffff:ffff"
    assert len(address) == 39
    line = records.format_address_line(AddressRecord(address=address))
    assert records.parse_address_line(line).address == address


def test_bookmark_line_layout():
    line = records.format_bookmark_line(LogFile("/var/log/auth.log", bookmark=1024, size=2048))

    assert line == b"b" + b"1024".rjust(20) + b"2048".rjust(20) + b"/var/log/auth.log\n"
    assert records.parse_bookmark_line(line) == LogFile("/var/log/auth.log", 1024, 2048)


def test_bookmark_path_with_newline_is_rejected():
    with pytest.raises(ValueError):
        records.format_bookmark_line(LogFile("/var/log/a\nb"))


def test_parse_bookmark_line_without_path():
    assert records.parse_bookmark_line(b"b" + b"0".rjust(20) + b"0".rjust(20) + b"\n") is None


def test_line_key():
    address_line = records.format_address_line(AddressRecord(address="10.0.0.1"))
    bookmark_line = records.format_bookmark_line(LogFile("/var/log/secure"))

    assert records.line_key(address_line) == (b"d", "10.0.0.1")
    assert records.line_key(bookmark_line) == (b"b", "/var/log/secure")
    assert records.line_key(b"r" + address_line[1:]) is None
    assert records.line_key(b"r" + bookmark_line[1:]) is None


def test_parse_address_line_rejects_inner_whitespace():
    line = records.format_address_line(AddressRecord(address="10.0.0.2"))
    line = b"d" + b"10.0.0 .2".rjust(39) + line[40:]
    assert len(line) == 93
    assert records.parse_address_line(line) is None
    assert records.line_key(line) is None
