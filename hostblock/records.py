# hostblock/records.py
"""
Fixed-width line codec for the hostblock data file.

Address record, 92 bytes plus newline:
    d|address(39)|last_activity(20)|activity_score(10)|activity_count(10)|
    refused_count(10)|whitelisted(1)|blacklisted(1)

Log file bookmark, variable length:
    b|bookmark(20)|size(20)|path

Numbers and the address are right-justified and padded with spaces. Flags are
"y" or "n". A line whose first byte was overwritten with "r" is removed.
"""
import logging
from typing import Optional, Tuple

from .models import AddressRecord, LogFile

logger = logging.getLogger(__name__)

ADDRESS_TYPE = b"d"
BOOKMARK_TYPE = b"b"
REMOVED_TYPE = b"r"
NEWLINE = b"\n"

ADDRESS_WIDTH = 39
TIMESTAMP_WIDTH = 20
COUNTER_WIDTH = 10
OFFSET_WIDTH = 20

# everything after the address field, rewritten on update
ADDRESS_PAYLOAD_START = 1 + ADDRESS_WIDTH
ADDRESS_PAYLOAD_LEN = TIMESTAMP_WIDTH + 3 * COUNTER_WIDTH + 2
ADDRESS_LINE_LEN = ADDRESS_PAYLOAD_START + ADDRESS_PAYLOAD_LEN

# bookmark and size, rewritten on update; the path is never touched
BOOKMARK_PAYLOAD_START = 1
BOOKMARK_PAYLOAD_LEN = 2 * OFFSET_WIDTH
BOOKMARK_PATH_START = BOOKMARK_PAYLOAD_START + BOOKMARK_PAYLOAD_LEN


def _format_number(value: int, width: int, name: str) -> bytes:
    limit = 10 ** width - 1
    if value < 0:
        logger.warning("%s %d is negative, storing 0", name, value)
        value = 0
    elif value > limit:
        logger.warning("%s %d does not fit %d digits, storing %d", name, value, width, limit)
        value = limit
    return str(value).rjust(width).encode("ascii")


def _format_flag(value: bool) -> bytes:
    return b"y" if value else b"n"


def _parse_number(field: bytes) -> int:
    text = field.decode("ascii").strip()
    if not text.isdigit():
        raise ValueError(f"not an unsigned number: {field!r}")
    return int(text)


def encode_address(address: str) -> bytes:
    """Return the padded 39-byte address field, or raise ValueError."""
    if not address or any(c.isspace() for c in address):
        raise ValueError(f"invalid address {address!r}")
    try:
        raw = address.encode("ascii")
    except UnicodeEncodeError:
        raise ValueError(f"address {address!r} is not ASCII") from None
    if len(raw) > ADDRESS_WIDTH:
        raise ValueError(f"address {address!r} is longer than {ADDRESS_WIDTH} bytes")
    return raw.rjust(ADDRESS_WIDTH)


def format_address_payload(record: AddressRecord) -> bytes:
    return b"".join(
        (
            _format_number(record.last_activity, TIMESTAMP_WIDTH, "last activity"),
            _format_number(record.activity_score, COUNTER_WIDTH, "activity score"),
            _format_number(record.activity_count, COUNTER_WIDTH, "activity count"),
            _format_number(record.refused_count, COUNTER_WIDTH, "refused count"),
            _format_flag(record.whitelisted),
            _format_flag(record.blacklisted),
        )
    )


def format_address_line(record: AddressRecord) -> bytes:
    return (
        ADDRESS_TYPE
        + encode_address(record.address)
        + format_address_payload(record)
        + NEWLINE
    )


def parse_address_line(line: bytes) -> Optional[AddressRecord]:
    """
    Decode a "d" line (with or without its newline).
    Returns None for any other kind of line, a wrong length or bad fields.
    """
    line = line.rstrip(NEWLINE)
    if line[:1] != ADDRESS_TYPE or len(line) != ADDRESS_LINE_LEN:
        return None

    try:
        address = line[1:ADDRESS_PAYLOAD_START].decode("ascii").strip()
        # same rules as the writer, so a loaded record can always be saved
        encode_address(address)
        pos = ADDRESS_PAYLOAD_START
        last_activity = _parse_number(line[pos:pos + TIMESTAMP_WIDTH])
        pos += TIMESTAMP_WIDTH
        counters = []
        for _ in range(3):
            counters.append(_parse_number(line[pos:pos + COUNTER_WIDTH]))
            pos += COUNTER_WIDTH
    except (UnicodeDecodeError, ValueError):
        return None

    return AddressRecord(
        address=address,
        last_activity=last_activity,
        activity_score=counters[0],
        activity_count=counters[1],
        refused_count=counters[2],
        whitelisted=line[pos:pos + 1] == b"y",
        blacklisted=line[pos + 1:pos + 2] == b"y",
    )


def format_bookmark_payload(log_file: LogFile) -> bytes:
    return (
        _format_number(log_file.bookmark, OFFSET_WIDTH, "bookmark")
        + _format_number(log_file.size, OFFSET_WIDTH, "log file size")
    )


def format_bookmark_line(log_file: LogFile) -> bytes:
    path = log_file.path.encode("utf-8")
    if not path.strip() or NEWLINE in path:
        raise ValueError(f"invalid log file path {log_file.path!r}")
    return BOOKMARK_TYPE + format_bookmark_payload(log_file) + path + NEWLINE


def parse_bookmark_line(line: bytes) -> Optional[LogFile]:
    line = line.rstrip(NEWLINE)
    if line[:1] != BOOKMARK_TYPE or len(line) <= BOOKMARK_PATH_START:
        return None

    try:
        bookmark = _parse_number(line[1:1 + OFFSET_WIDTH])
        size = _parse_number(line[1 + OFFSET_WIDTH:BOOKMARK_PATH_START])
        path = line[BOOKMARK_PATH_START:].decode("utf-8").strip()
    except (UnicodeDecodeError, ValueError):
        return None

    if not path:
        return None
    return LogFile(path=path, bookmark=bookmark, size=size)


def line_key(line: bytes) -> Optional[Tuple[bytes, str]]:
    """
    Return (record type, key) for a live, well formed line, None otherwise.
    The key is the address for "d" lines and the path for "b" lines.
    """
    record_type = line[:1]
    if record_type == ADDRESS_TYPE:
        record = parse_address_line(line)
        if record is not None:
            return ADDRESS_TYPE, record.address
    elif record_type == BOOKMARK_TYPE:
        log_file = parse_bookmark_line(line)
        if log_file is not None:
            return BOOKMARK_TYPE, log_file.path
    return None
