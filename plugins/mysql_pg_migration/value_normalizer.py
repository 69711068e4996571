"""
Value Normalization Module

Turns raw MySQL values into values PostgreSQL will accept. Every value is
tagged with the kind of its target column at extraction time, and all
normalization dispatches on that tag.

The encoding repairs (repair_utf8, transliterate_ascii) are fallbacks used by
the batch loader only after a row has been rejected; they are not part of the
normal path.
"""

from typing import Any, List, Sequence
import re
import unicodedata

from mysql_pg_migration.models import ColumnDescriptor, Row, TaggedValue, ValueKind

TEMPORAL_TYPE_PREFIXES = ("timestamp", "date", "time")
NUMERIC_TYPES = {
    "smallint", "integer", "bigint", "numeric", "decimal", "real",
    "double precision", "boolean", "smallserial", "serial", "bigserial",
}
BINARY_TYPES = {"bytea"}

# MySQL's all-zero date, optionally followed by a time of day
ZERO_DATE_PATTERN = re.compile(r"^0000-00-00(?:[ T](\d{2}:\d{2}:\d{2}(?:\.\d+)?))?$")
ZERO_TIME_PATTERN = re.compile(r"^00:00:00(?:\.0+)?$")


def kind_for_type(data_type: str) -> ValueKind:
    """
    Map a PostgreSQL column type to the kind used for its non-NULL values.

    Args:
        data_type: Type name as reported by information_schema.columns

    Returns:
        ValueKind for the column
    """
    # 'numeric(10,2)' -> 'numeric', 'timestamp(3) without time zone' -> 'timestamp without time zone'
    normalized = re.sub(r"\(.*?\)", "", data_type.lower()).strip()
    if normalized.endswith("[]"):
        return ValueKind.TEXT
    if normalized.startswith(TEMPORAL_TYPE_PREFIXES) or normalized == "interval":
        return ValueKind.TEMPORAL
    if normalized in NUMERIC_TYPES:
        return ValueKind.NUMERIC
    if normalized in BINARY_TYPES:
        return ValueKind.BINARY
    return ValueKind.TEXT


def decode_text(payload: Any, encoding: str = "utf-8") -> Any:
    """
    Decode raw source bytes destined for a text column.

    Undecodable bytes survive as lone surrogates, so the row is rejected when
    bound and goes through the repair cascade instead of failing the read.
    Non-bytes payloads are returned unchanged.
    """
    if isinstance(payload, (bytes, bytearray, memoryview)):
        return bytes(payload).decode(encoding, "surrogateescape")
    return payload


def tag_row(values: Sequence[Any], columns: Sequence[ColumnDescriptor], encoding: str = "utf-8") -> Row:
    """Pair each raw value with the kind of the column it belongs to."""
    tagged = []
    for value, column in zip(values, columns):
        if value is None:
            tagged.append(TaggedValue(ValueKind.NULL, None))
            continue
        kind = kind_for_type(column.data_type)
        if kind == ValueKind.TEXT:
            value = decode_text(value, encoding)
        tagged.append(TaggedValue(kind, value))
    return tuple(tagged)


def rewrite_zero_date(value: str, data_type: str, placeholder: str) -> str:
    """
    Replace MySQL's zero date with a placeholder PostgreSQL accepts.

    '0000-00-00' and '0000-00-00 00:00:00' become the placeholder. A zero date
    carrying a real time of day keeps the time on the placeholder's date.
    Anything else is returned unchanged.
    """
    match = ZERO_DATE_PATTERN.match(value.strip())
    if not match:
        return value

    placeholder_date = placeholder.split(" ")[0]
    if data_type.lower() == "date":
        return placeholder_date

    time_of_day = match.group(1)
    if time_of_day is None or ZERO_TIME_PATTERN.match(time_of_day):
        return placeholder
    return f"{placeholder_date} {time_of_day}"


def normalize_value(value: TaggedValue, data_type: str, placeholder: str) -> TaggedValue:
    """Normal-path transform for a single value."""
    if value.kind == ValueKind.TEMPORAL:
        payload = value.payload
        if isinstance(payload, bytes):
            payload = payload.decode("ascii", "ignore")
        if isinstance(payload, str):
            return TaggedValue(value.kind, rewrite_zero_date(payload, data_type, placeholder))
        return value

    if value.kind == ValueKind.NUMERIC and data_type.lower() == "boolean":
        # MySQL tinyint(1) arrives as 0/1
        if isinstance(value.payload, (bytes, bytearray)):
            return TaggedValue(value.kind, any(value.payload))
        return TaggedValue(value.kind, bool(value.payload))

    if value.kind == ValueKind.NUMERIC and isinstance(value.payload, (bytes, bytearray)):
        # BIT(n) arrives as big-endian bytes
        return TaggedValue(value.kind, int.from_bytes(value.payload, "big"))

    if value.kind == ValueKind.TEXT and isinstance(value.payload, (bytes, bytearray, memoryview)):
        # Bound as bytes, psycopg2 would send a bytea literal and text columns would store its hex form
        return TaggedValue(value.kind, decode_text(value.payload))

    return value


def normalize_row(row: Row, columns: Sequence[ColumnDescriptor], placeholder: str) -> Row:
    return tuple(
        normalize_value(value, column.data_type, placeholder)
        for value, column in zip(row, columns)
    )


def row_params(row: Row) -> List[Any]:
    """Payloads in column order, ready for parameter binding."""
    return [value.payload for value in row]


def has_text(row: Row) -> bool:
    return any(value.kind == ValueKind.TEXT for value in row)


def _utf8_text(payload: Any) -> Any:
    if isinstance(payload, (bytes, bytearray, memoryview)):
        text = bytes(payload).decode("utf-8", "ignore")
    elif isinstance(payload, str):
        text = payload.encode("utf-8", "ignore").decode("utf-8", "ignore")
    else:
        return payload
    # PostgreSQL text cannot hold NUL
    return text.replace("\x00", "")


def _ascii_text(payload: Any) -> Any:
    text = _utf8_text(payload)
    if not isinstance(text, str):
        return text
    return unicodedata.normalize("NFKD", text).encode("ascii", "ignore").decode("ascii")


def repair_utf8(row: Row) -> Row:
    """
    Lossy same-encoding repair of every TEXT value.

    Invalid byte sequences, unpaired surrogates and NUL characters are
    dropped. Non-text values are untouched.
    """
    return tuple(
        TaggedValue(value.kind, _utf8_text(value.payload)) if value.kind == ValueKind.TEXT else value
        for value in row
    )


def transliterate_ascii(row: Row) -> Row:
    """
    Re-encode every TEXT value as 7-bit ASCII.

    Accented characters are decomposed and reduced to their base letter;
    anything with no ASCII form is dropped.
    """
    return tuple(
        TaggedValue(value.kind, _ascii_text(value.payload)) if value.kind == ValueKind.TEXT else value
        for value in row
    )
