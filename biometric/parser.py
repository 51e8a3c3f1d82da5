"""
Punch-log parsing.

Scanner exports are tab separated text files:

    No  DevNo  UserId  Name  Mode  DateTime
    1   1      10      Nodado A  FP  2025-11-05  05:50:25

The parser never touches the database. Bad lines are returned as
diagnostics so the caller can persist them on the upload row.
"""
import re
from datetime import datetime, date, timedelta
from typing import Dict, Any, List, Optional

from biometric.exceptions import EmptyPunchFileError

DATETIME_FORMAT = "%Y-%m-%d %H:%M:%S"

_CONTROL_CHARS = re.compile(r"[\x00-\x08\x0B\x0C\x0E-\x1F\x7F]")
_DATETIME_HEAD = re.compile(r"^(\d{4}-\d{2}-\d{2}\s+\d{2}:\d{2}:\d{2})")
_PUNCTUATION = re.compile(r"[^\w\s]")


def decode_content(raw) -> str:
    """Bytes from the device are usually UTF-8, sometimes Windows-1252."""
    if isinstance(raw, str):
        return raw
    try:
        return raw.decode("utf-8")
    except UnicodeDecodeError:
        return raw.decode("cp1252", errors="replace")


def normalize_name(name: str) -> str:
    """
    Normalize a name for matching:
      - "Ogao-ogao"     -> "ogao ogao"
      - "cabarliza m."  -> "cabarliza m"
      - "Doe,  John"    -> "doe john"
    """
    if not name:
        return ""
    value = name.strip().lower().replace("-", " ")
    value = _PUNCTUATION.sub(" ", value)
    return " ".join(value.split())


def _split_columns(line: str) -> Optional[List[str]]:
    columns = re.split(r"\t+", line)
    if len(columns) >= 6:
        # DateTime is the last column, anything extra belongs to it
        return columns[:5] + [" ".join(columns[5:])]

    # Fallback: columns separated by 2+ spaces, datetime may be split in two
    parts = re.split(r"\s{2,}", line)
    if len(parts) >= 6:
        return parts[:5] + [" ".join(parts[5:])]
    return None


def _parse_datetime(value: str) -> datetime:
    value = re.sub(r"\s{2,}", " ", value)
    value = re.sub(r"[^\d\-\s:]", "", value).strip()

    # "2025-01-13 22:26:181" -> "2025-01-13 22:26:18"
    if len(value) > 19:
        m = _DATETIME_HEAD.match(value)
        if m:
            value = re.sub(r"\s+", " ", m.group(1))
    return datetime.strptime(value, DATETIME_FORMAT)


def _to_int(value) -> Optional[int]:
    value = (value or "").strip()
    return int(value) if value.isdigit() else None


def _is_header(line: str) -> bool:
    columns = _split_columns(line)
    if not columns:
        return True
    return _to_int(columns[0]) is None


def parse_line(line: str, line_no: int = 0) -> Dict[str, Any]:
    """
    Parse a single row. Raises ValueError with a short reason when the
    row cannot be used.
    """
    columns = _split_columns(line)
    if not columns:
        raise ValueError("expected 6 columns")

    name = columns[3].strip()
    dt_str = columns[5].strip()
    if not name:
        raise ValueError("empty name")
    if not dt_str:
        raise ValueError("empty datetime")

    try:
        punched_at = _parse_datetime(dt_str)
    except ValueError:
        raise ValueError(f"invalid datetime: {dt_str}")

    normalized = normalize_name(name)
    if not normalized:
        raise ValueError("empty name")

    return {
        "line_no": line_no,
        "sequence_no": _to_int(columns[0]),
        "dev_no": columns[1].strip() or None,
        "user_id": columns[2].strip() or None,
        "name": name,
        "normalized_name": normalized,
        "mode": columns[4].strip() or None,
        "punched_at": punched_at,
    }


def parse_content(raw, date_from: date = None, date_to: date = None) -> Dict[str, Any]:
    """
    Returns:
      {
        "records": [...],         # valid punches, file order
        "skipped_lines": [...],   # {"line_no", "reason", "content"}
        "date_warnings": [...],   # one per out-of-range calendar date
      }

    Raises EmptyPunchFileError when not a single line is usable.
    """
    content = decode_content(raw)
    content = content.replace("\0", "")
    content = content.replace("\r\n", "\n").replace("\r", "\n")
    content = _CONTROL_CHARS.sub("", content)

    records = []
    skipped = []

    lines = content.split("\n")
    for idx, line in enumerate(lines, start=1):
        line = line.strip()
        if not line:
            continue
        if idx == 1 and _is_header(line):
            continue
        try:
            records.append(parse_line(line, idx))
        except ValueError as e:
            skipped.append({"line_no": idx, "reason": str(e), "content": line[:200]})

    if not records:
        raise EmptyPunchFileError("No valid punch records found in file", skipped_lines=skipped)

    return {
        "records": records,
        "skipped_lines": skipped,
        "date_warnings": date_range_warnings(records, date_from, date_to),
    }


def date_range_warnings(records, date_from: date = None, date_to: date = None) -> List[str]:
    """
    Out-of-range punches are kept, only reported. The range gets one extra
    day at the end for overnight check-outs.
    """
    if not date_from or not date_to:
        return []

    upper = date_to + timedelta(days=1)
    outside = {}
    for rec in records:
        d = rec["punched_at"].date()
        if d < date_from or d > upper:
            outside[d] = outside.get(d, 0) + 1

    return [
        f"{d.isoformat()}: {count} record(s) outside declared range "
        f"{date_from.isoformat()} to {date_to.isoformat()}"
        for d, count in sorted(outside.items())
    ]
