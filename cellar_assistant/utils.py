import math
import re
from typing import Any, Mapping, Optional

_WHITESPACE_RE = re.compile(r"\s+")
_NON_NUMERIC_RE = re.compile(r"[^\d,.]")
_LEADING_NUMBER_RE = re.compile(r"\d+(?:\.\d*)?|\.\d+")

EMPTY_MARKER = "(empty)"


def normalize_field(text: Any) -> str:
    """Purpose: Normalize spreadsheet header or cell text for stable comparison.
    Inputs/Outputs: Input is any value; output is a trimmed string with a leading BOM
        removed, non-breaking spaces turned into spaces, and whitespace collapsed.
    Side Effects / State: None; pure function.
    Dependencies: Uses regex; called by lookup and the relevance filter.
    Failure Modes: Returns an empty string for None.
    If Removed: Header casing/spacing drift in the sheet export breaks field access.
    Testing Notes: Check "\\ufeff Name\\u00a0 " becomes "Name".
    """
    # Case is preserved here; callers lowercase when comparing.
    if text is None:
        return ""
    cleaned = str(text)
    if cleaned.startswith("\ufeff"):
        cleaned = cleaned[1:]
    cleaned = cleaned.replace("\u00a0", " ")
    return _WHITESPACE_RE.sub(" ", cleaned).strip()


def normalize_key(text: Any) -> str:
    """Lowercased normalize_field output, used as the comparison key."""
    return normalize_field(text).lower()


def lookup(record: Mapping[str, Any], field_name: str) -> str:
    """Purpose: Read a named field from a loosely-typed inventory record.
    Inputs/Outputs: Inputs are a record mapping and a field name; output is the trimmed
        value as a string, or "" when the field is missing or None.
    Side Effects / State: None.
    Dependencies: Uses normalize_key on both the record keys and the wanted name.
    Failure Modes: None; absent fields yield an empty string.
    If Removed: Prompt formatting and scoring cannot read sheet columns.
    Testing Notes: lookup({" Name ": "X"}, "name") == "X".
    """
    wanted = normalize_key(field_name)
    for key, value in record.items():
        if normalize_key(key) == wanted:
            if value is None:
                return ""
            return str(value).strip()
    return ""


def parse_locale_number(raw: Any) -> Optional[float]:
    """Purpose: Convert locally formatted price/stock text into a float.
    Inputs/Outputs: Input is raw cell text such as "450,-" or "1.200,00"; output is a
        finite float or None.
    Side Effects / State: None; pure function.
    Dependencies: Uses regex and math.isfinite.
    Failure Modes: Never raises; empty, "-", "(empty)" and garbage input return None.
    If Removed: The model loses the numeric _p/_s helpers and misreads stock levels.
    Testing Notes: "450,-" -> 450.0, "1.200,00" -> 1200.0, "12,5" -> 12.5, "" -> None.
    """
    if raw is None:
        return None
    text = str(raw).strip()
    if not text or text == "-":
        return None

    # ",-" is the "whole kroner" suffix.
    if text.endswith(",-"):
        text = text[:-2]
    text = _NON_NUMERIC_RE.sub("", text)

    if "." in text and "," in text:
        text = text.replace(".", "").replace(",", ".", 1)
    elif "," in text:
        text = text.replace(",", ".", 1)

    match = _LEADING_NUMBER_RE.match(text)
    if not match:
        return None
    value = float(match.group(0))
    if not math.isfinite(value):
        return None
    return value
