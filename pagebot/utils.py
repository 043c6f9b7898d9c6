import re
from typing import Any, List

_WHITESPACE_RE = re.compile(r"\s+")


def normalize_text(text: Any) -> str:
    """Purpose: Normalize free-form text for stable keyword matching.
    Inputs/Outputs: Input is any value; output is a trimmed, case-folded string with
        internal whitespace collapsed to single spaces.
    Side Effects / State: None; pure function.
    Dependencies: Called by the match engine, the content decoder and the workflow.
    Failure Modes: Returns an empty string when input is None or empty.
    If Removed: Exact and ranked matching become case/whitespace sensitive.
    Testing Notes: Thai text must survive untouched.
    """
    # Collapse whitespace, then case-fold.
    if text is None:
        return ""
    return _WHITESPACE_RE.sub(" ", str(text)).strip().casefold()


def split_keywords(raw: Any) -> List[str]:
    """Split a comma-separated keyword cell into trimmed, non-empty keywords."""
    if not raw:
        return []
    if isinstance(raw, (list, tuple)):
        parts = [str(part) for part in raw]
    else:
        parts = str(raw).split(",")
    return [part.strip() for part in parts if part and part.strip()]


def clean_csv_json(text: str) -> str:
    """Purpose: Undo spreadsheet CSV escaping around a JSON cell.
    Inputs/Outputs: Input is a raw cell string such as '"[{""type"":""url""}]"';
        output is '[{"type":"url"}]'.
    Side Effects / State: None; pure function.
    Dependencies: Used only by the content decoder at the knowledge cache boundary.
    Failure Modes: Strings without escaping are returned trimmed and otherwise unchanged.
    If Removed: Menu/Carousel cells pasted from CSV exports fail to decode.
    Testing Notes: Verify wrapping quotes and doubled quotes are both removed.
    """
    # Drop wrapping quotes, then unescape doubled quotes.
    cleaned = text.strip()
    if len(cleaned) >= 2 and cleaned.startswith('"') and cleaned.endswith('"'):
        cleaned = cleaned[1:-1]
    return cleaned.replace('""', '"')


def is_truthy(value: Any) -> bool:
    # Sheets exports booleans as "TRUE"/"FALSE" strings.
    if isinstance(value, bool):
        return value
    if value is None:
        return False
    return str(value).strip().lower() == "true"
