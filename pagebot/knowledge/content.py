from __future__ import annotations

"""Knowledge entries and their tagged content variants.

Rows arrive from a spreadsheet-shaped source as loosely typed dicts (``type`` plus a
``media`` cell that may be CSV-escaped JSON). ``decode_row`` validates them once so the
match engine and the workflow only ever see structured content.
"""

import json
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Tuple, Union

from ..utils import clean_csv_json, is_truthy, normalize_text, split_keywords

logger = logging.getLogger("pagebot.knowledge")

NO_TEXT = "-"
DEFAULT_MENU_TEXT = "กรุณาเลือกหัวข้อ"


class ContentType(str, Enum):
    TEXT = "text"
    IMAGE = "image"
    MENU = "menu"
    CAROUSEL = "carousel"

    @classmethod
    def parse(cls, raw: Any) -> "ContentType":
        value = normalize_text(raw)
        if not value:
            return cls.TEXT
        try:
            return cls(value)
        except ValueError:
            logger.warning("unknown content type=%r, treating as text", raw)
            return cls.TEXT


class ContentDecodeError(ValueError):
    """Raised when a structured media cell cannot be decoded or validated."""


@dataclass(frozen=True)
class TextContent:
    text: str


@dataclass(frozen=True)
class ImageContent:
    url: str


@dataclass(frozen=True)
class MenuContent:
    text: str
    buttons: Tuple[Dict[str, Any], ...]


@dataclass(frozen=True)
class CarouselContent:
    elements: Tuple[Dict[str, Any], ...]


@dataclass(frozen=True)
class MalformedContent:
    """Structured media that failed validation; rendered as an apology."""
    content_type: ContentType
    error: str


Content = Union[TextContent, ImageContent, MenuContent, CarouselContent, MalformedContent]


@dataclass(frozen=True, eq=False)
class KnowledgeEntry:
    """One curated question/answer row. Identity equality: entries are de-duplicated by object."""
    keywords: Tuple[str, ...]
    question: str
    answer: str
    content_type: ContentType
    content: Optional[Content]
    note: str = ""
    active: bool = True
    row_index: int = -1
    normalized_keywords: Tuple[str, ...] = field(default=(), repr=False)

    @property
    def has_text(self) -> bool:
        return bool(self.answer.strip()) and self.answer.strip() != NO_TEXT


def decode_row(row: Mapping[str, Any], row_index: int = -1) -> KnowledgeEntry:
    """Purpose: Convert one raw source row into a validated KnowledgeEntry.
    Inputs/Outputs: Input is a mapping with keyword/question/answer/note/active/type/
        media columns; output is a KnowledgeEntry with decoded content.
    Side Effects / State: Logs a warning for malformed structured media.
    Dependencies: Uses split_keywords, clean_csv_json, is_truthy and _decode_content.
    Failure Modes: Never raises for bad media; it becomes MalformedContent instead.
    If Removed: The cache would hand raw, unvalidated rows to the match engine.
    Testing Notes: Feed CSV-escaped JSON menus and broken JSON; both must decode to a
        variant without raising.
    """
    # Parse the plain columns, then decode the media cell by type.
    keywords = tuple(split_keywords(row.get("keyword")))
    question = str(row.get("question") or "").strip()
    answer = str(row.get("answer") or "").strip()
    content_type = ContentType.parse(row.get("type"))
    try:
        content = _decode_content(content_type, answer, row.get("media"))
    except ContentDecodeError as exc:
        logger.warning("row=%s type=%s malformed media: %s", row_index, content_type.value, exc)
        content = MalformedContent(content_type=content_type, error=str(exc))
    return KnowledgeEntry(
        keywords=keywords,
        question=question,
        answer=answer,
        content_type=content_type,
        content=content,
        note=str(row.get("note") or "").strip(),
        active=is_truthy(row.get("active")),
        row_index=row_index,
        normalized_keywords=tuple(k for k in (normalize_text(k) for k in keywords) if k),
    )


def decode_rows(rows: List[Mapping[str, Any]]) -> List[KnowledgeEntry]:
    return [decode_row(row, row_index=index) for index, row in enumerate(rows)]


def _decode_content(content_type: ContentType, answer: str, media: Any) -> Optional[Content]:
    has_text = bool(answer) and answer != NO_TEXT
    if content_type is ContentType.TEXT:
        return TextContent(text=answer) if has_text else None
    if _is_blank(media):
        return None
    if content_type is ContentType.IMAGE:
        return ImageContent(url=str(media).strip())
    if content_type is ContentType.MENU:
        buttons = _decode_structured(media)
        _require_items(buttons, ("type", "title"), "button")
        return MenuContent(text=answer if has_text else DEFAULT_MENU_TEXT, buttons=tuple(buttons))
    elements = _decode_structured(media)
    _require_items(elements, ("title",), "element")
    return CarouselContent(elements=tuple(elements))


def _decode_structured(media: Any) -> List[Dict[str, Any]]:
    if isinstance(media, str):
        media = _loads_media(media)
    if isinstance(media, dict):
        media = [media]
    if not isinstance(media, list):
        raise ContentDecodeError(f"expected a list, got {type(media).__name__}")
    return media


def _loads_media(raw: str) -> Any:
    # Plain JSON first; CSV-escaped cells are unescaped only when that fails.
    try:
        return json.loads(raw.strip())
    except json.JSONDecodeError:
        pass
    try:
        return json.loads(clean_csv_json(raw))
    except json.JSONDecodeError as exc:
        raise ContentDecodeError(f"invalid JSON: {exc}") from exc


def _require_items(items: List[Any], required: Tuple[str, ...], label: str) -> None:
    if not items:
        raise ContentDecodeError(f"no {label}s")
    for index, item in enumerate(items):
        if not isinstance(item, dict):
            raise ContentDecodeError(f"{label} {index} is not an object")
        missing = [key for key in required if not item.get(key)]
        if missing:
            raise ContentDecodeError(f"{label} {index} missing {', '.join(missing)}")


def _is_blank(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, str):
        return not value.strip()
    return not value
