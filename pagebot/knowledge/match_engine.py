from __future__ import annotations

"""Exact keyword matching and additive relevance ranking over one knowledge set."""

from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

from ..utils import normalize_text
from .content import (
    NO_TEXT,
    CarouselContent,
    ContentType,
    ImageContent,
    KnowledgeEntry,
    MalformedContent,
    MenuContent,
)

KEYWORD_SCORE = 50
FIELD_SCORE = 10
PHRASE_PART_SCORE = 2
DEFAULT_RANK_LIMIT = 5


@dataclass
class RenderedReply:
    """Outbound message payloads for one entry plus any media decode failure."""
    entry: KnowledgeEntry
    messages: List[Dict[str, Any]] = field(default_factory=list)
    decode_error: Optional[ContentType] = None


class MatchEngine:
    """Retrieve entries from a loaded knowledge set by keyword or relevance score."""

    def __init__(self, entries: Iterable[KnowledgeEntry], rank_limit: int = DEFAULT_RANK_LIMIT) -> None:
        """Purpose: Bind the engine to one knowledge set.
        Inputs/Outputs: Inputs are the entries and the ranked result cap; no return.
        Side Effects / State: Keeps only active entries, in their original order.
        Dependencies: KnowledgeEntry.
        Failure Modes: None.
        If Removed: The workflow has no way to turn a message into entries.
        Testing Notes: Inactive entries passed in must never come back out.
        """
        # Inactive entries are dropped once here.
        self._entries: Tuple[KnowledgeEntry, ...] = tuple(entry for entry in entries if entry.active)
        self._rank_limit = rank_limit

    @property
    def entries(self) -> Tuple[KnowledgeEntry, ...]:
        return self._entries

    def find_exact(self, query: str) -> List[KnowledgeEntry]:
        """Purpose: Return every entry with a keyword contained in the query.
        Inputs/Outputs: Input is the raw user message; output is all matching entries in
            knowledge-set order (unranked).
        Side Effects / State: None.
        Dependencies: normalize_text; keywords are pre-normalized at decode time.
        Failure Modes: Empty query returns an empty list.
        If Removed: Curated answers are only reachable through the statistical path.
        Testing Notes: Keyword "ค่าเทอม" must match "ค่าเทอมเท่าไหร่คะ" and upper/lower
            case or padded variants of Latin keywords.
        """
        # Substring match of each normalized keyword.
        normalized_query = normalize_text(query)
        if not normalized_query:
            return []
        return [
            entry
            for entry in self._entries
            if any(keyword in normalized_query for keyword in entry.normalized_keywords)
        ]

    def score(self, expanded_query: str) -> List[Tuple[KnowledgeEntry, int]]:
        """Purpose: Score every entry against an (AI-expanded) query.
        Inputs/Outputs: Input is the expanded query; output is (entry, score) pairs with
            score > 0, sorted by score descending with dataset order kept on ties.
        Side Effects / State: None; deterministic for identical inputs.
        Dependencies: _tokenize, _entry_score, _phrase_parts.
        Failure Modes: Empty or whitespace-only query returns an empty list.
        If Removed: rank() has nothing to order.
        Testing Notes: Equal scores must keep the knowledge-set order.
        """
        # Score every entry and keep positives only.
        tokens = _tokenize(expanded_query)
        if not tokens:
            return []
        phrase_parts = _phrase_parts(expanded_query)
        scored = []
        for entry in self._entries:
            total = _entry_score(entry, tokens, phrase_parts)
            if total > 0:
                scored.append((entry, total))
        # sorted() is stable, so ties keep knowledge-set order.
        return sorted(scored, key=lambda item: item[1], reverse=True)

    def rank(self, expanded_query: str) -> List[KnowledgeEntry]:
        """Top entries by relevance, de-duplicated by identity and capped at rank_limit."""
        ranked: List[KnowledgeEntry] = []
        seen = set()
        for entry, _ in self.score(expanded_query):
            if id(entry) in seen:
                continue
            seen.add(id(entry))
            ranked.append(entry)
            if len(ranked) >= self._rank_limit:
                break
        return ranked

    def render(self, entry: KnowledgeEntry) -> RenderedReply:
        """Purpose: Build the outbound payloads for one entry.
        Inputs/Outputs: Input is a KnowledgeEntry; output is a RenderedReply whose
            messages follow the Send API content shapes.
        Side Effects / State: None.
        Dependencies: Content variants decoded by decode_row.
        Failure Modes: Malformed structured media is reported via decode_error rather
            than raised; the caller substitutes an apology.
        If Removed: The workflow would need to know every content shape itself.
        Testing Notes: Menu entries never send the answer as a separate text message.
        """
        # Text first (except menus), then the structured payload.
        reply = RenderedReply(entry=entry)
        content = entry.content
        if entry.has_text and entry.content_type is not ContentType.MENU:
            reply.messages.append(text_message(entry.answer))
        if isinstance(content, ImageContent):
            reply.messages.append(image_message(content.url))
        elif isinstance(content, MenuContent):
            reply.messages.append(button_template(content.text, list(content.buttons)))
        elif isinstance(content, CarouselContent):
            reply.messages.append(generic_template(list(content.elements)))
        elif isinstance(content, MalformedContent):
            reply.decode_error = content.content_type
        return reply


def text_message(text: str) -> Dict[str, Any]:
    return {"text": text}


def image_message(url: str) -> Dict[str, Any]:
    return {"attachment": {"type": "image", "payload": {"url": url, "is_reusable": True}}}


def button_template(text: str, buttons: List[Dict[str, Any]]) -> Dict[str, Any]:
    return {
        "attachment": {
            "type": "template",
            "payload": {"template_type": "button", "text": text, "buttons": buttons},
        }
    }


def generic_template(elements: List[Dict[str, Any]]) -> Dict[str, Any]:
    return {
        "attachment": {
            "type": "template",
            "payload": {"template_type": "generic", "elements": elements},
        }
    }


def _tokenize(text: str) -> List[str]:
    return [token for token in normalize_text(text).split(" ") if token]


def _phrase_parts(text: str) -> List[str]:
    parts = [part for part in normalize_text(text).split(" ") if len(part) > 1]
    return parts if len(parts) > 1 else []


def _entry_score(entry: KnowledgeEntry, tokens: Sequence[str], phrase_parts: Sequence[str]) -> int:
    question = normalize_text(entry.question)
    answer = normalize_text(entry.answer)
    if answer == NO_TEXT:
        answer = ""

    total = 0
    for token in tokens:
        if any(token in keyword or keyword in token for keyword in entry.normalized_keywords):
            total += KEYWORD_SCORE
        total += _field_score(question, token)
        total += _field_score(answer, token)

    for part in phrase_parts:
        if question and part in question:
            total += PHRASE_PART_SCORE
        if answer and part in answer:
            total += PHRASE_PART_SCORE
    return total


def _field_score(field_text: str, token: str) -> int:
    if not field_text:
        return 0
    score = 0
    if token in field_text:
        score += FIELD_SCORE
    if field_text in token:
        score += FIELD_SCORE
    return score
