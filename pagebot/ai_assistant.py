from __future__ import annotations

"""LLM-backed query expansion and answer composition with fail-soft fallbacks."""

import logging
from pathlib import Path
from typing import Optional, Sequence

from .gemini_client import GeminiClient
from .knowledge.content import KnowledgeEntry
from .prompt_loader import fill_prompt, load_prompt

logger = logging.getLogger("pagebot.ai")

NOT_READY_REPLY = "ขออภัย ข้อมูลส่วนนี้ยังไม่พร้อม สามารถทิ้งข้อความไว้ได้เลยค่ะ"
MAX_EXPANSION_CHARS = 300


class AiAssistant:
    """Wrap the LLM calls the workflow needs; never raises to the caller."""

    def __init__(self, gemini: Optional[GeminiClient], prompts_dir: Path) -> None:
        self._gemini = gemini
        self._prompts_dir = prompts_dir

    def expand_search_query(self, user_message: str) -> str:
        """Purpose: Expand a message into related search terms for relevance ranking.
        Inputs/Outputs: Input is the raw user message; output is a space-separated term
            string (e.g. "แมพ" -> "แมพ แผนที่ map location").
        Side Effects / State: One LLM call when enabled.
        Dependencies: query_expansion.txt prompt and GeminiClient.generate_text.
        Failure Modes: Disabled AI, prompt/LLM errors, timeouts or empty output return
            the original message unchanged.
        If Removed: Ranking only sees the literal message and misses synonyms.
        Testing Notes: A raising client must yield the original message.
        """
        # No LLM configured means search on the raw message.
        if self._gemini is None:
            return user_message
        try:
            template = load_prompt(self._prompts_dir / "query_expansion.txt")
            raw = self._gemini.generate_text(
                fill_prompt(template, user_message=user_message),
                temperature=0.3,
                max_output_tokens=100,
            )
        except Exception:
            logger.exception("query expansion failed")
            return user_message
        expanded = " ".join(raw.replace('"', " ").split())[:MAX_EXPANSION_CHARS]
        if not expanded:
            return user_message
        logger.info("expanded query=%r -> %r", user_message, expanded)
        return expanded

    def generate_answer(self, user_message: str, entries: Sequence[KnowledgeEntry]) -> Optional[str]:
        """Purpose: Compose a reply grounded on ranked knowledge entries.
        Inputs/Outputs: Inputs are the user message and context entries; output is the
            reply text, or None when no usable answer exists.
        Side Effects / State: One LLM call when enabled and entries are present.
        Dependencies: answer_generation.txt prompt and GeminiClient.generate_text.
        Failure Modes: Returns None on disabled AI, empty context, LLM errors, empty
            output, or when the model answers with the not-ready sentence.
        If Removed: AI_ANSWER_ENABLED has no effect; ranked answers are sent verbatim.
        Testing Notes: The not-ready sentinel must map to None.
        """
        # Build a grounded context block from the ranked entries.
        if self._gemini is None or not entries:
            return None
        context_text = "\n\n".join(
            f"- คำถาม: {entry.question}\n  คำตอบ: {entry.answer}\n  หมายเหตุ: {entry.note or '-'}"
            for entry in entries
        )
        try:
            template = load_prompt(self._prompts_dir / "answer_generation.txt")
            answer = self._gemini.generate_text(
                fill_prompt(
                    template,
                    context=context_text,
                    not_ready=NOT_READY_REPLY,
                    user_message=user_message,
                ),
                temperature=0.4,
                max_output_tokens=300,
            )
        except Exception:
            logger.exception("answer generation failed")
            return None
        if not answer or NOT_READY_REPLY in answer:
            return None
        return answer
