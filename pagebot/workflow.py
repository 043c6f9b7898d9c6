"""Message processing workflow (rule-based first, AI-assisted fallback).

Role:
    Sequences one inbound message through the handover guard, the knowledge cache, the
    match engine and the outbound dispatcher. build_workflow creates the TTLStore
    shared by the knowledge cache and the handover tracker.

Turn flow:
    1. Handover guard: a user in Human mode gets no reply; the window is refreshed.
    2. Knowledge load: active entries for the configured category (fail-soft to empty).
    3. Exact match: every keyword hit is rendered and the turn ends.
    4. Query expansion: the LLM widens the message into related search terms.
    5. Relevance ranking: additive keyword/question/answer scoring, top results.
    6. Answer composition: best ranked entry (or an LLM answer grounded on the ranked
       entries); nothing ranked means an apology plus an unanswered-log record.
    7. Dispatch: every prepared payload is sent; failures are logged, never retried.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

from .ai_assistant import AiAssistant
from .config import Settings
from .gemini_client import GeminiClient
from .google_sheets import service_account_session
from .handover import HandoverTracker
from .knowledge.content import ContentType, KnowledgeEntry
from .knowledge.knowledge_cache import KnowledgeCache
from .knowledge.match_engine import DEFAULT_RANK_LIMIT, MatchEngine, RenderedReply, text_message
from .knowledge.sources import JsonFileKnowledgeSource, KnowledgeSource, SheetsKnowledgeSource
from .messenger_client import BOT_MARKER, MessengerClient
from .step_runner import PipelineStep, StepRunner
from .ttl_store import KeyedLocks, TTLStore
from .unanswered_log import SheetsUnansweredLog, UnansweredLog, UnansweredSink

logger = logging.getLogger("pagebot.workflow")

NO_CONTENT_REPLY = "ขออภัยค่ะ ไม่มีข้อมูลในส่วนนี้ ฝากข้อความไว้ได้เลยค่ะ (ref.a02)"
NOT_FOUND_REPLY = "ขออภัยค่ะ ไม่มีข้อมูลในส่วนนี้ ลองถามใหม่อีกสักครู่ค่ะ"
BUSY_REPLY = "ขออภัยค่ะ มีผู้ใช้งานเป็นจำนวนมาก ลองถามใหม่อีกสักครู่ค่ะ"
MALFORMED_CONTENT_REPLIES = {
    ContentType.MENU: "(ขออภัย รูปแบบเมนูไม่ถูกต้อง - กรุณาติดต่อเจ้าหน้าที่)",
    ContentType.CAROUSEL: "(ขออภัย รูปแบบ Carousel ไม่ถูกต้อง - กรุณาติดต่อเจ้าหน้าที่)",
}
MALFORMED_FALLBACK_REPLY = MALFORMED_CONTENT_REPLIES[ContentType.MENU]

ROUTE_HUMAN = "human"
ROUTE_EXACT = "exact"
ROUTE_RANKED = "ranked"
ROUTE_AI_ANSWER = "ai_answer"
ROUTE_UNANSWERED = "unanswered"
ROUTE_ERROR = "error"


@dataclass
class TurnContext:
    """Mutable state for one inbound message as it moves through the steps."""
    sender_id: str
    message_text: str
    category: str
    entries_loaded: int = 0
    exact_matches: List[KnowledgeEntry] = field(default_factory=list)
    expanded_query: str = ""
    ranked: List[KnowledgeEntry] = field(default_factory=list)
    outbound: List[Dict[str, Any]] = field(default_factory=list)
    answered: bool = False
    decode_errors: int = 0
    route: str = ""
    dispatched: int = 0
    steps: List[str] = field(default_factory=list)
    engine: Optional[MatchEngine] = field(default=None, repr=False)


class MessageWorkflow:
    def __init__(
        self,
        knowledge_cache: KnowledgeCache,
        handover: HandoverTracker,
        ai: AiAssistant,
        messenger: MessengerClient,
        unanswered_log: UnansweredSink,
        category: str = "KnowledgeBase",
        rank_limit: int = DEFAULT_RANK_LIMIT,
        ai_answer_enabled: bool = False,
    ) -> None:
        """Purpose: Wire the collaborators and build the ordered turn steps.
        Inputs/Outputs: Inputs are the knowledge cache, tracker, AI assistant,
            messenger, unanswered sink and turn options; no return value.
        Side Effects / State: Creates the per-user lock registry.
        Dependencies: StepRunner/PipelineStep and the step methods on this class.
        Failure Modes: None at init.
        If Removed: The webhook has nothing to hand messages to.
        Testing Notes: Build with fakes and check route/outbound on TurnContext.
        """
        # Keep collaborators and build the ordered step list.
        self._cache = knowledge_cache
        self._handover = handover
        self._ai = ai
        self._messenger = messenger
        self._unanswered = unanswered_log
        self._category = category
        self._rank_limit = rank_limit
        self._ai_answer_enabled = ai_answer_enabled
        self._user_locks = KeyedLocks()
        answered: Callable[[TurnContext], bool] = lambda context: context.answered
        self._runner: StepRunner[TurnContext] = StepRunner(
            steps=[
                PipelineStep("knowledge_load", self._step_knowledge_load),
                PipelineStep("exact_match", self._step_exact_match),
                PipelineStep("query_expansion", self._step_query_expansion, skip_if=answered),
                PipelineStep("relevance_ranking", self._step_relevance_ranking, skip_if=answered),
                PipelineStep("answer_composition", self._step_answer_composition, skip_if=answered),
                PipelineStep("dispatch", self._step_dispatch, always_run=True),
            ]
        )

    @property
    def handover(self) -> HandoverTracker:
        return self._handover

    def process_message(self, sender_id: str, message_text: str) -> TurnContext:
        """Purpose: Handle one inbound user message end to end.
        Inputs/Outputs: Inputs are the sender PSID and message text; output is the
            finished TurnContext (route, outbound payloads, executed steps).
        Side Effects / State: Refreshes handover, populates the cache, sends messages,
            may append to the unanswered log.
        Dependencies: HandoverTracker, StepRunner and the step methods.
        Failure Modes: Never raises; unexpected errors send BUSY_REPLY.
        If Removed: Inbound messages are never answered.
        Testing Notes: Human-mode users must get no outbound messages at all.
        """
        # Serialize per user, then guard on handover before any reply.
        context = TurnContext(sender_id=sender_id, message_text=message_text, category=self._category)
        # Same-user messages run one at a time, in arrival order.
        with self._user_locks.hold(sender_id):
            if self._handover.is_human_mode(sender_id):
                self._handover.refresh_human_mode(sender_id)
                context.route = ROUTE_HUMAN
                logger.info(
                    "user=%s human mode active until=%.0f, bot stays silent",
                    sender_id,
                    self._handover.expires_at(sender_id) or 0,
                )
                return context

            logger.info("user=%s message=%r", sender_id, message_text)
            self._messenger.send_typing(sender_id)
            try:
                self._runner.run(context, on_step=context.steps.append)
            except Exception:
                logger.exception("user=%s turn failed", sender_id)
                context.route = ROUTE_ERROR
                self._messenger.send_text(sender_id, BUSY_REPLY)
        logger.info(
            "user=%s route=%s dispatched=%s steps=%s",
            sender_id,
            context.route,
            context.dispatched,
            ",".join(context.steps),
        )
        return context

    def handle_page_echo(self, recipient_id: Optional[str], metadata: Optional[str] = None) -> bool:
        """Purpose: React to a page-sent message echoed back by the webhook.
        Inputs/Outputs: Inputs are the user PSID the page wrote to and the echo metadata;
            output is True when Human mode was activated.
        Side Effects / State: Sets Human mode for the user on operator messages.
        Dependencies: BOT_MARKER from the messenger client; HandoverTracker.
        Failure Modes: Missing recipient is ignored.
        If Removed: Operator takeovers are never detected.
        Testing Notes: Echoes carrying BOT_MARKER must not silence the bot.
        """
        # Ignore echoes of our own replies.
        if not recipient_id:
            return False
        if metadata == BOT_MARKER:
            logger.debug("user=%s echo of bot reply ignored", recipient_id)
            return False
        self._handover.set_human_mode(recipient_id)
        return True

    def _step_knowledge_load(self, context: TurnContext) -> None:
        entries = self._cache.load(context.category)
        context.entries_loaded = len(entries)
        context.engine = MatchEngine(entries, rank_limit=self._rank_limit)

    def _step_exact_match(self, context: TurnContext) -> None:
        engine = _engine(context)
        context.exact_matches = engine.find_exact(context.message_text)
        if not context.exact_matches:
            logger.info("user=%s no exact keyword match, using AI-assisted search", context.sender_id)
            return
        logger.info("user=%s exact matches=%s", context.sender_id, len(context.exact_matches))
        for entry in context.exact_matches:
            self._append_reply(context, engine.render(entry))
        if not context.outbound:
            logger.warning("user=%s match found but no content to send", context.sender_id)
            context.outbound.append(text_message(NO_CONTENT_REPLY))
        context.route = ROUTE_EXACT
        context.answered = True

    def _step_query_expansion(self, context: TurnContext) -> None:
        context.expanded_query = self._ai.expand_search_query(context.message_text)

    def _step_relevance_ranking(self, context: TurnContext) -> None:
        engine = _engine(context)
        scored = engine.score(context.expanded_query)
        context.ranked = engine.rank(context.expanded_query)
        logger.info(
            "user=%s ranked=%s top_scores=%s",
            context.sender_id,
            len(context.ranked),
            [score for _, score in scored[: self._rank_limit]],
        )

    def _step_answer_composition(self, context: TurnContext) -> None:
        if not context.ranked:
            logger.info("user=%s nothing found after expansion, logging unanswered", context.sender_id)
            context.outbound.append(text_message(NOT_FOUND_REPLY))
            self._unanswered.record(context.message_text, sender_id=context.sender_id)
            context.route = ROUTE_UNANSWERED
            return

        if self._ai_answer_enabled:
            answer = self._ai.generate_answer(context.message_text, context.ranked)
            if answer:
                context.outbound.append(text_message(answer))
                context.route = ROUTE_AI_ANSWER
                context.answered = True
                return

        best = context.ranked[0]
        self._append_reply(context, _engine(context).render(best))
        if not context.outbound:
            context.outbound.append(text_message(NO_CONTENT_REPLY))
        context.route = ROUTE_RANKED
        context.answered = True

    def _step_dispatch(self, context: TurnContext) -> None:
        for message in context.outbound:
            if self._messenger.send(context.sender_id, message):
                context.dispatched += 1

    def _append_reply(self, context: TurnContext, reply: RenderedReply) -> None:
        context.outbound.extend(reply.messages)
        if reply.decode_error is not None:
            context.decode_errors += 1
            logger.error(
                "user=%s row=%s malformed %s media, sending apology",
                context.sender_id,
                reply.entry.row_index,
                reply.decode_error.value,
            )
            apology = MALFORMED_CONTENT_REPLIES.get(reply.decode_error, MALFORMED_FALLBACK_REPLY)
            context.outbound.append(text_message(apology))


def _engine(context: TurnContext) -> MatchEngine:
    if context.engine is None:
        raise RuntimeError("knowledge_load step did not run")
    return context.engine


def build_workflow(
    settings: Settings,
    clock: Optional[Callable[[], float]] = None,
    source: Optional[KnowledgeSource] = None,
    ai: Optional[AiAssistant] = None,
) -> MessageWorkflow:
    """Purpose: Assemble a MessageWorkflow and its collaborators from Settings.
    Inputs/Outputs: Inputs are Settings plus optional clock/source/AI overrides;
        output is a ready MessageWorkflow.
    Side Effects / State: Creates the shared TTLStore; configures the Gemini SDK when
        an API key is present.
    Dependencies: Every collaborator module.
    Failure Modes: Missing Gemini key disables the AI path with a warning.
    If Removed: The app factory must wire collaborators by hand.
    Testing Notes: Use a JSON knowledge file and no Gemini key for local runs.
    """
    # One store backs both the knowledge cache and handover state.
    store = TTLStore(default_ttl=settings.cache_ttl, clock=clock)
    session = service_account_session(settings.google_service_account_email, settings.google_private_key)
    if source is None:
        if settings.knowledge_file:
            source = JsonFileKnowledgeSource(settings.knowledge_file)
        else:
            source = SheetsKnowledgeSource(
                settings.sheet_id,
                settings.sheets_api_key,
                timeout=settings.fetch_timeout,
                session=session,
            )
    if ai is None:
        gemini = None
        if settings.gemini_api_key:
            gemini = GeminiClient(settings)
        else:
            logger.warning("GEMINI_API_KEY not set, query expansion uses the raw message")
        ai = AiAssistant(gemini, settings.prompts_dir)
    unanswered_log: UnansweredSink = UnansweredLog(settings.unanswered_log_path)
    if session is not None and settings.sheet_id:
        unanswered_log = SheetsUnansweredLog(
            settings.sheet_id,
            session,
            sheet_name=settings.unanswered_sheet,
            timeout=settings.fetch_timeout,
            fallback=unanswered_log,
        )
    return MessageWorkflow(
        knowledge_cache=KnowledgeCache(source, store, ttl=settings.cache_ttl),
        handover=HandoverTracker(store, timeout=settings.handover_timeout),
        ai=ai,
        messenger=MessengerClient(
            settings.fb_page_access_token,
            api_version=settings.graph_api_version,
            timeout=settings.dispatch_timeout,
        ),
        unanswered_log=unanswered_log,
        category=settings.knowledge_category,
        rank_limit=settings.rank_limit,
        ai_answer_enabled=settings.ai_answer_enabled,
    )
