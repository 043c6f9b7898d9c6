from __future__ import annotations

import hashlib
import hmac
import json
import logging
import os
from pathlib import Path
from typing import List, Optional, Tuple

import uvicorn
from dotenv import load_dotenv
from fastapi import BackgroundTasks, FastAPI, Query, Request
from fastapi.responses import PlainTextResponse, Response
from pydantic import ValidationError

from .config import Settings, load_settings
from .models import InboundMessage, MessagingEvent, WebhookPayload
from .workflow import MessageWorkflow, build_workflow

BASE_DIR = Path(__file__).resolve().parent
ENV_PATH = BASE_DIR / ".env"

logger = logging.getLogger("pagebot.app")


def configure_logging() -> None:
    log_level_name = os.getenv("LOG_LEVEL", "INFO").upper()
    log_level = getattr(logging, log_level_name, logging.INFO)
    if not logging.getLogger().handlers:
        logging.basicConfig(
            level=log_level,
            format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        )
    logging.getLogger("pagebot").setLevel(log_level)


def create_app(settings: Optional[Settings] = None, workflow: Optional[MessageWorkflow] = None) -> FastAPI:
    """Purpose: Build the FastAPI application with webhook and health routes.
    Inputs/Outputs: Optional Settings and MessageWorkflow overrides; returns FastAPI.
    Side Effects / State: Loads .env, configures logging and builds the workflow (and
        with it the process-wide TTLStore) when none is injected.
    Dependencies: load_settings, build_workflow, webhook payload models.
    Failure Modes: Invalid numeric env values raise ValueError at startup.
    If Removed: The bot has no HTTP entrypoint.
    Testing Notes: Inject a workflow built from fakes and drive it with TestClient.
    """
    # Load env overrides before reading settings.
    if ENV_PATH.exists():
        load_dotenv(ENV_PATH, override=True)
    configure_logging()
    settings = settings or load_settings()
    workflow = workflow or build_workflow(settings)

    app = FastAPI(title="Page Knowledge Bot")
    app.state.settings = settings
    app.state.workflow = workflow

    @app.get("/", response_class=PlainTextResponse)
    def health() -> str:
        return "Page knowledge bot is running."

    @app.get("/webhook")
    def verify_webhook(
        mode: Optional[str] = Query(default=None, alias="hub.mode"),
        token: Optional[str] = Query(default=None, alias="hub.verify_token"),
        challenge: Optional[str] = Query(default=None, alias="hub.challenge"),
    ) -> Response:
        """Purpose: Answer the Messenger webhook subscription handshake.
        Inputs/Outputs: hub.mode/hub.verify_token/hub.challenge query params; returns
            the challenge (200), 403 on token mismatch, 400 when params are missing.
        Side Effects / State: None.
        Dependencies: Settings.fb_verify_token.
        Failure Modes: Empty configured token never verifies.
        If Removed: The page cannot subscribe the webhook.
        Testing Notes: Check all three status codes.
        """
        # Missing params are a bad request; wrong token is forbidden.
        if not mode or not token:
            return Response(status_code=400)
        if mode == "subscribe" and settings.fb_verify_token and token == settings.fb_verify_token:
            logger.info("webhook verified")
            return PlainTextResponse(challenge or "")
        return Response(status_code=403)

    @app.post("/webhook")
    async def receive_webhook(request: Request, background_tasks: BackgroundTasks) -> Response:
        """Purpose: Accept webhook events and schedule message processing.
        Inputs/Outputs: Raw Messenger webhook body; returns EVENT_RECEIVED (200), 400 for
            malformed bodies, 403 for bad signatures, 404 for non-page objects.
        Side Effects / State: Echo events update handover state immediately; user
            messages and postbacks run in background tasks after the response.
        Dependencies: verify_signature, extract_events, MessageWorkflow.
        Failure Modes: Workflow errors never reach the response (handled in the turn).
        If Removed: No inbound message reaches the bot.
        Testing Notes: TestClient runs background tasks before returning.
        """
        # Verify the raw body before parsing it.
        body = await request.body()
        if settings.fb_app_secret and not verify_signature(
            settings.fb_app_secret, body, request.headers.get("x-hub-signature-256")
        ):
            logger.warning("webhook signature mismatch")
            return Response(status_code=403)
        try:
            payload = WebhookPayload(**json.loads(body or b"{}"))
        except (ValueError, TypeError, ValidationError) as exc:
            logger.warning("malformed webhook body: %s", exc)
            return Response(status_code=400)
        if payload.object != "page":
            return Response(status_code=404)

        messages, echoes = extract_events(payload)
        for recipient_id, metadata in echoes:
            workflow.handle_page_echo(recipient_id, metadata)
        for message in messages:
            background_tasks.add_task(workflow.process_message, message.sender_id, message.text)
        return PlainTextResponse("EVENT_RECEIVED")

    return app


def verify_signature(app_secret: str, body: bytes, header: Optional[str]) -> bool:
    """Check an X-Hub-Signature-256 header ("sha256=<hex>") against the raw body."""
    if not header or not header.startswith("sha256="):
        return False
    expected = hmac.new(app_secret.encode("utf-8"), body, hashlib.sha256).hexdigest()
    return hmac.compare_digest(expected, header.split("=", 1)[1])


def extract_events(payload: WebhookPayload) -> Tuple[List[InboundMessage], List[Tuple[str, Optional[str]]]]:
    """Split webhook events into user messages to answer and page echoes to track."""
    messages: List[InboundMessage] = []
    echoes: List[Tuple[str, Optional[str]]] = []
    for entry in payload.entry:
        for event in entry.messaging:
            if event.message and event.message.is_echo:
                echoes.append((event.recipient.id, event.message.metadata))
                continue
            text = _event_text(event)
            if text:
                messages.append(InboundMessage(sender_id=event.sender.id, text=text))
    return messages, echoes


def _event_text(event: MessagingEvent) -> Optional[str]:
    if event.message and event.message.text:
        return event.message.text
    if event.postback:
        return event.postback.payload or event.postback.title
    return None


def main() -> None:
    if ENV_PATH.exists():
        load_dotenv(ENV_PATH, override=True)
    settings = load_settings()
    uvicorn.run("pagebot.app:create_app", factory=True, host="0.0.0.0", port=settings.port)


if __name__ == "__main__":
    main()
