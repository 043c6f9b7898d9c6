from __future__ import annotations

import logging
from typing import Any, Dict, Optional

import requests

logger = logging.getLogger("pagebot.messenger")

GRAPH_API_URL = "https://graph.facebook.com"
BOT_MARKER = "bot_reply"


class MessengerClient:
    """Send API client; every message carries BOT_MARKER so echoes can be told apart."""

    def __init__(self, page_access_token: str, api_version: str = "v18.0", timeout: float = 10.0) -> None:
        self._token = page_access_token
        self._url = f"{GRAPH_API_URL}/{api_version}/me/messages"
        self._timeout = timeout

    def send(self, recipient_id: str, message: Dict[str, Any]) -> bool:
        """Purpose: Deliver one content payload (text/image/template) to a user.
        Inputs/Outputs: Inputs are the recipient PSID and a message dict; output is True
            when the Send API accepted it.
        Side Effects / State: One HTTP POST; adds the bot marker as message metadata.
        Dependencies: requests; Graph API /me/messages.
        Failure Modes: Network/HTTP errors are logged and return False; never retried.
        If Removed: The bot cannot reply.
        Testing Notes: Patch requests.post and assert the metadata marker is present.
        """
        # Tag the payload so its echo is recognised as ours.
        body = {
            "recipient": {"id": recipient_id},
            "messaging_type": "RESPONSE",
            "message": {**message, "metadata": BOT_MARKER},
        }
        return self._post(body, recipient_id, kind=_message_kind(message))

    def send_text(self, recipient_id: str, text: str) -> bool:
        return self.send(recipient_id, {"text": text})

    def send_typing(self, recipient_id: str) -> bool:
        body = {"recipient": {"id": recipient_id}, "sender_action": "typing_on"}
        return self._post(body, recipient_id, kind="typing", quiet=True)

    def _post(self, body: Dict[str, Any], recipient_id: str, kind: str, quiet: bool = False) -> bool:
        try:
            response = requests.post(
                self._url,
                params={"access_token": self._token},
                json=body,
                timeout=self._timeout,
            )
            response.raise_for_status()
        except requests.RequestException as exc:
            detail = _error_detail(exc)
            if quiet:
                logger.debug("send %s failed user=%s: %s", kind, recipient_id, detail)
            else:
                logger.error("send %s failed user=%s: %s", kind, recipient_id, detail)
            return False
        return True


def _message_kind(message: Dict[str, Any]) -> str:
    attachment = message.get("attachment")
    if not isinstance(attachment, dict):
        return "text"
    payload = attachment.get("payload") or {}
    return str(payload.get("template_type") or attachment.get("type") or "attachment")


def _error_detail(exc: requests.RequestException) -> str:
    response: Optional[requests.Response] = getattr(exc, "response", None)
    if response is not None:
        return f"{response.status_code} {response.text[:300]}"
    return str(exc)
