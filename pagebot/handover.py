from __future__ import annotations

import logging
from typing import Optional

from .ttl_store import TTLStore

logger = logging.getLogger("pagebot.handover")

HANDOVER_PREFIX = "handover_"
HANDOVER_TIMEOUT = 60


class HandoverTracker:
    """Per-user Bot/Human state with a sliding inactivity window.

    A user is in Human mode while an unexpired record exists. Records are created when a
    page message without the bot marker reaches the user (an operator replied) and are
    extended by every inbound message while still live. Expiry is only observed on read.
    """

    def __init__(self, store: TTLStore, timeout: float = HANDOVER_TIMEOUT) -> None:
        self._store = store
        self._timeout = timeout

    def is_human_mode(self, user_id: str) -> bool:
        """Purpose: Tell whether a human operator currently owns the conversation.
        Inputs/Outputs: Input is the user PSID; output is True in Human mode.
        Side Effects / State: Evicts the record when its window has passed.
        Dependencies: TTLStore.get (expiry checked on read).
        Failure Modes: None; unknown users are in Bot mode.
        If Removed: The bot would talk over human operators.
        Testing Notes: set at t=0 then read at t=61 must return False.
        """
        # A live record means Human mode.
        return self._store.get(_key(user_id)) is not None

    def set_human_mode(self, user_id: str) -> None:
        """Purpose: Enter (or restart) Human mode for a user.
        Inputs/Outputs: Input is the user PSID; no return value.
        Side Effects / State: Overwrites the record with expires_at = now + timeout.
        Dependencies: TTLStore.set under the per-user key lock.
        Failure Modes: None.
        If Removed: Operator replies never silence the bot.
        Testing Notes: is_human_mode must be True immediately after.
        """
        # Overwrite any existing record with a fresh window.
        key = _key(user_id)
        with self._store.lock(key):
            self._store.set(key, self._store.now(), ttl=self._timeout)
        logger.info("user=%s human mode activated timeout=%ss", user_id, self._timeout)

    def refresh_human_mode(self, user_id: str) -> None:
        """Purpose: Slide the Human-mode window after a user message.
        Inputs/Outputs: Input is the user PSID; no return value.
        Side Effects / State: Extends expires_at to now + timeout if still Human;
            no-op in Bot mode (never enters Human mode by itself).
        Dependencies: TTLStore.get/set under the per-user key lock.
        Failure Modes: None.
        If Removed: The bot returns mid-conversation while the user is still talking.
        Testing Notes: refresh at t=50 keeps Human at t=70 and ends it by t=111.
        """
        # Only extend a record that is still live.
        key = _key(user_id)
        with self._store.lock(key):
            if self._store.get(key) is None:
                return
            self._store.set(key, self._store.now(), ttl=self._timeout)
        logger.debug("user=%s human mode refreshed", user_id)

    def expires_at(self, user_id: str) -> Optional[float]:
        return self._store.expires_at(_key(user_id))


def _key(user_id: str) -> str:
    return f"{HANDOVER_PREFIX}{user_id}"
