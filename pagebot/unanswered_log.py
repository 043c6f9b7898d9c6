from __future__ import annotations

import json
import logging
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional, Protocol

import requests
from google.auth.exceptions import GoogleAuthError
from google.auth.transport.requests import AuthorizedSession

from .google_sheets import values_url

logger = logging.getLogger("pagebot.unanswered")

UNANSWERED_SHEET = "Unanswered"


class UnansweredSink(Protocol):
    def record(self, query: str, sender_id: Optional[str] = None) -> bool:
        ...


def utc_timestamp() -> str:
    return datetime.now(timezone.utc).isoformat()


class UnansweredLog:
    """Append-only JSON-lines log of questions the bot could not answer."""

    def __init__(self, path: Path) -> None:
        """Purpose: Configure the sink file.
        Inputs/Outputs: Input is the JSONL path; no return value.
        Side Effects / State: Creates the parent directory.
        Dependencies: Path.mkdir.
        Failure Modes: Directory creation errors propagate at startup.
        If Removed: Staff lose the follow-up list of unanswered questions.
        Testing Notes: Use a tmp_path and read the lines back.
        """
        # Keep the path and make sure its directory exists.
        self._path = path
        self._path.parent.mkdir(parents=True, exist_ok=True)
        self._lock = threading.Lock()

    def record(self, query: str, sender_id: Optional[str] = None) -> bool:
        """Append one (timestamp, query) record; returns False when the write failed."""
        entry = {"timestamp": utc_timestamp(), "query": query, "sender_id": sender_id}
        line = json.dumps(entry, ensure_ascii=False)
        try:
            with self._lock, self._path.open("a", encoding="utf-8") as handle:
                handle.write(line + "\n")
        except OSError:
            logger.exception("unanswered log write failed path=%s", self._path)
            return False
        return True


class SheetsUnansweredLog:
    """Append unanswered questions as rows (timestamp, query, sender) of a worksheet."""

    def __init__(
        self,
        sheet_id: str,
        session: AuthorizedSession,
        sheet_name: str = UNANSWERED_SHEET,
        timeout: float = 10.0,
        fallback: Optional[UnansweredLog] = None,
    ) -> None:
        self._sheet_id = sheet_id
        self._session = session
        self._sheet_name = sheet_name
        self._timeout = timeout
        self._fallback = fallback

    def record(self, query: str, sender_id: Optional[str] = None) -> bool:
        """Purpose: Append one unanswered question to the sheet.
        Inputs/Outputs: Inputs are the user message and sender PSID; output is True when
            the row (or its local fallback record) was written.
        Side Effects / State: One values:append call; local JSONL write on failure.
        Dependencies: google-auth AuthorizedSession; Sheets API v4 values:append.
        Failure Modes: API/auth errors are logged and routed to the fallback log.
        If Removed: Staff would have to collect unanswered questions from server files.
        Testing Notes: Use a mock session and check the appended row and fallback.
        """
        # RAW input: user text is stored verbatim.
        url = values_url(self._sheet_id, f"{self._sheet_name}!A:C") + ":append"
        try:
            response = self._session.post(
                url,
                params={"valueInputOption": "RAW", "insertDataOption": "INSERT_ROWS"},
                json={"values": [[utc_timestamp(), query, sender_id or ""]]},
                timeout=self._timeout,
            )
            response.raise_for_status()
        except (requests.RequestException, GoogleAuthError):
            logger.exception("unanswered sheet append failed sheet=%s", self._sheet_name)
            if self._fallback is None:
                return False
            return self._fallback.record(query, sender_id=sender_id)
        return True
