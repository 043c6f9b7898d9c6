from __future__ import annotations

"""Raw row sources for the knowledge cache (Google Sheets values API, local JSON)."""

import json
import logging
from pathlib import Path
from typing import Any, Dict, List, Optional, Protocol

import requests
from google.auth.exceptions import GoogleAuthError
from google.auth.transport.requests import AuthorizedSession

from ..google_sheets import values_url

logger = logging.getLogger("pagebot.knowledge")


class KnowledgeSourceError(RuntimeError):
    """Raised when a category cannot be fetched from its source."""


class KnowledgeSource(Protocol):
    def fetch_rows(self, category: str) -> List[Dict[str, Any]]:
        ...


class SheetsKnowledgeSource:
    """Read a worksheet (title = category) through the Sheets values API.

    A service-account session reads private sheets; without one the request carries an
    API key and only works for sheets shared publicly.
    """

    def __init__(
        self,
        sheet_id: str,
        api_key: str = "",
        timeout: float = 10.0,
        session: Optional[AuthorizedSession] = None,
    ) -> None:
        self._sheet_id = sheet_id
        self._api_key = api_key
        self._timeout = timeout
        self._session = session

    def fetch_rows(self, category: str) -> List[Dict[str, Any]]:
        """Purpose: Download one worksheet and map each row onto its header columns.
        Inputs/Outputs: Input is the worksheet title; output is a list of row dicts.
        Side Effects / State: Performs one HTTP GET (service account or API key).
        Dependencies: requests / google-auth AuthorizedSession; Sheets API v4 values.
        Failure Modes: Raises KnowledgeSourceError on missing config, HTTP errors
            (unknown sheet returns 400), timeouts or an unexpected body.
        If Removed: The bot has no production knowledge source.
        Testing Notes: Patch requests.get with a values payload and check header mapping.
        """
        # Require a sheet id and credentials before calling the API.
        if not self._sheet_id or (self._session is None and not self._api_key):
            raise KnowledgeSourceError(
                "GOOGLE_SHEET_ID and a service account or GOOGLE_SHEETS_API_KEY are required"
            )
        url = values_url(self._sheet_id, category)
        try:
            if self._session is not None:
                response = self._session.get(url, timeout=self._timeout)
            else:
                response = requests.get(url, params={"key": self._api_key}, timeout=self._timeout)
            response.raise_for_status()
            data = response.json()
        except (requests.RequestException, GoogleAuthError, ValueError) as exc:
            raise KnowledgeSourceError(f"sheet {category!r} fetch failed: {exc}") from exc
        values = data.get("values") if isinstance(data, dict) else None
        if not isinstance(values, list):
            raise KnowledgeSourceError(f"sheet {category!r} returned no values")
        return rows_from_values(values)


class JsonFileKnowledgeSource:
    """Read rows from a local JSON file: ``{category: [row, ...]}`` or a plain row list."""

    def __init__(self, path: Path) -> None:
        self._path = path

    def fetch_rows(self, category: str) -> List[Dict[str, Any]]:
        try:
            data = json.loads(self._path.read_text(encoding="utf-8-sig"))
        except (OSError, json.JSONDecodeError) as exc:
            raise KnowledgeSourceError(f"{self._path} unreadable: {exc}") from exc
        if isinstance(data, dict):
            if category not in data:
                raise KnowledgeSourceError(f"category {category!r} not found in {self._path.name}")
            data = data[category]
        if not isinstance(data, list):
            raise KnowledgeSourceError(f"category {category!r} is not a row list")
        return [row for row in data if isinstance(row, dict)]


def rows_from_values(values: List[List[Any]]) -> List[Dict[str, Any]]:
    """Map a header row plus data rows into dicts keyed by lower-cased header names."""
    if not values:
        return []
    header = [str(cell).strip().lower() for cell in values[0]]
    rows: List[Dict[str, Any]] = []
    for raw in values[1:]:
        if not any(str(cell).strip() for cell in raw):
            continue
        # The values API trims trailing empty cells.
        padded = list(raw) + [""] * (len(header) - len(raw))
        rows.append({name: padded[index] for index, name in enumerate(header) if name})
    return rows
