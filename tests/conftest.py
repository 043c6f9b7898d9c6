"""Shared test fixtures for the page bot.

Time is driven by a fake clock; the knowledge source, the Send API client and the LLM
are replaced by in-memory fakes so no network is touched.
"""

import json
import threading
from pathlib import Path
from typing import Any, Dict, List, Optional

import pytest

from pagebot.config import Settings
from pagebot.handover import HandoverTracker
from pagebot.knowledge.knowledge_cache import KnowledgeCache
from pagebot.ttl_store import TTLStore
from pagebot.unanswered_log import UnansweredLog
from pagebot.workflow import MessageWorkflow


class FakeClock:
    def __init__(self, start: float = 0.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeSource:
    """Knowledge source serving fixed rows per category and counting fetches."""

    def __init__(self, rows: Optional[Dict[str, List[Dict[str, Any]]]] = None) -> None:
        self.rows = rows or {}
        self.fetches: List[str] = []
        self.error: Optional[Exception] = None
        self.gate: Optional[threading.Event] = None
        self.started = threading.Event()
        self._lock = threading.Lock()

    def fetch_rows(self, category: str) -> List[Dict[str, Any]]:
        with self._lock:
            self.fetches.append(category)
        self.started.set()
        if self.gate is not None:
            self.gate.wait(timeout=5)
        if self.error is not None:
            raise self.error
        return list(self.rows.get(category, []))


class FakeMessenger:
    """Records every outbound payload instead of calling the Send API."""

    def __init__(self) -> None:
        self.sent: List[tuple] = []
        self.typing: List[str] = []
        self.fail = False

    def send(self, recipient_id: str, message: Dict[str, Any]) -> bool:
        if self.fail:
            return False
        self.sent.append((recipient_id, message))
        return True

    def send_text(self, recipient_id: str, text: str) -> bool:
        return self.send(recipient_id, {"text": text})

    def send_typing(self, recipient_id: str) -> bool:
        self.typing.append(recipient_id)
        return True

    def texts(self) -> List[str]:
        return [message["text"] for _, message in self.sent if "text" in message]


class FakeAi:
    """AI assistant stand-in with scripted expansion and answers."""

    def __init__(self, expansions: Optional[Dict[str, str]] = None, answer: Optional[str] = None) -> None:
        self.expansions = expansions or {}
        self.answer = answer
        self.expanded: List[str] = []
        self.generated: List[str] = []

    def expand_search_query(self, user_message: str) -> str:
        self.expanded.append(user_message)
        return self.expansions.get(user_message, user_message)

    def generate_answer(self, user_message, entries):
        self.generated.append(user_message)
        return self.answer


def row(keyword: str, answer: str, question: str = "", active: str = "TRUE", type_: str = "text", media: Any = "", note: str = "") -> Dict[str, Any]:
    return {
        "keyword": keyword,
        "question": question,
        "answer": answer,
        "note": note,
        "active": active,
        "type": type_,
        "media": media,
    }


def make_settings(tmp_path: Path, **overrides: Any) -> Settings:
    values: Dict[str, Any] = dict(
        fb_page_access_token="page-token",
        fb_verify_token="verify-me",
        fb_app_secret="",
        graph_api_version="v18.0",
        gemini_api_key="",
        gemini_model="gemini-2.5-flash",
        sheet_id="",
        sheets_api_key="",
        google_service_account_email="",
        google_private_key="",
        knowledge_file=None,
        knowledge_category="KnowledgeBase",
        cache_ttl=300,
        handover_timeout=60,
        fetch_timeout=10.0,
        ai_timeout=15.0,
        dispatch_timeout=10.0,
        ai_answer_enabled=False,
        rank_limit=5,
        unanswered_log_path=tmp_path / "unanswered.jsonl",
        unanswered_sheet="Unanswered",
        prompts_dir=tmp_path,
        port=3000,
    )
    values.update(overrides)
    return Settings(**values)


def read_jsonl(path: Path) -> List[Dict[str, Any]]:
    if not path.exists():
        return []
    return [json.loads(line) for line in path.read_text(encoding="utf-8").splitlines() if line.strip()]


KNOWLEDGE_ROWS = [
    row("หอใน, หอพัก", "หอพักนักศึกษาอยู่ติดคณะค่ะ", question="หอพักอยู่ที่ไหน"),
    row("ค่าเทอม", "ค่าเทอม 25,000 บาทต่อภาคค่ะ", question="ค่าเทอมเท่าไหร่"),
    row("รับสมัคร", "เปิดรับสมัครเดือนมกราคมค่ะ", question="รับสมัครเมื่อไหร่", active="FALSE"),
    row(
        "ตำแหน่งคณะ",
        "ดูแผนที่ได้ที่ลิงก์ map ด้านล่างค่ะ",
        question="คณะอยู่ที่ไหน",
        type_="image",
        media="https://example.com/map.png",
    ),
    row(
        "เมนูหลัก",
        "เลือกหัวข้อที่ต้องการค่ะ",
        type_="menu",
        media='[{"type": "postback", "title": "ค่าเทอม", "payload": "ค่าเทอม"}]',
    ),
    row("เมนูเสีย", "-", type_="menu", media='[{"type": "postback", "title": '),
]


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def store(clock):
    return TTLStore(default_ttl=300, clock=clock)


@pytest.fixture
def source():
    return FakeSource({"KnowledgeBase": [dict(item) for item in KNOWLEDGE_ROWS]})


@pytest.fixture
def messenger():
    return FakeMessenger()


@pytest.fixture
def ai():
    return FakeAi()


@pytest.fixture
def unanswered_path(tmp_path):
    return tmp_path / "unanswered.jsonl"


@pytest.fixture
def unanswered(unanswered_path):
    return UnansweredLog(unanswered_path)


@pytest.fixture
def workflow(store, source, messenger, ai, unanswered):
    return MessageWorkflow(
        knowledge_cache=KnowledgeCache(source, store, ttl=300),
        handover=HandoverTracker(store, timeout=60),
        ai=ai,
        messenger=messenger,
        unanswered_log=unanswered,
    )
