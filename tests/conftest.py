"""Shared fixtures: a fake completion service on httpx.MockTransport and PDF builders."""

from __future__ import annotations

import json
import logging
import sys
from typing import Any, Dict, List, Tuple

import fitz
import httpx
import pytest

from notegenie.core.config import settings
from notegenie.core.retry import RetryPolicy
from notegenie.studio.tools import SynthesisOrchestrator

logging.basicConfig(
    level=logging.DEBUG,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    stream=sys.stderr,
    force=True,
)

FAST = "fast-test-model"
QUALITY = "quality-test-model"


def make_pdf(pages: List[str]) -> bytes:
    doc = fitz.open()
    for text in pages:
        page = doc.new_page()
        if text:
            page.insert_text((72, 72), text, fontsize=11)
    data = doc.tobytes()
    doc.close()
    return data


def gemini_body(text: str) -> Dict[str, Any]:
    return {"candidates": [{"content": {"role": "model", "parts": [{"text": text}]}, "finishReason": "STOP"}]}


class FakeGemini:
    """Scripted generateContent endpoint. Responses are served in queue order."""

    def __init__(self) -> None:
        self.requests: List[Tuple[str, Dict[str, Any]]] = []
        self.responses: List[httpx.Response] = []

    def queue_text(self, text: str) -> "FakeGemini":
        self.responses.append(httpx.Response(200, json=gemini_body(text)))
        return self

    def queue_json(self, data: Any) -> "FakeGemini":
        return self.queue_text(json.dumps(data))

    def queue_error(self, status_code: int, status: str, message: str = "") -> "FakeGemini":
        body = {"error": {"code": status_code, "status": status, "message": message or status}}
        self.responses.append(httpx.Response(status_code, json=body))
        return self

    def handler(self, request: httpx.Request) -> httpx.Response:
        model = request.url.path.rsplit("/", 1)[-1].split(":")[0]
        self.requests.append((model, json.loads(request.content)))
        if not self.responses:
            return httpx.Response(500, json={"error": {"code": 500, "status": "INTERNAL", "message": "no response queued"}})
        return self.responses.pop(0)

    @property
    def calls(self) -> int:
        return len(self.requests)

    @property
    def models(self) -> List[str]:
        return [m for m, _ in self.requests]

    def prompt_text(self, index: int = -1) -> str:
        _, payload = self.requests[index]
        parts = payload["contents"][0]["parts"]
        return "\n".join(p.get("text", "") for p in parts)


@pytest.fixture(autouse=True)
def _test_settings(monkeypatch):
    monkeypatch.setattr(settings, "gemini_api_key", "test-key")
    monkeypatch.setattr(settings, "fast_model", FAST)
    monkeypatch.setattr(settings, "quality_model", QUALITY)


@pytest.fixture
def fake_gemini() -> FakeGemini:
    return FakeGemini()


@pytest.fixture
def http_client(fake_gemini) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(fake_gemini.handler))


@pytest.fixture
def sleeps() -> List[float]:
    return []


@pytest.fixture
def retry_policy(sleeps) -> RetryPolicy:
    async def fake_sleep(seconds: float) -> None:
        sleeps.append(seconds)

    return RetryPolicy(max_attempts=3, rate_limit_base_ms=2000, overload_base_ms=1000, sleep=fake_sleep)


@pytest.fixture
def orchestrator(http_client, retry_policy) -> SynthesisOrchestrator:
    return SynthesisOrchestrator(http_client, retry=retry_policy)


@pytest.fixture
def pdf_one_page() -> bytes:
    return make_pdf(["Photosynthesis converts light into chemical energy."])
