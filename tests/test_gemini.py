from __future__ import annotations

import base64

import httpx
import pytest

from conftest import FAST
from notegenie.core.config import settings
from notegenie.core.errors import CompletionError, FailureKind, SynthesisCancelled, SynthesisError, describe_failure
from notegenie.core.gemini import (
    BlobPart,
    GenerationConfig,
    TextPart,
    classify_failure,
    complete,
    decode_json,
    generate_content,
)
from notegenie.core.llm_router import ModelTier, pick_model
from notegenie.studio.prompt import FLASHCARD_SCHEMA, PROVE_IT_GRADE_SCHEMA


class TestClassifyFailure:
    def test_rate_limit(self):
        assert classify_failure(429, "") is FailureKind.RATE_LIMITED
        assert classify_failure(None, "RESOURCE_EXHAUSTED: quota") is FailureKind.RATE_LIMITED

    def test_unavailable(self):
        assert classify_failure(503, "") is FailureKind.UNAVAILABLE
        assert classify_failure(None, "UNAVAILABLE: try later") is FailureKind.UNAVAILABLE

    def test_overloaded(self):
        assert classify_failure(503, "The model is overloaded.") is FailureKind.OVERLOADED
        assert classify_failure(500, "model overloaded") is FailureKind.OVERLOADED

    def test_everything_else_is_fatal(self):
        assert classify_failure(400, "INVALID_ARGUMENT: bad schema") is FailureKind.FATAL
        assert classify_failure(500, "INTERNAL") is FailureKind.FATAL
        assert classify_failure(None, "") is FailureKind.FATAL


class TestGenerateContent:
    @pytest.mark.asyncio
    async def test_payload_shape(self, fake_gemini, http_client):
        fake_gemini.queue_text("ok")
        config = GenerationConfig(temperature=0.2, max_output_tokens=2048, thinking_budget=1024)
        res = await generate_content(
            http_client, FAST, [TextPart("do it"), BlobPart(data=b"\x00\x01", mime_type="image/png")], config
        )
        assert res.response == "ok"
        assert res.model == FAST

        model, payload = fake_gemini.requests[0]
        assert model == FAST
        parts = payload["contents"][0]["parts"]
        assert parts[0] == {"text": "do it"}
        assert parts[1]["inlineData"]["mimeType"] == "image/png"
        assert base64.b64decode(parts[1]["inlineData"]["data"]) == b"\x00\x01"
        gen_cfg = payload["generationConfig"]
        assert gen_cfg["maxOutputTokens"] == 2048
        assert gen_cfg["thinkingConfig"] == {"thinkingBudget": 1024}
        assert "responseSchema" not in gen_cfg

    @pytest.mark.asyncio
    async def test_schema_requests_json(self, fake_gemini, http_client):
        fake_gemini.queue_text("[]")
        await generate_content(http_client, FAST, [TextPart("x")], GenerationConfig(response_schema=FLASHCARD_SCHEMA))
        gen_cfg = fake_gemini.requests[0][1]["generationConfig"]
        assert gen_cfg["responseMimeType"] == "application/json"
        assert gen_cfg["responseSchema"] == FLASHCARD_SCHEMA

    @pytest.mark.asyncio
    async def test_api_key_header(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["key"] = request.headers.get("x-goog-api-key")
            return httpx.Response(200, json={"candidates": []})

        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            res = await generate_content(client, FAST, [TextPart("x")])
        assert seen["key"] == "test-key"
        assert res.response == ""

    @pytest.mark.asyncio
    async def test_thought_parts_are_dropped(self):
        def handler(request: httpx.Request) -> httpx.Response:
            body = {
                "candidates": [
                    {"content": {"parts": [{"text": "thinking...", "thought": True}, {"text": "answer"}]}}
                ]
            }
            return httpx.Response(200, json=body)

        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            res = await generate_content(client, FAST, [TextPart("x")])
        assert res.response == "answer"

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "status, name, message, kind",
        [
            (429, "RESOURCE_EXHAUSTED", "Quota exceeded", FailureKind.RATE_LIMITED),
            (503, "UNAVAILABLE", "Service unavailable", FailureKind.UNAVAILABLE),
            (503, "UNAVAILABLE", "The model is overloaded. Please try again later.", FailureKind.OVERLOADED),
            (400, "INVALID_ARGUMENT", "Bad request", FailureKind.FATAL),
        ],
    )
    async def test_errors_are_classified(self, fake_gemini, http_client, status, name, message, kind):
        fake_gemini.queue_error(status, name, message)
        with pytest.raises(CompletionError) as info:
            await generate_content(http_client, FAST, [TextPart("x")])
        assert info.value.kind is kind
        assert info.value.status_code == status
        assert message in str(info.value)

    @pytest.mark.asyncio
    async def test_missing_api_key(self, monkeypatch, fake_gemini, http_client):
        monkeypatch.setattr(settings, "gemini_api_key", "  ")
        with pytest.raises(CompletionError) as info:
            await generate_content(http_client, FAST, [TextPart("x")])
        assert info.value.kind is FailureKind.FATAL
        assert fake_gemini.calls == 0

    @pytest.mark.asyncio
    async def test_transport_error_is_fatal(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            with pytest.raises(CompletionError) as info:
                await generate_content(client, FAST, [TextPart("x")])
        assert info.value.kind is FailureKind.FATAL

    @pytest.mark.asyncio
    async def test_non_json_success_body_is_fatal(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, text="<html>proxy login</html>", headers={"Content-Type": "text/html"})

        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            with pytest.raises(CompletionError) as info:
                await generate_content(client, FAST, [TextPart("x")])
        assert info.value.kind is FailureKind.FATAL
        assert "non-JSON" in str(info.value)


class TestComplete:
    @pytest.mark.asyncio
    async def test_text_without_schema(self, fake_gemini, http_client):
        fake_gemini.queue_text("  plain summary  ")
        assert await complete(http_client, FAST, [TextPart("x")]) == "plain summary"

    @pytest.mark.asyncio
    async def test_json_with_schema(self, fake_gemini, http_client):
        fake_gemini.queue_json([{"question": "q", "answer": "a"}])
        data = await complete(http_client, FAST, [TextPart("x")], GenerationConfig(response_schema=FLASHCARD_SCHEMA))
        assert data == [{"question": "q", "answer": "a"}]

    @pytest.mark.asyncio
    async def test_bad_json_becomes_empty_default(self, fake_gemini, http_client):
        fake_gemini.queue_text("not json at all").queue_text("still not json")
        assert await complete(http_client, FAST, [TextPart("x")], GenerationConfig(response_schema=FLASHCARD_SCHEMA)) == []
        assert (
            await complete(http_client, FAST, [TextPart("x")], GenerationConfig(response_schema=PROVE_IT_GRADE_SCHEMA))
            == {}
        )

    @pytest.mark.asyncio
    async def test_bad_json_strict_raises(self, fake_gemini, http_client):
        fake_gemini.queue_text("{oops")
        with pytest.raises(SynthesisError):
            await complete(
                http_client, FAST, [TextPart("x")], GenerationConfig(response_schema=FLASHCARD_SCHEMA), strict=True
            )


class TestDecodeJson:
    def test_fenced(self):
        assert decode_json('```json\n[{"a": 1}]\n```') == [{"a": 1}]

    def test_prose_wrapped(self):
        assert decode_json('Here you go: {"totalScore": 1} hope it helps') == {"totalScore": 1}

    def test_garbage(self):
        assert decode_json("") is None
        assert decode_json("nothing here") is None


class TestPickModel:
    def test_text_uses_fast_model(self):
        assert pick_model(has_text=True) == settings.fast_model

    def test_raw_bytes_use_quality_model(self):
        assert pick_model(has_text=False) == settings.quality_model

    def test_custom_tiers_are_ranked(self):
        tiers = [
            ModelTier("tiny", lambda req: False),
            ModelTier("mid", lambda req: req.has_text),
            ModelTier("big", lambda req: True),
        ]
        assert pick_model(True, tiers) == "mid"
        assert pick_model(False, tiers) == "big"


class TestDescribeFailure:
    def test_overloaded(self):
        exc = CompletionError("OVERLOADED", kind=FailureKind.OVERLOADED)
        assert describe_failure(exc) == "Model is overloaded. Please try again."

    def test_transient(self):
        for kind in (FailureKind.UNAVAILABLE, FailureKind.RATE_LIMITED):
            assert describe_failure(CompletionError("x", kind=kind)) == "Service temporarily unavailable. Please retry."

    def test_other(self):
        assert describe_failure(SynthesisCancelled("grading")) == "Cancelled."
        assert describe_failure(CompletionError("bad key")) == "Something went wrong. Please try again."
        assert describe_failure(ValueError("x")) == "Something went wrong. Please try again."
