from __future__ import annotations

import base64
import json
import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence, Union

import httpx

from notegenie.core.config import settings
from notegenie.core.errors import CompletionError, FailureKind, SynthesisError

logger = logging.getLogger("gemini")

JSON_MIME = "application/json"


@dataclass(frozen=True)
class TextPart:
    text: str


@dataclass(frozen=True)
class BlobPart:
    """Raw document bytes submitted for multimodal analysis."""

    data: bytes
    mime_type: str


Part = Union[TextPart, BlobPart]


@dataclass(frozen=True)
class GenerationConfig:
    temperature: float = 0.2
    max_output_tokens: Optional[int] = None
    thinking_budget: Optional[int] = None
    response_schema: Optional[Dict[str, Any]] = None

    def to_payload(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {"temperature": self.temperature}
        if self.max_output_tokens is not None:
            out["maxOutputTokens"] = self.max_output_tokens
        if self.thinking_budget is not None:
            out["thinkingConfig"] = {"thinkingBudget": self.thinking_budget}
        if self.response_schema is not None:
            out["responseMimeType"] = JSON_MIME
            out["responseSchema"] = self.response_schema
        return out


@dataclass(frozen=True)
class GeminiGenResult:
    model: str
    response: str


def _part_payload(part: Part) -> Dict[str, Any]:
    if isinstance(part, BlobPart):
        return {
            "inlineData": {
                "mimeType": part.mime_type,
                "data": base64.b64encode(part.data).decode("ascii"),
            }
        }
    return {"text": part.text}


def classify_failure(status_code: Optional[int], message: str) -> FailureKind:
    """
    Map a service failure onto a FailureKind.
    429/RESOURCE_EXHAUSTED -> rate limited, 503/UNAVAILABLE -> unavailable,
    "overloaded" anywhere in the message -> overloaded, anything else fatal.
    """
    msg = (message or "").upper()
    if status_code == 429 or "RESOURCE_EXHAUSTED" in msg:
        return FailureKind.RATE_LIMITED
    if "OVERLOADED" in msg:
        return FailureKind.OVERLOADED
    if status_code == 503 or "UNAVAILABLE" in msg:
        return FailureKind.UNAVAILABLE
    return FailureKind.FATAL


def _error_message(r: httpx.Response) -> str:
    try:
        data = r.json()
    except ValueError:
        return r.text[:500] or f"HTTP {r.status_code}"
    err = data.get("error") if isinstance(data, dict) else None
    if isinstance(err, dict):
        status = str(err.get("status") or "").strip()
        message = str(err.get("message") or "").strip()
        return f"{status}: {message}" if status else message
    return r.text[:500]


def _response_text(data: Dict[str, Any]) -> str:
    candidates = data.get("candidates") or []
    if not candidates:
        return ""
    content = (candidates[0] or {}).get("content") or {}
    texts: List[str] = []
    for p in content.get("parts") or []:
        # thought summaries are not part of the visible output
        if isinstance(p, dict) and not p.get("thought") and "text" in p:
            texts.append(str(p["text"]))
    return "".join(texts).strip()


async def generate_content(
    client: httpx.AsyncClient,
    model: str,
    parts: Sequence[Part],
    config: Optional[GenerationConfig] = None,
    timeout_s: Optional[float] = None,
) -> GeminiGenResult:
    """
    Calls models/{model}:generateContent and returns the visible text.
    Failures are raised as CompletionError with a classified kind.
    """
    api_key = settings.gemini_api_key or ""
    if not api_key.strip():
        raise CompletionError("No gemini api key set. Set it in the env file")

    base = settings.gemini_base_url.rstrip("/")
    url = f"{base}/models/{model}:generateContent"
    cfg = config or GenerationConfig()

    payload: Dict[str, Any] = {
        "contents": [{"role": "user", "parts": [_part_payload(p) for p in parts]}],
        "generationConfig": cfg.to_payload(),
    }
    headers = {"x-goog-api-key": api_key.strip(), "Content-Type": JSON_MIME}

    t = timeout_s if timeout_s is not None else settings.gemini_timeout_s
    try:
        r = await client.post(url, headers=headers, json=payload, timeout=t)
    except httpx.HTTPError as e:
        raise CompletionError(f"Gemini request failed: {e}") from e

    if r.status_code >= 400:
        message = _error_message(r)
        kind = classify_failure(r.status_code, message)
        logger.warning("generate failed model=%s status=%s kind=%s", model, r.status_code, kind.value)
        raise CompletionError(message, kind=kind, status_code=r.status_code)

    try:
        data = r.json()
    except ValueError as e:
        logger.warning("generate returned non-JSON body model=%s status=%s", model, r.status_code)
        raise CompletionError(f"Gemini returned a non-JSON response (status {r.status_code})") from e
    return GeminiGenResult(model=model, response=_response_text(data))


def strip_fences(s: str) -> str:
    if "```" not in s:
        return s
    lines = s.splitlines()
    out = []
    in_fence = False
    for line in lines:
        if line.strip().startswith("```"):
            in_fence = not in_fence
            continue
        if in_fence:
            out.append(line)
    return "\n".join(out).strip() or s


def decode_json(raw: str) -> Any:
    """
    Best-effort JSON decode of model output. Returns None if nothing decodes.
    Falls back to the outermost [...] or {...} span when the model wraps JSON in prose.
    """
    s = strip_fences((raw or "").strip()).strip()
    if not s:
        return None
    try:
        return json.loads(s)
    except ValueError:
        pass

    for open_ch, close_ch in (("[", "]"), ("{", "}")):
        start = s.find(open_ch)
        end = s.rfind(close_ch)
        if start == -1 or end <= start:
            continue
        try:
            return json.loads(s[start : end + 1])
        except ValueError:
            continue
    return None


async def complete(
    client: httpx.AsyncClient,
    model: str,
    parts: Sequence[Part],
    config: Optional[GenerationConfig] = None,
    strict: bool = False,
) -> Any:
    """
    Text output when no response_schema is set, decoded JSON otherwise.
    Undecodable JSON becomes an empty list/object, or SynthesisError when strict.
    """
    cfg = config or GenerationConfig()
    gen = await generate_content(client, model=model, parts=parts, config=cfg)
    if cfg.response_schema is None:
        return gen.response

    data = decode_json(gen.response)
    if data is None:
        if strict:
            raise SynthesisError(f"Model {model} returned output that is not valid JSON")
        logger.warning("json decode failed model=%s chars=%s", model, len(gen.response))
        return [] if cfg.response_schema.get("type") == "ARRAY" else {}
    return data
