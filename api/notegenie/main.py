import logging
from collections import OrderedDict
from typing import Any, Dict, Optional
from uuid import uuid4

import httpx
from fastapi import FastAPI, File, Form, HTTPException, UploadFile
from fastapi.middleware.cors import CORSMiddleware

from notegenie.core.config import settings
from notegenie.core.errors import CompletionError, ProveItStateError, SynthesisError, describe_failure
from notegenie.core.logging import setup_logging
from notegenie.ingestion.parser import Document, configure_extractor, sha256_bytes
from notegenie.schemas.studio import (
    FlashcardList,
    FlashcardsRequest,
    ProveItAnswersRequest,
    ProveItFollowUpsResponse,
    ProveItGrade,
    ProveItStartRequest,
    ProveItStartResponse,
    QuizList,
    QuizRequest,
    RecordsRequest,
    Summary,
)
from notegenie.studio.prove_it import ProveItSession
from notegenie.studio.records import study_set_rows
from notegenie.studio.tools import GOAL_TARGET_CARDS, SynthesisOrchestrator, normalize_goal

setup_logging(settings.log_level)
logger = logging.getLogger("api")

app = FastAPI(
    title="NoteGenie Study API",
    version="0.3.0",
    description="Summaries, flashcards, quizzes and prove-it reviews generated from uploaded documents.",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=[
        "http://localhost:3000",
        "http://127.0.0.1:3000",
    ],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

HTTP: Optional[httpx.AsyncClient] = None  # set on startup
PROVE_IT_SESSIONS: "OrderedDict[str, ProveItSession]" = OrderedDict()


def orchestrator() -> SynthesisOrchestrator:
    global HTTP
    if HTTP is None:
        HTTP = httpx.AsyncClient()
    return SynthesisOrchestrator(HTTP)


def _http_error(e: Exception) -> HTTPException:
    if isinstance(e, CompletionError):
        code = 503 if e.kind.retryable else 502
        return HTTPException(status_code=code, detail=f"{describe_failure(e)} ({e})")
    return HTTPException(status_code=502, detail=str(e))


async def _read_document(file: UploadFile) -> Document:
    if not file.filename:
        raise HTTPException(status_code=400, detail="Filename missing")

    raw = await file.read()
    if not raw:
        raise HTTPException(status_code=400, detail="Empty file")
    if len(raw) > settings.max_upload_mb * 1024 * 1024:
        raise HTTPException(status_code=413, detail=f"File exceeds {settings.max_upload_mb} MB")

    mime_type = file.content_type or "application/octet-stream"
    logger.info("upload name=%s mime=%s size=%s sha256=%s", file.filename, mime_type, len(raw), sha256_bytes(raw))
    return Document(data=raw, mime_type=mime_type)


@app.on_event("startup")
async def _startup() -> None:
    global HTTP
    configure_extractor()
    HTTP = httpx.AsyncClient()
    if settings.enable_otel:
        from notegenie.observability.otel import setup_otel

        setup_otel(app)
    logger.info("startup env=%s fast_model=%s quality_model=%s", settings.app_env, settings.fast_model, settings.quality_model)


@app.on_event("shutdown")
async def _shutdown() -> None:
    global HTTP
    if HTTP is not None:
        await HTTP.aclose()
        HTTP = None


@app.get("/health")
async def health() -> Dict[str, Any]:
    return {
        "status": "ok" if settings.gemini_api_key.strip() else "degraded",
        "env": settings.app_env,
        "models": {"fast": settings.fast_model, "quality": settings.quality_model},
        "api_key_set": bool(settings.gemini_api_key.strip()),
        "prove_it_sessions": len(PROVE_IT_SESSIONS),
    }


@app.post("/studio/summary", response_model=Summary)
async def summary(file: UploadFile = File(...), mode: str = Form("bullet")) -> Summary:
    document = await _read_document(file)
    try:
        return await orchestrator().summarize(document, mode)
    except (CompletionError, SynthesisError) as e:
        logger.exception("summary failed name=%s", file.filename)
        raise _http_error(e)


@app.post("/studio/flashcards", response_model=FlashcardList)
async def flashcards(req: FlashcardsRequest) -> FlashcardList:
    return await orchestrator().flashcards_from_summary(req.summary)


@app.post("/studio/flashcards/document", response_model=FlashcardList)
async def flashcards_from_document(
    file: UploadFile = File(...),
    goal: str = Form("standard"),
    count: Optional[int] = Form(None),
    difficulty: Optional[str] = Form(None),
) -> FlashcardList:
    document = await _read_document(file)
    study_goal = normalize_goal(goal)
    target = count if count is not None else GOAL_TARGET_CARDS[study_goal]
    if target < 1 or target > 100:
        raise HTTPException(status_code=400, detail="count must be between 1 and 100")
    return await orchestrator().flashcards_from_document(
        document, count=target, difficulty=difficulty or study_goal.value
    )


@app.post("/studio/quiz", response_model=QuizList)
async def quiz(req: QuizRequest) -> QuizList:
    return await orchestrator().quiz(req.flashcards, style=req.style)


@app.post("/studio/prove-it", response_model=ProveItStartResponse)
async def prove_it_start(req: ProveItStartRequest) -> ProveItStartResponse:
    session = ProveItSession(orchestrator())
    questions = await session.start(req.reviewed, req.deck)
    session_id = str(uuid4())
    _remember(session_id, session)
    return ProveItStartResponse(session_id=session_id, state=session.state.value, questions=questions)


def _remember(session_id: str, session: ProveItSession) -> None:
    PROVE_IT_SESSIONS[session_id] = session
    while len(PROVE_IT_SESSIONS) > max(1, settings.prove_it_max_sessions):
        evicted, _ = PROVE_IT_SESSIONS.popitem(last=False)
        logger.info("prove-it session evicted id=%s", evicted)


def _session(session_id: str) -> ProveItSession:
    session = PROVE_IT_SESSIONS.get(session_id)
    if session is None:
        raise HTTPException(status_code=404, detail="Prove-it session not found")
    PROVE_IT_SESSIONS.move_to_end(session_id)
    return session


@app.post("/studio/prove-it/{session_id}/grade", response_model=ProveItGrade)
async def prove_it_grade(session_id: str, req: ProveItAnswersRequest) -> ProveItGrade:
    session = _session(session_id)
    try:
        for qid, text in req.answers.items():
            session.answer(qid, text)
        return await session.submit()
    except KeyError as e:
        raise HTTPException(status_code=400, detail=f"Unknown question id {e}")
    except ProveItStateError as e:
        raise HTTPException(status_code=409, detail=str(e))
    except (CompletionError, SynthesisError) as e:
        raise _http_error(e)


@app.post("/studio/prove-it/{session_id}/follow-ups", response_model=ProveItFollowUpsResponse)
async def prove_it_follow_ups(session_id: str, req: ProveItAnswersRequest) -> ProveItFollowUpsResponse:
    session = _session(session_id)
    try:
        for qid, text in req.answers.items():
            session.record_follow_up(qid, text)
    except KeyError as e:
        raise HTTPException(status_code=400, detail=f"No follow-up question for id {e}")
    except ProveItStateError as e:
        raise HTTPException(status_code=409, detail=str(e))
    return ProveItFollowUpsResponse(session_id=session_id, state=session.state.value, follow_ups=session.follow_ups)


@app.post("/studio/records")
async def records(req: RecordsRequest) -> Dict[str, Any]:
    return study_set_rows(
        owner_id=req.owner_id,
        title=req.title,
        summary=req.summary,
        flashcards=req.flashcards,
        quiz=req.quiz,
        upload=req.upload,
    )
