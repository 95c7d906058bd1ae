"""Row payloads for the relational store. Nothing here issues queries."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Sequence
from uuid import uuid4

from notegenie.schemas.studio import Flashcard, QuizQuestion, Summary, UploadMeta


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def upload_row(owner_id: str, upload: UploadMeta) -> Dict[str, Any]:
    return {
        "id": str(uuid4()),
        "user_email": owner_id,
        "file_name": upload.file_name,
        "file_size": upload.file_size,
        "file_type": upload.file_type,
        "sha256": upload.sha256,
        "storage_path": upload.storage_path,
        "created_at": utc_now_iso(),
    }


def summary_row(owner_id: str, upload_id: Optional[str], title: str, summary: Summary) -> Dict[str, Any]:
    return {
        "id": str(uuid4()),
        "upload_id": upload_id,
        "user_email": owner_id,
        "summary_style": summary.mode.value.upper(),
        "title": title,
        "content": summary.text,
        "ai_model_used": summary.model,
        "created_at": utc_now_iso(),
    }


def flashcard_rows(owner_id: str, summary_id: str, cards: Sequence[Flashcard]) -> List[Dict[str, Any]]:
    now = utc_now_iso()
    return [
        {
            "id": str(uuid4()),
            "summary_id": summary_id,
            "user_email": owner_id,
            "front": c.question,
            "back": c.answer,
            "source": c.source,
            "created_at": now,
        }
        for c in cards
        if c.usable
    ]


def quiz_row(owner_id: str, summary_id: str, title: str, questions: Sequence[QuizQuestion]) -> Dict[str, Any]:
    return {
        "id": str(uuid4()),
        "summary_id": summary_id,
        "user_email": owner_id,
        "title": f"Quiz: {title}",
        "question_count": len(questions),
        "questions": [q.model_dump() for q in questions],
        "created_at": utc_now_iso(),
    }


def study_set_rows(
    owner_id: str,
    title: str,
    summary: Optional[Summary],
    flashcards: Sequence[Flashcard],
    quiz: Sequence[QuizQuestion],
    upload: Optional[UploadMeta] = None,
) -> Dict[str, Any]:
    """All rows for one finished study set, linked by generated ids."""
    rows: Dict[str, Any] = {"upload": None, "summary": None, "flashcards": [], "quiz": None}
    upload_id = None
    if upload is not None:
        rows["upload"] = upload_row(owner_id, upload)
        upload_id = rows["upload"]["id"]

    if summary is not None:
        rows["summary"] = summary_row(owner_id, upload_id, title, summary)
        summary_id = rows["summary"]["id"]
    else:
        summary_id = str(uuid4())

    rows["flashcards"] = flashcard_rows(owner_id, summary_id, flashcards)
    if quiz:
        rows["quiz"] = quiz_row(owner_id, summary_id, title, quiz)
    return rows
