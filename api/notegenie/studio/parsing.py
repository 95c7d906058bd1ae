"""Total parsers from decoded model JSON to typed study artifacts.

Every function accepts whatever the completion service returned (already
JSON-decoded, possibly the wrong shape) and never raises: malformed entries
are dropped and missing fields fall back to defined defaults.
"""

from __future__ import annotations

import math
from typing import Any, Dict, List, Optional, Sequence

from notegenie.schemas.studio import (
    Flashcard,
    FlashcardList,
    ProveItGrade,
    ProveItGradeItem,
    ProveItQuestion,
    ProveItQuestionList,
    QuizList,
    QuizQuestion,
)

QUIZ_OPTION_COUNT = 4


def _str(value: Any) -> str:
    if value is None:
        return ""
    return str(value).strip()


def _items(data: Any) -> List[Dict[str, Any]]:
    if not isinstance(data, list):
        return []
    return [d for d in data if isinstance(d, dict)]


def _number(value: Any, default: float) -> float:
    if isinstance(value, bool):
        return float(value)
    try:
        result = float(value)
    except (TypeError, ValueError):
        return default
    return result if math.isfinite(result) else default


def _bool(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in ("true", "yes", "1", "correct")
    return bool(value)


def parse_flashcards(data: Any, limit: Optional[int] = None) -> FlashcardList:
    cards: List[Flashcard] = []
    for d in _items(data):
        q = _str(d.get("question"))
        a = _str(d.get("answer"))
        if not q or not a:
            continue
        source = _str(d.get("source")) or None
        cards.append(Flashcard(question=q, answer=a, source=source))
    if limit is not None:
        cards = cards[:limit]
    return FlashcardList(cards=cards)


def parse_quiz(data: Any, limit: Optional[int] = None) -> QuizList:
    """Keeps questions with exactly 4 distinct options and a correctAnswer among them."""
    out: List[QuizQuestion] = []
    for d in _items(data):
        question = _str(d.get("question"))
        raw_options = d.get("options")
        if not question or not isinstance(raw_options, list):
            continue
        options = [_str(o) for o in raw_options]
        if len(options) != QUIZ_OPTION_COUNT or not all(options) or len(set(options)) != len(options):
            continue

        correct = _str(d.get("correctAnswer"))
        if correct not in options:
            # models sometimes answer with the letter of the option
            letters = {"A": 0, "B": 1, "C": 2, "D": 3}
            idx = letters.get(correct.upper().rstrip(").:"))
            if idx is None:
                continue
            correct = options[idx]

        out.append(
            QuizQuestion(
                question=question,
                options=options,
                correctAnswer=correct,
                explanation=_str(d.get("explanation")),
            )
        )
    if limit is not None:
        out = out[:limit]
    return QuizList(questions=out)


def parse_prove_it_questions(data: Any, limit: int = 3) -> ProveItQuestionList:
    out: List[ProveItQuestion] = []
    for d in _items(data):
        raw_ids = d.get("sourceCardIds")
        source_ids = [_str(s) for s in raw_ids if _str(s)] if isinstance(raw_ids, list) else []
        q = ProveItQuestion(
            id=_str(d.get("id")),
            type="scenario" if _str(d.get("type")).lower() == "scenario" else "short",
            question=_str(d.get("question")),
            answerKey=_str(d.get("answerKey")),
            sourceCardIds=source_ids,
        )
        if q.id and q.question and q.answerKey and q.sourceCardIds:
            out.append(q)
    return ProveItQuestionList(questions=out[:limit])


def _default_follow_up(missing: str, question: Optional[ProveItQuestion]) -> str:
    if missing:
        return f"In your own words, explain: {missing}"
    if question is not None:
        return f"Try again: {question.question}"
    return "Try again, focusing on the key idea you missed."


def parse_prove_it_grade(data: Any, questions: Sequence[ProveItQuestion]) -> ProveItGrade:
    """
    totalScore is clamped to [0, maxScore]; maxScore defaults to the
    question count. followUpQuestion is forced to None for correct items
    and filled in for incorrect items that lack one.
    """
    obj = data if isinstance(data, dict) else {}
    by_id = {q.id: q for q in questions}

    results: List[ProveItGradeItem] = []
    for d in _items(obj.get("results")):
        item_id = _str(d.get("id"))
        if not item_id:
            continue
        correct = _bool(d.get("correct"))
        score = min(1.0, max(0.0, _number(d.get("score"), 1.0 if correct else 0.0)))
        missing = _str(d.get("firstMissingIdea"))
        follow_up: Optional[str] = None
        if not correct:
            follow_up = _str(d.get("followUpQuestion")) or _default_follow_up(missing, by_id.get(item_id))
        results.append(
            ProveItGradeItem(
                id=item_id,
                correct=correct,
                score=score,
                feedback=_str(d.get("feedback")),
                firstMissingIdea=missing,
                followUpQuestion=follow_up,
            )
        )

    max_score = _number(obj.get("maxScore"), float(len(questions)))
    if max_score <= 0:
        max_score = float(len(questions))
    total = _number(obj.get("totalScore"), sum(r.score for r in results))
    total = min(max_score, max(0.0, total))

    return ProveItGrade(totalScore=total, maxScore=max_score, results=results)
