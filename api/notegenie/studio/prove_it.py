from __future__ import annotations

import logging
from enum import Enum
from typing import Dict, List, Optional, Sequence

from notegenie.core.errors import ProveItStateError
from notegenie.schemas.studio import Flashcard, ProveItGrade, ProveItQuestion, ReviewCard
from notegenie.studio.tools import CancelToken, SynthesisOrchestrator

logger = logging.getLogger("prove_it")

POOL_TARGET = 10
POOL_WINDOW = 20


class ProveItState(str, Enum):
    IDLE = "idle"
    COLLECTING_QUESTIONS = "collecting-questions"
    AWAITING_ANSWERS = "awaiting-answers"
    GRADING = "grading"
    GRADED = "graded"


def _key(text: str) -> str:
    return (text or "").strip().lower()


class ReviewTracker:
    """Cards seen during a flashcard pass, in review order, unique by question text."""

    def __init__(self, deck: Sequence[Flashcard]) -> None:
        self.deck = list(deck)
        self.reviewed: List[ReviewCard] = []
        self._seen: set = set()
        self._last_index = -1

    def mark_reviewed(self, index: int) -> bool:
        """Record deck[index]. Returns True when the pass just reached the end of the deck."""
        if index < 0 or index >= len(self.deck):
            raise IndexError(f"card index {index} out of range for deck of {len(self.deck)}")
        card = self.deck[index]
        if _key(card.question) not in self._seen:
            self._seen.add(_key(card.question))
            self.reviewed.append(ReviewCard(id=f"card-{index}", front=card.question, back=card.answer))
        self._last_index = max(self._last_index, index)
        return self.pass_complete

    @property
    def pass_complete(self) -> bool:
        return bool(self.deck) and self._last_index == len(self.deck) - 1


def build_candidate_pool(
    reviewed: Sequence[ReviewCard],
    deck: Sequence[Flashcard],
    target: int = POOL_TARGET,
    window: int = POOL_WINDOW,
) -> List[ReviewCard]:
    """
    Last `window` reviewed cards (whole deck if nothing was reviewed), topped
    up from the deck to `target` cards, skipping duplicate question text.
    """
    if reviewed:
        pool = list(reviewed)[-window:]
    else:
        pool = [ReviewCard(id=f"card-{i}", front=c.question, back=c.answer) for i, c in enumerate(deck)][-window:]

    seen = {_key(c.front) for c in pool}
    extra = 0
    for c in deck:
        if len(pool) >= target:
            break
        if _key(c.question) in seen:
            continue
        seen.add(_key(c.question))
        pool.append(ReviewCard(id=f"extra-card-{extra}", front=c.question, back=c.answer))
        extra += 1
    return pool


class ProveItSession:
    """
    collecting-questions -> awaiting-answers -> grading -> graded.

    Question generation degrades to an empty list; grading failures are raised
    and leave the session in awaiting-answers with answers kept for a resubmit.
    Follow-up answers are collected after grading but never graded.
    """

    def __init__(self, orchestrator: SynthesisOrchestrator) -> None:
        self.orchestrator = orchestrator
        self.state = ProveItState.IDLE
        self.pool: List[ReviewCard] = []
        self.questions: List[ProveItQuestion] = []
        self.answers: Dict[str, str] = {}
        self.grade: Optional[ProveItGrade] = None
        self.follow_ups: Dict[str, str] = {}

    async def start(
        self,
        reviewed: Sequence[ReviewCard],
        deck: Sequence[Flashcard] = (),
        cancel: Optional[CancelToken] = None,
    ) -> List[ProveItQuestion]:
        if self.state in (ProveItState.COLLECTING_QUESTIONS, ProveItState.GRADING):
            raise ProveItStateError(f"cannot start while {self.state.value}")

        self.state = ProveItState.COLLECTING_QUESTIONS
        self.answers = {}
        self.grade = None
        self.follow_ups = {}
        self.pool = build_candidate_pool(reviewed, deck)
        try:
            result = await self.orchestrator.prove_it_questions(self.pool, cancel=cancel)
        except Exception:
            self.state = ProveItState.IDLE
            raise

        self.questions = result.questions
        self.state = ProveItState.AWAITING_ANSWERS
        logger.info("prove-it ready pool=%s questions=%s", len(self.pool), len(self.questions))
        return self.questions

    def answer(self, question_id: str, text: str) -> None:
        if self.state is not ProveItState.AWAITING_ANSWERS:
            raise ProveItStateError(f"answers are not accepted while {self.state.value}")
        if question_id not in {q.id for q in self.questions}:
            raise KeyError(question_id)
        self.answers[question_id] = text

    @property
    def can_submit(self) -> bool:
        return bool(self.questions) and all((self.answers.get(q.id) or "").strip() for q in self.questions)

    async def submit(self, cancel: Optional[CancelToken] = None) -> ProveItGrade:
        if self.state is not ProveItState.AWAITING_ANSWERS:
            raise ProveItStateError(f"cannot grade while {self.state.value}")
        if not self.can_submit:
            raise ProveItStateError("every question needs a non-empty answer before grading")

        self.state = ProveItState.GRADING
        try:
            grade = await self.orchestrator.grade_prove_it(self.questions, self.answers, cancel=cancel)
        except Exception:
            logger.exception("prove-it grading failed questions=%s", len(self.questions))
            self.state = ProveItState.AWAITING_ANSWERS
            raise

        self.grade = grade
        self.state = ProveItState.GRADED
        logger.info("prove-it graded total=%s max=%s", grade.totalScore, grade.maxScore)
        return grade

    def record_follow_up(self, question_id: str, text: str) -> None:
        if self.state is not ProveItState.GRADED or self.grade is None:
            raise ProveItStateError("follow-ups are only collected after grading")
        item = next((r for r in self.grade.results if r.id == question_id), None)
        if item is None or item.followUpQuestion is None:
            raise KeyError(question_id)
        self.follow_ups[question_id] = text
