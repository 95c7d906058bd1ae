from __future__ import annotations

import logging
from typing import Any, Callable, Dict, List, Optional, Sequence

import httpx

from notegenie.core.config import settings
from notegenie.core.errors import SynthesisCancelled, SynthesisError
from notegenie.core.gemini import BlobPart, GenerationConfig, Part, TextPart, complete
from notegenie.core.llm_router import ModelTier, pick_model
from notegenie.core.retry import RetryPolicy
from notegenie.ingestion.parser import Document, ExtractedText, extract_text
from notegenie.schemas.studio import (
    Flashcard,
    FlashcardList,
    ProveItGrade,
    ProveItQuestion,
    ProveItQuestionList,
    QuizList,
    QuizStyle,
    ReviewCard,
    StudyGoal,
    Summary,
    SynthesisMode,
)
from notegenie.studio import parsing, prompt

logger = logging.getLogger("studio")

MIN_QUIZ_CARDS = 3

GOAL_TARGET_CARDS: Dict[StudyGoal, int] = {
    StudyGoal.QUICK: 10,
    StudyGoal.STANDARD: 25,
    StudyGoal.EXAM: 50,
}


def normalize_goal(label: Any) -> StudyGoal:
    raw = str(label if label is not None else "").strip().lower()
    for goal in StudyGoal:
        if goal.value == raw:
            return goal
    return StudyGoal.STANDARD


class CancelToken:
    """Cooperative cancellation flag, checked between pipeline stages."""

    def __init__(self) -> None:
        self._cancelled = False

    def cancel(self) -> None:
        self._cancelled = True

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def raise_if_cancelled(self, stage: str = "") -> None:
        if self._cancelled:
            raise SynthesisCancelled(f"Cancelled before {stage}" if stage else "Cancelled")


def _document_parts(instructions: str, document: Document, extracted: ExtractedText, label: str) -> List[Part]:
    if extracted:
        return [TextPart(prompt.with_document_text(instructions, extracted.text, label=label))]
    return [TextPart(instructions), BlobPart(data=document.data, mime_type=document.mime_type)]


class SynthesisOrchestrator:
    """
    Runs extraction -> prompt -> completion for each study artifact.

    Every call is independent; the only shared state is the http client and
    the retry policy, neither of which is mutated here.
    """

    def __init__(
        self,
        client: httpx.AsyncClient,
        retry: Optional[RetryPolicy] = None,
        tiers: Optional[List[ModelTier]] = None,
        extractor: Callable[[Document], ExtractedText] = extract_text,
    ) -> None:
        self.client = client
        self.retry = retry or RetryPolicy.from_settings()
        self.tiers = tiers
        self.extractor = extractor

    def _check(self, cancel: Optional[CancelToken], stage: str) -> None:
        if cancel is not None:
            cancel.raise_if_cancelled(stage)

    async def _call(
        self,
        model: str,
        parts: Sequence[Part],
        config: GenerationConfig,
        cancel: Optional[CancelToken],
        stage: str,
        strict: bool = False,
    ) -> Any:
        result = await self.retry.run(
            lambda: complete(self.client, model=model, parts=parts, config=config, strict=strict),
            before_attempt=lambda: self._check(cancel, stage),
        )
        self._check(cancel, f"{stage} result handling")
        return result

    def _extract(self, document: Document, cancel: Optional[CancelToken]) -> ExtractedText:
        self._check(cancel, "extraction")
        extracted = self.extractor(document)
        self._check(cancel, "prompt assembly")
        return extracted

    async def summarize(
        self, document: Document, mode: Any = SynthesisMode.BULLET, cancel: Optional[CancelToken] = None
    ) -> Summary:
        """
        Fatal on failure: an empty summary has no safe default.

        Model choice follows the same tiers as document flashcards: the fast
        model over extracted text, the quality model when only raw bytes can be
        sent (scanned or image-only documents), not the fast model every time.
        """
        extracted = self._extract(document, cancel)
        return await self._summarize(document, extracted, mode, cancel)

    async def _summarize(
        self, document: Document, extracted: ExtractedText, mode: Any, cancel: Optional[CancelToken]
    ) -> Summary:
        template = prompt.build(mode)
        model = pick_model(has_text=bool(extracted), tiers=self.tiers)
        config = GenerationConfig(
            temperature=settings.summary_temperature,
            max_output_tokens=template.max_output_tokens,
            thinking_budget=template.thinking_budget,
        )
        parts = _document_parts(template.instructions, document, extracted, label="DOCUMENT CONTENT")

        logger.info(
            "summary start mode=%s model=%s extracted_pages=%s", template.mode.value, model, len(extracted)
        )
        text = await self._call(model, parts, config, cancel, stage="summary")
        text = str(text or "").strip()
        if not text:
            raise SynthesisError("Failed to generate summary: the model returned no text.")

        return Summary(text=text, mode=template.mode, model=model, used_extracted_text=bool(extracted))

    async def flashcards_from_summary(
        self, summary_text: str, cancel: Optional[CancelToken] = None
    ) -> FlashcardList:
        """Exactly-10 request from summary text. Any failure is an empty deck."""
        if not (summary_text or "").strip():
            return FlashcardList(cards=[])

        count = prompt.SUMMARY_FLASHCARD_COUNT
        config = GenerationConfig(response_schema=prompt.FLASHCARD_SCHEMA)
        parts = [TextPart(prompt.build_summary_flashcards_prompt(summary_text, count=count))]
        try:
            data = await self._call(settings.fast_model, parts, config, cancel, stage="summary flashcards")
        except SynthesisCancelled:
            raise
        except Exception:
            logger.exception("summary flashcards failed, returning empty deck")
            return FlashcardList(cards=[])

        deck = parsing.parse_flashcards(data, limit=count)
        logger.info("summary flashcards done cards=%s", len(deck.cards))
        return deck

    async def flashcards_from_document(
        self,
        document: Document,
        count: int = GOAL_TARGET_CARDS[StudyGoal.STANDARD],
        difficulty: str = StudyGoal.STANDARD.value,
        cancel: Optional[CancelToken] = None,
    ) -> FlashcardList:
        """
        Direct generation; falls back to tldr summary -> summary flashcards.
        Empty only when both levels fail.
        """
        count = max(1, int(count))
        extracted = self._extract(document, cancel)
        model = pick_model(has_text=bool(extracted), tiers=self.tiers)
        config = GenerationConfig(response_schema=prompt.DOCUMENT_FLASHCARD_SCHEMA)
        instructions = prompt.build_document_flashcards_prompt(count, difficulty)
        parts = _document_parts(instructions, document, extracted, label="DOCUMENT TEXT")

        try:
            data = await self._call(model, parts, config, cancel, stage="document flashcards", strict=True)
            deck = parsing.parse_flashcards(data, limit=count)
            logger.info("document flashcards done model=%s cards=%s", model, len(deck.cards))
            return deck
        except SynthesisCancelled:
            raise
        except Exception as e:
            logger.warning("document flashcards failed model=%s err=%s, falling back to summary", model, e)

        try:
            summary = await self._summarize(document, extracted, SynthesisMode.TLDR, cancel)
        except SynthesisCancelled:
            raise
        except Exception:
            logger.exception("fallback summary failed, returning empty deck")
            return FlashcardList(cards=[])

        return await self.flashcards_from_summary(summary.text, cancel=cancel)

    async def quiz(
        self,
        flashcards: Sequence[Flashcard],
        style: Any = QuizStyle.STANDARD,
        cancel: Optional[CancelToken] = None,
    ) -> QuizList:
        """Five questions grounded in the cards; fewer than 3 usable cards means no call."""
        usable = [c for c in flashcards if c.usable]
        if len(usable) < MIN_QUIZ_CARDS:
            logger.info("quiz skipped usable_cards=%s min=%s", len(usable), MIN_QUIZ_CARDS)
            return QuizList(questions=[])

        quiz_style = style if isinstance(style, QuizStyle) else prompt.normalize_quiz_style(style)
        config = GenerationConfig(response_schema=prompt.QUIZ_SCHEMA)
        parts = [TextPart(prompt.build_quiz_prompt(usable, style=quiz_style))]
        try:
            data = await self._call(settings.fast_model, parts, config, cancel, stage="quiz")
        except SynthesisCancelled:
            raise
        except Exception:
            logger.exception("quiz generation failed, returning empty quiz")
            return QuizList(questions=[])

        quiz = parsing.parse_quiz(data, limit=prompt.QUIZ_QUESTION_COUNT)
        logger.info("quiz done style=%s questions=%s", quiz_style.value, len(quiz.questions))
        return quiz

    async def prove_it_questions(
        self, cards: Sequence[ReviewCard], cancel: Optional[CancelToken] = None
    ) -> ProveItQuestionList:
        """Up to 3 questions; malformed ones are dropped, failures give an empty list."""
        if not cards:
            return ProveItQuestionList(questions=[])

        config = GenerationConfig(response_schema=prompt.PROVE_IT_QUESTION_SCHEMA)
        parts = [TextPart(prompt.build_prove_it_prompt(cards))]
        try:
            data = await self._call(settings.fast_model, parts, config, cancel, stage="prove-it questions")
        except SynthesisCancelled:
            raise
        except Exception:
            logger.exception("prove-it question generation failed")
            return ProveItQuestionList(questions=[])

        return parsing.parse_prove_it_questions(data, limit=prompt.PROVE_IT_QUESTION_COUNT)

    async def grade_prove_it(
        self,
        questions: Sequence[ProveItQuestion],
        answers: Dict[str, str],
        cancel: Optional[CancelToken] = None,
    ) -> ProveItGrade:
        """Fatal on failure: the learner must be told grading failed."""
        config = GenerationConfig(response_schema=prompt.PROVE_IT_GRADE_SCHEMA)
        parts = [TextPart(prompt.build_grade_prompt(questions, answers))]
        data = await self._call(settings.fast_model, parts, config, cancel, stage="prove-it grading", strict=True)
        if not isinstance(data, dict):
            raise SynthesisError("Grading response was not a JSON object.")
        return parsing.parse_prove_it_grade(data, questions)
