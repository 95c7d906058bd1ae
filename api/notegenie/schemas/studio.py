from enum import Enum
from typing import Dict, List, Optional

from pydantic import BaseModel, Field


class SynthesisMode(str, Enum):
    TLDR = "tldr"
    BULLET = "bullet"
    DETAILED = "detailed"


class QuizStyle(str, Enum):
    STANDARD = "standard"
    SCENARIO = "scenario"
    BASIC = "basic"


class StudyGoal(str, Enum):
    QUICK = "quick"
    STANDARD = "standard"
    EXAM = "exam"


class Flashcard(BaseModel):
    question: str
    answer: str
    source: Optional[str] = None

    @property
    def usable(self) -> bool:
        return bool(self.question.strip() and self.answer.strip())


class QuizQuestion(BaseModel):
    question: str
    options: List[str]
    correctAnswer: str
    explanation: str = ""


class ReviewCard(BaseModel):
    """A flashcard as seen by the prove-it review (front/back with a stable id)."""

    id: str
    front: str
    back: str


class ProveItQuestion(BaseModel):
    id: str
    type: str = "short"  # short or scenario
    question: str
    answerKey: str
    sourceCardIds: List[str]


class ProveItGradeItem(BaseModel):
    id: str
    correct: bool
    score: float = Field(ge=0.0, le=1.0)
    feedback: str = ""
    firstMissingIdea: str = ""
    followUpQuestion: Optional[str] = None


class ProveItGrade(BaseModel):
    totalScore: float
    maxScore: float
    results: List[ProveItGradeItem]


# Tagged results handed back to callers


class Summary(BaseModel):
    text: str
    mode: SynthesisMode
    model: str
    used_extracted_text: bool


class FlashcardList(BaseModel):
    cards: List[Flashcard]


class QuizList(BaseModel):
    questions: List[QuizQuestion]


class ProveItQuestionList(BaseModel):
    questions: List[ProveItQuestion]


# HTTP request/response bodies


class FlashcardsRequest(BaseModel):
    summary: str = Field(min_length=1)


class QuizRequest(BaseModel):
    flashcards: List[Flashcard]
    style: str = QuizStyle.STANDARD.value


class ProveItStartRequest(BaseModel):
    reviewed: List[ReviewCard] = Field(default_factory=list)
    deck: List[Flashcard] = Field(default_factory=list)


class ProveItStartResponse(BaseModel):
    session_id: str
    state: str
    questions: List[ProveItQuestion]


class ProveItAnswersRequest(BaseModel):
    answers: Dict[str, str]


class ProveItFollowUpsResponse(BaseModel):
    session_id: str
    state: str
    follow_ups: Dict[str, str]


class UploadMeta(BaseModel):
    file_name: str
    file_size: int = Field(ge=0)
    file_type: str
    storage_path: str
    sha256: str


class RecordsRequest(BaseModel):
    owner_id: str = Field(min_length=1)
    title: str = Field(min_length=1, max_length=300)
    upload: Optional[UploadMeta] = None
    summary: Optional[Summary] = None
    flashcards: List[Flashcard] = Field(default_factory=list)
    quiz: List[QuizQuestion] = Field(default_factory=list)
