from __future__ import annotations

import json
import re
from dataclasses import dataclass
from typing import Any, Dict, Sequence

from notegenie.schemas.studio import Flashcard, ProveItQuestion, QuizStyle, ReviewCard, SynthesisMode

_NON_LETTERS_RE = re.compile(r"[^a-z]")


@dataclass(frozen=True)
class PromptTemplate:
    mode: SynthesisMode
    instructions: str
    max_output_tokens: int
    thinking_budget: int


def normalize_mode(label: Any) -> SynthesisMode:
    """
    Lossy, permissive mode parsing: lower-case, drop non-letters, then
    substring match tldr > bullet > detailed. Anything else is bullet.
    """
    if isinstance(label, SynthesisMode):
        return label
    cleaned = _NON_LETTERS_RE.sub("", str(label if label is not None else "").lower())
    for mode in (SynthesisMode.TLDR, SynthesisMode.BULLET, SynthesisMode.DETAILED):
        if mode.value in cleaned:
            return mode
    return SynthesisMode.BULLET


def normalize_quiz_style(label: Any) -> QuizStyle:
    cleaned = _NON_LETTERS_RE.sub("", str(label if label is not None else "").lower())
    for style in (QuizStyle.SCENARIO, QuizStyle.BASIC, QuizStyle.STANDARD):
        if style.value in cleaned:
            return style
    return QuizStyle.STANDARD


FORMAT_RULES = """STRICT OUTPUT FORMAT RULES (must follow)
1. Output must be plain text only.
2. Do not use Markdown symbols or Markdown styling anywhere. Avoid: #, ##, ###, *, -, >, `, _, **.
3. Do not use bullet points. Use numbering and lettered subpoints only.
4. Headings must be in ALL CAPS (no # symbols).
5. Use colons after labels (e.g., Definition:).
6. Use short, readable paragraphs.
7. No LaTeX, no equations, no math notation. Describe math concepts in plain text if necessary.
8. Do not wrap text in code blocks."""

_TUTOR = "Act as a senior academic tutor."

_TLDR = f"""{_TUTOR} Produce a TLDR summary.
{FORMAT_RULES}

TLDR CONSTRAINTS:
1. Length 120-180 words.
2. Structure: 1 Paragraph, 5 Takeaways, 1 Conclusion.

OUTPUT FORMAT:
ACADEMIC SUMMARY: [TOPIC]

PARAGRAPH:
[content]

TAKEAWAYS:
1.
2.
3.
4.
5.

CONCLUSION:
[content]"""

_BULLET = f"""{_TUTOR} Produce a concise BULLET MODE summary.
{FORMAT_RULES}

BULLET MODE CONSTRAINTS:
1. Prioritize clarity.
2. Include key definitions, distinctions, examples.

OUTPUT FORMAT:
ACADEMIC SUMMARY: [TOPIC]

1. CORE IDEA:
2. KEY DEFINITIONS:
   a)
   b)
3. KEY DISTINCTIONS:
   a)
   b)
4. IMPORTANT NUANCES:
   a)
5. APPLIED EXAMPLES:
   1)

CONCLUSION:
[content]"""

_DETAILED = f"""{_TUTOR} Produce a DETAILED academic summary.
{FORMAT_RULES}

DETAILED MODE CONSTRAINTS:
1. Preserve original meaning.
2. Capture all MAJOR sections, one numbered subsection per source section.
3. Do not invent missing info.

TEMPLATE:
ACADEMIC SUMMARY: [TOPIC]

1. [SECTION TITLE]
Definition:
Underlying logic:
Key elements:

[Continue for major sections]

COMPARATIVE ANALYSIS
Key differences:
a)
b)

APPLIED EXAMPLES

STRATEGIC SYNTHESIS
Conclusion:"""

_SUMMARY_TEMPLATES: Dict[SynthesisMode, PromptTemplate] = {
    SynthesisMode.TLDR: PromptTemplate(SynthesisMode.TLDR, _TLDR, max_output_tokens=2048, thinking_budget=1024),
    SynthesisMode.BULLET: PromptTemplate(SynthesisMode.BULLET, _BULLET, max_output_tokens=4096, thinking_budget=2048),
    SynthesisMode.DETAILED: PromptTemplate(
        SynthesisMode.DETAILED, _DETAILED, max_output_tokens=8192, thinking_budget=4096
    ),
}


def build(mode: Any) -> PromptTemplate:
    return _SUMMARY_TEMPLATES[normalize_mode(mode)]


def with_document_text(instructions: str, text: str, label: str = "DOCUMENT CONTENT") -> str:
    return f"{instructions}\n\n{label}:\n{text}"


# --- structured output schemas ---

FLASHCARD_SCHEMA: Dict[str, Any] = {
    "type": "ARRAY",
    "items": {
        "type": "OBJECT",
        "properties": {
            "question": {"type": "STRING"},
            "answer": {"type": "STRING"},
            "source": {"type": "STRING"},
        },
        "required": ["question", "answer"],
    },
}

DOCUMENT_FLASHCARD_SCHEMA: Dict[str, Any] = {
    "type": "ARRAY",
    "items": {
        "type": "OBJECT",
        "properties": FLASHCARD_SCHEMA["items"]["properties"],
        "required": ["question", "answer", "source"],
    },
}

QUIZ_SCHEMA: Dict[str, Any] = {
    "type": "ARRAY",
    "items": {
        "type": "OBJECT",
        "properties": {
            "question": {"type": "STRING"},
            "options": {"type": "ARRAY", "items": {"type": "STRING"}},
            "correctAnswer": {"type": "STRING"},
            "explanation": {"type": "STRING"},
        },
        "required": ["question", "options", "correctAnswer", "explanation"],
    },
}

PROVE_IT_QUESTION_SCHEMA: Dict[str, Any] = {
    "type": "ARRAY",
    "items": {
        "type": "OBJECT",
        "properties": {
            "id": {"type": "STRING"},
            "type": {"type": "STRING", "enum": ["short", "scenario"]},
            "question": {"type": "STRING"},
            "answerKey": {"type": "STRING"},
            "sourceCardIds": {"type": "ARRAY", "items": {"type": "STRING"}},
        },
        "required": ["id", "type", "question", "answerKey", "sourceCardIds"],
    },
}

PROVE_IT_GRADE_SCHEMA: Dict[str, Any] = {
    "type": "OBJECT",
    "properties": {
        "totalScore": {"type": "NUMBER"},
        "maxScore": {"type": "NUMBER"},
        "results": {
            "type": "ARRAY",
            "items": {
                "type": "OBJECT",
                "properties": {
                    "id": {"type": "STRING"},
                    "correct": {"type": "BOOLEAN"},
                    "score": {"type": "NUMBER"},
                    "feedback": {"type": "STRING"},
                    "firstMissingIdea": {"type": "STRING"},
                    "followUpQuestion": {"type": "STRING", "nullable": True},
                },
                "required": ["id", "correct", "score", "feedback", "firstMissingIdea"],
            },
        },
    },
    "required": ["totalScore", "maxScore", "results"],
}


# --- artifact prompts ---

SUMMARY_FLASHCARD_COUNT = 10
QUIZ_QUESTION_COUNT = 5
PROVE_IT_QUESTION_COUNT = 3


def build_summary_flashcards_prompt(summary_text: str, count: int = SUMMARY_FLASHCARD_COUNT) -> str:
    return f"""Return valid JSON only. No extra text.
Task: Generate exactly {count} high-impact flashcards based ONLY on the summary provided.
Rules:
1) Each flashcard must support ACTIVE RECALL.
2) Use only facts stated in the summary. Do not add outside knowledge.
3) Populate 'source' field with the specific Section Title/Header.
4) Keep answers 1-3 sentences.

Schema: Array of {{ "question": string, "answer": string, "source": string }}

SUMMARY:
{summary_text}"""


def build_document_flashcards_prompt(count: int, difficulty: str) -> str:
    return f"""Analyze this document content and generate exactly {count} flashcards.
Difficulty Level: {difficulty}.

Rules:
1. Extract key concepts directly from the content.
2. 'source' field MUST be "Page X" or Section Header.
3. Questions must be challenging.

Output JSON format: Array of {{ "question": string, "answer": string, "source": string }}."""


_QUIZ_STYLE_RULES: Dict[QuizStyle, str] = {
    QuizStyle.STANDARD: "Mix direct recall with questions that test understanding of why and how.",
    QuizStyle.SCENARIO: (
        "Frame every question as a short realistic scenario that requires applying a concept "
        "from the flashcards to decide the best answer."
    ),
    QuizStyle.BASIC: "Keep questions definitional: ask what a term means or which statement defines it.",
}


def build_quiz_prompt(cards: Sequence[Flashcard], style: QuizStyle = QuizStyle.STANDARD) -> str:
    payload = [{"question": c.question, "answer": c.answer} for c in cards]
    return f"""Return valid JSON only.
Task: Create exactly {QUIZ_QUESTION_COUNT} multiple-choice questions based ONLY on the flashcards below.
Rules:
1) Every question must be answerable from the flashcards. Do not use outside facts.
2) Each question has exactly 4 options.
3) correctAnswer must be copied exactly from one of the options.
4) explanation is 1-2 sentences citing the relevant flashcard.
5) Style ({style.value}): {_QUIZ_STYLE_RULES[style]}

Schema: Array of {{ question, options (4 strings), correctAnswer (string), explanation }}

FLASHCARDS_JSON:
{json.dumps(payload, ensure_ascii=False)}"""


def build_prove_it_prompt(cards: Sequence[ReviewCard], target: int = PROVE_IT_QUESTION_COUNT) -> str:
    payload = {"flashcards": [{"id": c.id, "front": c.front, "back": c.back} for c in cards]}
    return f"""You are a strict study coach.

Create a "Prove It" mini review of EXACTLY {target} questions from the provided flashcards.

Rules:
1) Use ONLY the flashcards provided as the knowledge source.
2) Q1 and Q2 must be short-answer (1-2 sentences expected).
3) Q3 must be a scenario/application question.
4) Provide an answerKey for each question using only the flashcard backs.
5) Each question must include sourceCardIds referencing the flashcards used.
6) Output ONLY valid JSON (no markdown, no commentary).

JSON schema:
[
  {{
    "id": "q1",
    "type": "short",
    "question": "string",
    "answerKey": "string",
    "sourceCardIds": ["string"]
  }}
]

FLASHCARDS_JSON:
{json.dumps(payload, ensure_ascii=False)}"""


def build_grade_prompt(questions: Sequence[ProveItQuestion], answers: Dict[str, str]) -> str:
    payload = {
        "questions": [q.model_dump() for q in questions],
        "studentAnswers": {q.id: answers.get(q.id, "") for q in questions},
    }
    return f"""You are an examiner. Grade the student's answers using ONLY the answer keys provided.

Rules:
1) Be strict but fair.
2) Accept paraphrases if meaning is preserved.
3) For each question return: correct (boolean), score (0..1), feedback (1-2 sentences),
   firstMissingIdea (short phrase).
4) If incorrect, generate exactly ONE followUpQuestion targeting firstMissingIdea.
5) If correct, followUpQuestion must be null.
6) Output ONLY valid JSON.

JSON schema:
{{
  "totalScore": number,
  "maxScore": number,
  "results": [
    {{
      "id": "q1",
      "correct": boolean,
      "score": number,
      "feedback": string,
      "firstMissingIdea": string,
      "followUpQuestion": string | null
    }}
  ]
}}

PAYLOAD_JSON:
{json.dumps(payload, ensure_ascii=False)}"""
