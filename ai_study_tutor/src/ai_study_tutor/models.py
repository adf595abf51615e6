"""
Study Session Data Model

Dataclasses for sessions, questions, answers, knowledge areas and the
evaluation value objects that flow between the controllers and the HTTP layer.
Every entity serialises to the camelCase JSON shape the web client expects.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

STAGES = ("analysis", "feedback", "teaching", "retest")
DIFFICULTIES = ("easy", "medium", "hard")

PENDING_FEEDBACK = "Pending evaluation at test completion"
EVALUATING_FEEDBACK = "Evaluating your answer..."
TEMPORARY_ANSWER_ID = -1


class AnswerState(str, Enum):
    """Per-question lifecycle of an answer."""
    UNANSWERED = "unanswered"
    PENDING_EVALUATION = "pending_evaluation"
    EVALUATED = "evaluated"


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


@dataclass
class Session:
    """One user's study interaction on a topic."""
    id: int
    user_id: int
    topic: str
    stage: str
    created_at: datetime = field(default_factory=datetime.now)
    updated_at: datetime = field(default_factory=datetime.now)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "userId": self.user_id,
            "topic": self.topic,
            "stage": self.stage,
            "createdAt": _iso(self.created_at),
            "updatedAt": _iso(self.updated_at),
        }


@dataclass
class Question:
    """A generated quiz question. Immutable after creation."""
    id: int
    session_id: int
    question: str
    difficulty: str
    created_at: datetime = field(default_factory=datetime.now)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "sessionId": self.session_id,
            "question": self.question,
            "difficulty": self.difficulty,
            "createdAt": _iso(self.created_at),
        }


@dataclass
class EvaluationResult:
    """Score and feedback for a single answer (correctness is 0-100)."""
    correctness: int
    feedback: str
    strengths: List[str] = field(default_factory=list)
    weaknesses: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "correctness": self.correctness,
            "feedback": self.feedback,
            "strengths": list(self.strengths),
            "weaknesses": list(self.weaknesses),
        }


@dataclass
class BatchEvaluationResult:
    """Overall score and feedback for a whole test (totalScore is 0-100)."""
    total_score: int
    feedback: str
    strengths: List[str] = field(default_factory=list)
    weaknesses: List[str] = field(default_factory=list)
    recommended_areas: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "totalScore": self.total_score,
            "feedback": self.feedback,
            "strengths": list(self.strengths),
            "weaknesses": list(self.weaknesses),
            "recommendedAreas": list(self.recommended_areas),
        }


@dataclass
class Answer:
    """The single current answer for a question (keyed 1:1 by question_id)."""
    id: int
    question_id: int
    user_answer: str
    evaluation: EvaluationResult
    state: AnswerState = AnswerState.PENDING_EVALUATION
    created_at: datetime = field(default_factory=datetime.now)
    updated_at: datetime = field(default_factory=datetime.now)

    @property
    def is_evaluated(self) -> bool:
        return self.state == AnswerState.EVALUATED

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "questionId": self.question_id,
            "userAnswer": self.user_answer,
            "evaluation": self.evaluation.to_dict(),
            "state": self.state.value,
            "createdAt": _iso(self.created_at),
            "updatedAt": _iso(self.updated_at),
        }


@dataclass
class KnowledgeArea:
    """A topic-derived sub-skill with a tracked proficiency (0-100)."""
    id: int
    session_id: int
    name: str
    proficiency: int
    updated_at: datetime = field(default_factory=datetime.now)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "sessionId": self.session_id,
            "name": self.name,
            "proficiency": self.proficiency,
            "updatedAt": _iso(self.updated_at),
        }


@dataclass
class SessionEvaluation:
    """Session-level batch evaluation, stored independently of any answer."""
    session_id: int
    result: BatchEvaluationResult
    is_fallback: bool = False
    evaluated_at: datetime = field(default_factory=datetime.now)

    def to_dict(self) -> Dict[str, Any]:
        data = self.result.to_dict()
        data["sessionId"] = self.session_id
        data["isFallback"] = self.is_fallback
        data["evaluatedAt"] = _iso(self.evaluated_at)
        return data


@dataclass
class QuestionWithAnswer:
    question: Question
    answer: Optional[Answer] = None

    def to_dict(self) -> Dict[str, Any]:
        data = self.question.to_dict()
        data["answer"] = self.answer.to_dict() if self.answer else None
        return data


@dataclass
class TestResult:
    """Full-test evaluation: every answered question plus the overall verdict."""
    __test__ = False  # not a pytest class

    questions_and_answers: List[QuestionWithAnswer]
    total_score: int
    feedback: str
    strengths: List[str] = field(default_factory=list)
    weaknesses: List[str] = field(default_factory=list)
    recommended_areas: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "questionsAndAnswers": [
                {
                    "question": qa.question.to_dict(),
                    "answer": qa.answer.to_dict() if qa.answer else None,
                }
                for qa in self.questions_and_answers
            ],
            "totalScore": self.total_score,
            "feedback": self.feedback,
            "strengths": list(self.strengths),
            "weaknesses": list(self.weaknesses),
            "recommendedAreas": list(self.recommended_areas),
        }


@dataclass
class TeachingContent:
    text: str
    follow_up_questions: Optional[List[str]] = None

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"text": self.text}
        if self.follow_up_questions:
            data["followUpQuestions"] = list(self.follow_up_questions)
        return data


@dataclass
class StudyBreakRecommendation:
    activity_type: str
    duration: int
    description: str
    benefits: List[str] = field(default_factory=list)
    steps: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "activityType": self.activity_type,
            "duration": self.duration,
            "description": self.description,
            "benefits": list(self.benefits),
            "steps": list(self.steps),
        }
