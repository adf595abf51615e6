"""
In-Memory Study Repository

Map-backed store for sessions, questions, answers, knowledge areas and
session evaluations, with synthetic auto-increment ids. One instance is
created at process start and passed to every controller.

Answers are keyed by question id: saving an answer for a question that
already has one overwrites it in place (upsert), so there is never more than
one answer per question.
"""

import asyncio
import logging
from datetime import datetime
from typing import Dict, List, Optional

from ai_study_tutor.errors import NotFoundError, ValidationError
from ai_study_tutor.models import (
    DIFFICULTIES,
    STAGES,
    Answer,
    AnswerState,
    EvaluationResult,
    KnowledgeArea,
    Question,
    QuestionWithAnswer,
    Session,
    SessionEvaluation,
)

logger = logging.getLogger(__name__)


class StudyRepository:
    """
    Async in-memory repository.

    Methods are coroutines so controllers await them exactly as they would a
    real data store; each await is a suspension point.
    """

    def __init__(self):
        self._sessions: Dict[int, Session] = {}
        self._questions: Dict[int, Question] = {}
        # question_id -> current answer
        self._answers: Dict[int, Answer] = {}
        self._knowledge_areas: Dict[int, KnowledgeArea] = {}
        # session_id -> latest session-level evaluation
        self._session_evaluations: Dict[int, SessionEvaluation] = {}

        self._next_session_id = 1
        self._next_question_id = 1
        self._next_answer_id = 1
        self._next_area_id = 1

    # ==================== Sessions ====================

    async def create_session(self, user_id: int, topic: str, stage: str) -> Session:
        if stage not in STAGES:
            raise ValidationError(f"Invalid stage: {stage}")
        session = Session(id=self._next_session_id, user_id=user_id, topic=topic, stage=stage)
        self._next_session_id += 1
        self._sessions[session.id] = session
        logger.info(f"💾 [Repository] Created session {session.id} for user {user_id} ({topic})")
        return session

    async def get_session(self, session_id: int) -> Optional[Session]:
        await asyncio.sleep(0)
        return self._sessions.get(session_id)

    async def require_session(self, session_id: int) -> Session:
        session = await self.get_session(session_id)
        if session is None:
            raise NotFoundError("Session not found")
        return session

    async def get_user_sessions(self, user_id: int) -> List[Session]:
        return [s for s in self._sessions.values() if s.user_id == user_id]

    async def update_session_stage(self, session_id: int, stage: str) -> Session:
        if stage not in STAGES:
            raise ValidationError(f"Invalid stage: {stage}")
        session = await self.require_session(session_id)
        session.stage = stage
        session.updated_at = datetime.now()
        return session

    # ==================== Questions ====================

    async def create_question(self, session_id: int, text: str, difficulty: str) -> Question:
        if difficulty not in DIFFICULTIES:
            raise ValidationError(f"Invalid difficulty: {difficulty}")
        question = Question(
            id=self._next_question_id,
            session_id=session_id,
            question=text,
            difficulty=difficulty,
        )
        self._next_question_id += 1
        self._questions[question.id] = question
        return question

    def peek_question(self, question_id: int) -> Optional[Question]:
        """Synchronous lookup used by the fast acknowledgement path."""
        return self._questions.get(question_id)

    async def get_session_questions(self, session_id: int) -> List[Question]:
        return sorted(
            (q for q in self._questions.values() if q.session_id == session_id),
            key=lambda q: q.id,
        )

    # ==================== Answers ====================

    def upsert_answer(
        self,
        question_id: int,
        user_answer: str,
        evaluation: EvaluationResult,
        state: AnswerState,
    ) -> Answer:
        """Create the answer for a question, or overwrite the existing one."""
        existing = self._answers.get(question_id)
        if existing is not None:
            existing.user_answer = user_answer
            existing.evaluation = evaluation
            existing.state = state
            existing.updated_at = datetime.now()
            return existing

        answer = Answer(
            id=self._next_answer_id,
            question_id=question_id,
            user_answer=user_answer,
            evaluation=evaluation,
            state=state,
        )
        self._next_answer_id += 1
        self._answers[question_id] = answer
        return answer

    async def save_answer(
        self,
        question_id: int,
        user_answer: str,
        evaluation: EvaluationResult,
        state: AnswerState = AnswerState.EVALUATED,
    ) -> Answer:
        await asyncio.sleep(0)
        return self.upsert_answer(question_id, user_answer, evaluation, state)

    async def get_question_answer(self, question_id: int) -> Optional[Answer]:
        return self._answers.get(question_id)

    def peek_answer(self, question_id: int) -> Optional[Answer]:
        return self._answers.get(question_id)

    async def get_session_questions_with_answers(self, session_id: int) -> List[QuestionWithAnswer]:
        questions = await self.get_session_questions(session_id)
        return [QuestionWithAnswer(question=q, answer=self._answers.get(q.id)) for q in questions]

    async def get_session_answers(self, session_id: int) -> List[Answer]:
        question_ids = {q.id for q in await self.get_session_questions(session_id)}
        return [a for qid, a in self._answers.items() if qid in question_ids]

    # ==================== Knowledge Areas ====================

    async def create_knowledge_area(self, session_id: int, name: str, proficiency: int) -> KnowledgeArea:
        area = KnowledgeArea(
            id=self._next_area_id,
            session_id=session_id,
            name=name,
            proficiency=_clamp_proficiency(proficiency),
        )
        self._next_area_id += 1
        self._knowledge_areas[area.id] = area
        return area

    async def update_knowledge_area(self, area_id: int, proficiency: int) -> KnowledgeArea:
        area = self._knowledge_areas.get(area_id)
        if area is None:
            raise NotFoundError("Knowledge area not found")
        area.proficiency = _clamp_proficiency(proficiency)
        area.updated_at = datetime.now()
        return area

    async def get_session_knowledge_areas(self, session_id: int) -> List[KnowledgeArea]:
        return [a for a in self._knowledge_areas.values() if a.session_id == session_id]

    # ==================== Session Evaluations ====================

    async def save_session_evaluation(self, evaluation: SessionEvaluation) -> SessionEvaluation:
        await asyncio.sleep(0)
        self._session_evaluations[evaluation.session_id] = evaluation
        return evaluation

    async def get_session_evaluation(self, session_id: int) -> Optional[SessionEvaluation]:
        return self._session_evaluations.get(session_id)


def _clamp_proficiency(value: int) -> int:
    return max(0, min(100, int(value)))
