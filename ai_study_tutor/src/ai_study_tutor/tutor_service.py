"""
Tutor Service

Question generation, teaching chat, study notes, model answers and study
break recommendations. Each operation goes through the AIGateway; all but
question generation degrade to a fixed fallback payload when the model is
slow, unreachable or returns something unusable.
"""

import asyncio
import logging
from typing import Dict, List, Optional, Sequence

from ai_study_tutor.ai_gateway import AIGateway
from ai_study_tutor.config import Settings
from ai_study_tutor.errors import AIGatewayError, NotFoundError, ParseError
from ai_study_tutor.models import Question, StudyBreakRecommendation, TeachingContent
from ai_study_tutor.prompt_adapter import (
    CORRECT_ANSWER_APOLOGY,
    build_correct_answer_prompt,
    build_notes_prompt,
    build_question_prompt,
    build_study_break_prompt,
    build_teaching_prompt,
    notes_fallback,
    parse_correct_answer,
    parse_notes,
    parse_questions,
    parse_study_break,
    parse_teaching,
    parse_topic_metadata,
    study_break_fallback,
    teaching_fallback,
)
from ai_study_tutor.repository import StudyRepository
from ai_study_tutor.response_cache import make_cache_key

logger = logging.getLogger(__name__)


class TutorService:
    """AI-backed study features that are not part of answer evaluation."""

    def __init__(self, repository: StudyRepository, gateway: AIGateway, settings: Optional[Settings] = None):
        self.repository = repository
        self.gateway = gateway
        self.settings = settings or Settings()

    async def generate_questions(self, session_id: int, raw_topic: str) -> List[Question]:
        """
        Generate and store new questions for a session.

        Not cached: the same topic in another session should get fresh questions.

        Raises:
            NotFoundError: unknown session
            AIGatewayError: model unavailable
            ParseError: reply contained no usable question
        """
        await self.repository.require_session(session_id)
        spec = parse_topic_metadata(raw_topic)
        existing = [q.question for q in await self.repository.get_session_questions(session_id)]
        count = self.settings.questions_per_test

        logger.info(
            f"❓ [TutorService] Generating {count} questions on '{spec.topic}' "
            f"({spec.education_level}, {spec.difficulty_level}, {len(existing)} existing)"
        )
        result = await self.gateway.invoke(
            None,
            lambda: build_question_prompt(spec, existing, count),
            lambda text: parse_questions(text, existing, limit=count),
        )
        if not result.ok:
            raise ParseError("Failed to generate questions", raw_text=result.raw_text)

        questions = []
        for generated in result.value:
            questions.append(
                await self.repository.create_question(session_id, generated.question, generated.difficulty)
            )
        logger.info(f"✅ [TutorService] Stored {len(questions)} questions for session {session_id}")
        return questions

    async def get_teaching_content(self, topic: str, question: str) -> TeachingContent:
        try:
            result = await self.gateway.invoke(
                make_cache_key("teaching", topic, question),
                lambda: build_teaching_prompt(topic, question),
                parse_teaching,
            )
        except AIGatewayError as e:
            logger.warning(f"⚠️ [TutorService] Teaching unavailable: {e.message}")
            return teaching_fallback()
        if not result.ok:
            return teaching_fallback()
        return result.value

    async def generate_notes(self, topic: str, weak_areas: Optional[Sequence[str]] = None) -> str:
        weak = sorted(weak_areas or [])
        try:
            result = await self.gateway.invoke(
                make_cache_key("notes", topic, ",".join(weak) or "none"),
                lambda: build_notes_prompt(topic, weak),
                parse_notes,
            )
        except AIGatewayError as e:
            logger.warning(f"⚠️ [TutorService] Notes unavailable: {e.message}")
            return notes_fallback(topic)
        if not result.ok:
            return notes_fallback(topic)
        return result.value

    async def _correct_answer(self, topic: str, question: Question) -> Dict:
        try:
            result = await self.gateway.invoke(
                make_cache_key("correct-answer", topic, question.question),
                lambda: build_correct_answer_prompt(topic, question.question),
                parse_correct_answer,
            )
            answer = result.value if result.ok else CORRECT_ANSWER_APOLOGY
        except AIGatewayError as e:
            logger.warning(f"⚠️ [TutorService] Correct answer for question {question.id} unavailable: {e.message}")
            answer = CORRECT_ANSWER_APOLOGY
        return {"questionId": question.id, "correctAnswer": answer}

    async def get_correct_answers(self, session_id: int) -> List[Dict]:
        """
        Model answer for every question in a session, fetched concurrently.

        Raises:
            NotFoundError: unknown session or a session without questions
        """
        session = await self.repository.require_session(session_id)
        questions = await self.repository.get_session_questions(session_id)
        if not questions:
            raise NotFoundError("No questions found for this session")

        topic = parse_topic_metadata(session.topic).topic
        return list(await asyncio.gather(*(self._correct_answer(topic, q) for q in questions)))

    async def recommend_study_break(
        self,
        session_seconds: int,
        topic: str,
        last_break_type: Optional[str] = None
    ) -> StudyBreakRecommendation:
        minutes = max(0, int(session_seconds) // 60)
        try:
            result = await self.gateway.invoke(
                None,
                lambda: build_study_break_prompt(minutes, topic, last_break_type),
                parse_study_break,
            )
        except AIGatewayError as e:
            logger.warning(f"⚠️ [TutorService] Study break unavailable: {e.message}")
            return study_break_fallback(minutes, last_break_type)
        if not result.ok:
            return study_break_fallback(minutes, last_break_type)
        return result.value
