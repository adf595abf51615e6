"""
Batch Evaluation

Scores every answered question of a session in one AI call, writes the
per-question results back, and stores the session-level verdict as a
SessionEvaluation. Once a session has at least one answer, evaluation never
fails outright: unusable replies and gateway errors degrade to neutral
fallback scores.
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import List, Optional

from ai_study_tutor.ai_gateway import AIGateway
from ai_study_tutor.errors import AIGatewayError, NoAnswersError
from ai_study_tutor.knowledge_areas import derive_knowledge_areas
from ai_study_tutor.models import (
    AnswerState,
    BatchEvaluationResult,
    EvaluationResult,
    QuestionWithAnswer,
    SessionEvaluation,
    TestResult,
)
from ai_study_tutor.prompt_adapter import (
    BatchVerdict,
    batch_parse_fallback,
    build_batch_prompt,
    build_test_evaluation_prompt,
    parse_batch,
    parse_test_evaluation,
    parse_topic_metadata,
)
from ai_study_tutor.repository import StudyRepository
from ai_study_tutor.response_cache import answers_fingerprint, make_cache_key

logger = logging.getLogger(__name__)

SHARED_ANSWER_FEEDBACK = "See overall evaluation for details"
GATEWAY_FALLBACK_SCORE = 60
TEST_FALLBACK_SCORE = 50


@dataclass
class BatchOutcome:
    success: bool
    message: str
    evaluation: Optional[BatchEvaluationResult] = None

    def to_dict(self):
        data = {"success": self.success, "message": self.message}
        if self.evaluation is not None:
            data["evaluation"] = self.evaluation.to_dict()
        return data


def gateway_fallback(topic: str) -> BatchEvaluationResult:
    return BatchEvaluationResult(
        total_score=GATEWAY_FALLBACK_SCORE,
        feedback="We couldn't complete a detailed evaluation right now. Here is a general assessment of your test.",
        strengths=["You completed the test", "You provided answers to the questions"],
        weaknesses=["Some answers may need more detail", "Some concepts may need more practice"],
        recommended_areas=[f"Review core concepts of {topic}"],
    )


def full_test_fallback(topic: str) -> BatchEvaluationResult:
    return BatchEvaluationResult(
        total_score=TEST_FALLBACK_SCORE,
        feedback=(
            "I'm having trouble generating a detailed evaluation right now. "
            "Here's a basic assessment of your answers."
        ),
        strengths=["Your answers show an understanding of the concepts"],
        weaknesses=["Some areas might need more clarity or detail"],
        recommended_areas=[f"Review the core concepts of {topic}"],
    )


class BatchEvaluationController:
    """Session-level evaluation of all answers at once."""

    def __init__(self, repository: StudyRepository, gateway: AIGateway, area_extractor=None):
        self.repository = repository
        self.gateway = gateway
        self.area_extractor = area_extractor

    async def _answered(self, session_id: int) -> List[QuestionWithAnswer]:
        questions_with_answers = await self.repository.get_session_questions_with_answers(session_id)
        answered = [qa for qa in questions_with_answers if qa.answer is not None]
        if not answered:
            raise NoAnswersError(session_id)
        return answered

    @staticmethod
    def _cache_key(operation: str, session_id: int, answered: List[QuestionWithAnswer]) -> str:
        fingerprint = answers_fingerprint((qa.question.id, qa.answer.user_answer) for qa in answered)
        return make_cache_key(operation, session_id, fingerprint)

    async def evaluate_all(self, session_id: int) -> BatchOutcome:
        """
        Evaluate every answered question of a session together.

        Raises:
            NotFoundError: unknown session
            NoAnswersError: the session has no answered question
        """
        start = time.time()
        session = await self.repository.require_session(session_id)
        answered = await self._answered(session_id)
        topic = parse_topic_metadata(session.topic).topic
        logger.info(f"📊 [BatchEvaluation] Session {session_id}: evaluating {len(answered)} answers")

        try:
            result = await self.gateway.invoke(
                self._cache_key("batch", session_id, answered),
                lambda: build_batch_prompt(
                    topic, [(qa.question.question, qa.answer.user_answer) for qa in answered]
                ),
                parse_batch,
            )
            if result.ok:
                verdict = result.value
                is_fallback = False
            else:
                previous = [qa.answer.evaluation.correctness for qa in answered if qa.answer.is_evaluated]
                logger.warning(
                    f"⚠️ [BatchEvaluation] Session {session_id}: unusable reply ({result.reason}), "
                    f"falling back to {len(previous)} earlier scores"
                )
                verdict = BatchVerdict(result=batch_parse_fallback(topic, previous))
                is_fallback = True

            await self._apply(answered, verdict)
            await self.repository.save_session_evaluation(
                SessionEvaluation(session_id=session_id, result=verdict.result, is_fallback=is_fallback)
            )
            await derive_knowledge_areas(self.repository, session, self.area_extractor)

        except Exception as e:
            if isinstance(e, AIGatewayError):
                logger.warning(f"⚠️ [BatchEvaluation] Session {session_id}: AI unavailable ({e.message})")
            else:
                logger.error(f"❌ [BatchEvaluation] Session {session_id}: evaluation failed: {e}", exc_info=True)
            fallback = gateway_fallback(topic)
            await self.repository.save_session_evaluation(
                SessionEvaluation(session_id=session_id, result=fallback, is_fallback=True)
            )
            return BatchOutcome(
                success=True,
                message="Answers evaluated with fallback scoring",
                evaluation=fallback,
            )

        elapsed = (time.time() - start) * 1000
        logger.info(
            f"✅ [BatchEvaluation] Session {session_id}: totalScore={verdict.result.total_score} "
            f"({elapsed:.0f}ms)"
        )
        return BatchOutcome(success=True, message="All answers evaluated successfully", evaluation=verdict.result)

    async def _apply(self, answered: List[QuestionWithAnswer], verdict: BatchVerdict):
        """Write a per-question evaluation for every answer; one failed write does not stop the rest."""
        batch = verdict.result
        scores = verdict.individual_scores or []
        writes = []
        for index, qa in enumerate(answered):
            score = scores[index] if index < len(scores) and scores[index] is not None else batch.total_score
            evaluation = EvaluationResult(
                correctness=score,
                feedback=SHARED_ANSWER_FEEDBACK,
                strengths=list(batch.strengths),
                weaknesses=list(batch.weaknesses),
            )
            writes.append(
                self.repository.save_answer(qa.question.id, qa.answer.user_answer, evaluation, AnswerState.EVALUATED)
            )

        results = await asyncio.gather(*writes, return_exceptions=True)
        failed = [r for r in results if isinstance(r, BaseException)]
        if failed:
            logger.error(f"❌ [BatchEvaluation] {len(failed)}/{len(writes)} answer updates failed: {failed[0]}")

    async def evaluate_test(self, session_id: int) -> TestResult:
        """
        Overall verdict for the test view, with every answered question.

        Raises:
            NotFoundError: unknown session
            NoAnswersError: the session has no answered question
        """
        session = await self.repository.require_session(session_id)
        answered = await self._answered(session_id)
        topic = parse_topic_metadata(session.topic).topic

        rows = [
            (
                qa.question.question,
                qa.question.difficulty,
                qa.answer.user_answer,
                qa.answer.evaluation.correctness if qa.answer.is_evaluated else None,
            )
            for qa in answered
        ]

        try:
            result = await self.gateway.invoke(
                self._cache_key("test-evaluation", session_id, answered),
                lambda: build_test_evaluation_prompt(topic, rows),
                parse_test_evaluation,
            )
            if result.ok:
                overall = result.value
            else:
                logger.warning(f"⚠️ [BatchEvaluation] Session {session_id}: test evaluation malformed ({result.reason})")
                overall = full_test_fallback(topic)
        except AIGatewayError as e:
            logger.warning(f"⚠️ [BatchEvaluation] Session {session_id}: test evaluation unavailable ({e.message})")
            overall = full_test_fallback(topic)

        return TestResult(
            questions_and_answers=answered,
            total_score=overall.total_score,
            feedback=overall.feedback,
            strengths=overall.strengths,
            weaknesses=overall.weaknesses,
            recommended_areas=overall.recommended_areas,
        )
