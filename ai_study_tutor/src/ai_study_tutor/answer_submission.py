"""
Two-Phase Answer Submission

Per-question state machine: Unanswered -> PendingEvaluation -> Evaluated.

- Deferred submissions persist a placeholder evaluation and return at once;
  no AI call is made (the whole test is scored later in one batch).
- Immediate submissions return a temporary, non-persisted answer view and
  spawn a background task that evaluates the answer and persists the result.
  The task has its own error channel: a done-callback that logs failures.
"""

import asyncio
import logging
import time
from typing import Dict, Optional, Set

from ai_study_tutor.ai_gateway import AIGateway
from ai_study_tutor.errors import AIGatewayError, NotFoundError, ValidationError
from ai_study_tutor.models import (
    EVALUATING_FEEDBACK,
    PENDING_FEEDBACK,
    TEMPORARY_ANSWER_ID,
    Answer,
    AnswerState,
    EvaluationResult,
    Question,
)
from ai_study_tutor.prompt_adapter import (
    build_evaluation_prompt,
    evaluation_or_fallback,
    fallback_evaluation,
    parse_evaluation,
)
from ai_study_tutor.repository import StudyRepository
from ai_study_tutor.response_cache import make_cache_key

logger = logging.getLogger(__name__)


class AnswerSubmissionController:
    """Accepts answers and runs (or defers) their evaluation."""

    def __init__(self, repository: StudyRepository, gateway: AIGateway):
        self.repository = repository
        self.gateway = gateway
        # question_id -> latest in-flight evaluation task
        self._latest: Dict[int, asyncio.Task] = {}
        self._tasks: Set[asyncio.Task] = set()
        # question_id -> submission counter; only the newest submission may persist
        self._generation: Dict[int, int] = {}

    def submit(self, question_id: int, user_answer: str, defer_evaluation: bool = False) -> Answer:
        """
        Accept an answer for a question.

        Returns without awaiting anything: the deferred path persists a
        placeholder, the immediate path schedules the evaluation task.

        Raises:
            ValidationError: blank answer
            NotFoundError: unknown question id
        """
        if not isinstance(user_answer, str) or not user_answer.strip():
            raise ValidationError("userAnswer is required")
        question = self.repository.peek_question(question_id)
        if question is None:
            raise NotFoundError("Question not found")

        generation = self._generation.get(question_id, 0) + 1
        self._generation[question_id] = generation

        if defer_evaluation:
            placeholder = EvaluationResult(correctness=0, feedback=PENDING_FEEDBACK)
            answer = self.repository.upsert_answer(
                question_id, user_answer, placeholder, AnswerState.PENDING_EVALUATION
            )
            logger.info(f"📝 [AnswerSubmission] Deferred answer stored for question {question_id}")
            return answer

        task = asyncio.get_running_loop().create_task(
            self._evaluate_and_store(question, user_answer, generation)
        )
        self._latest[question_id] = task
        self._tasks.add(task)
        task.add_done_callback(lambda t: self._on_task_done(question_id, t))
        logger.info(f"🚀 [AnswerSubmission] Evaluation scheduled for question {question_id}")

        return Answer(
            id=TEMPORARY_ANSWER_ID,
            question_id=question_id,
            user_answer=user_answer,
            evaluation=EvaluationResult(correctness=0, feedback=EVALUATING_FEEDBACK),
            state=AnswerState.PENDING_EVALUATION,
        )

    async def _evaluate_and_store(self, question: Question, user_answer: str, generation: int) -> Optional[Answer]:
        start = time.time()
        cache_key = make_cache_key("evaluate", question.question, user_answer)
        try:
            result = await self.gateway.invoke(
                cache_key,
                lambda: build_evaluation_prompt(question.question, user_answer),
                parse_evaluation,
            )
            evaluation = evaluation_or_fallback(result)
        except AIGatewayError as e:
            logger.warning(f"⚠️ [AnswerSubmission] Evaluation failed for question {question.id}: {e.message}")
            evaluation = fallback_evaluation()

        if self._generation.get(question.id) != generation:
            logger.info(f"⏭️ [AnswerSubmission] Discarding stale evaluation for question {question.id}")
            return None

        answer = await self.repository.save_answer(question.id, user_answer, evaluation, AnswerState.EVALUATED)
        elapsed = (time.time() - start) * 1000
        logger.info(
            f"✅ [AnswerSubmission] Question {question.id} evaluated "
            f"(correctness={evaluation.correctness}, {elapsed:.0f}ms)"
        )
        return answer

    def _on_task_done(self, question_id: int, task: asyncio.Task):
        self._tasks.discard(task)
        if self._latest.get(question_id) is task:
            del self._latest[question_id]
        if task.cancelled():
            logger.warning(f"⚠️ [AnswerSubmission] Evaluation for question {question_id} was cancelled")
            return
        error = task.exception()
        if error is not None:
            logger.error(
                f"❌ [AnswerSubmission] Background evaluation for question {question_id} failed: {error}",
                exc_info=error,
            )

    def state_of(self, question_id: int) -> AnswerState:
        """Current lifecycle state of a question's answer."""
        if question_id in self._latest:
            return AnswerState.PENDING_EVALUATION
        answer = self.repository.peek_answer(question_id)
        if answer is None:
            return AnswerState.UNANSWERED
        return answer.state

    @property
    def pending_count(self) -> int:
        return len(self._tasks)

    async def drain(self):
        """Wait for every in-flight evaluation to settle."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
