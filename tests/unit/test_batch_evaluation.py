"""
Unit Tests for Batch Evaluation

Tests the success path, both fallback paths, per-answer write-back and the
full-test evaluation view.
"""

import json

import pytest

from conftest import FakeChatModel

from ai_study_tutor.ai_gateway import AIGateway
from ai_study_tutor.batch_evaluation import SHARED_ANSWER_FEEDBACK, BatchEvaluationController
from ai_study_tutor.errors import NoAnswersError, NotFoundError
from ai_study_tutor.models import AnswerState, EvaluationResult


QUESTIONS = [
    ("Solve the algebra equation 2x = 10", "easy"),
    ("What is Newton's second law?", "medium"),
    ("Describe photosynthesis", "hard"),
]


async def answered_session(repository, defer=True):
    """Session with three questions, each holding a deferred placeholder answer."""
    session = await repository.create_session(1, "Mixed Science [Education: Class 9-10, Difficulty: Standard]", "analysis")
    for text, difficulty in QUESTIONS:
        question = await repository.create_question(session.id, text, difficulty)
        repository.upsert_answer(
            question.id,
            f"my answer to {text}",
            EvaluationResult(correctness=0, feedback="Pending evaluation at test completion"),
            AnswerState.PENDING_EVALUATION,
        )
    return session


def controller_with(repository, cache, *replies):
    model = FakeChatModel(replies=list(replies))
    return BatchEvaluationController(repository, AIGateway(model, cache)), model


class TestBatchEvaluation:
    """Test suite for BatchEvaluationController.evaluate_all."""

    @pytest.mark.asyncio
    async def test_no_answers(self, repository, gateway):
        session = await repository.create_session(1, "Algebra", "analysis")
        await repository.create_question(session.id, "What is x?", "easy")
        controller = BatchEvaluationController(repository, gateway)

        with pytest.raises(NoAnswersError) as exc_info:
            await controller.evaluate_all(session.id)

        assert exc_info.value.message == "No answered questions found for this session"

    @pytest.mark.asyncio
    async def test_unknown_session(self, repository, gateway):
        with pytest.raises(NotFoundError):
            await BatchEvaluationController(repository, gateway).evaluate_all(404)

    @pytest.mark.asyncio
    async def test_success_writes_individual_scores(self, repository, cache):
        session = await answered_session(repository)
        reply = json.dumps({
            "totalScore": 72,
            "strengths": ["Equations"],
            "weaknesses": ["Biology"],
            "recommendedAreas": ["Photosynthesis"],
            "individualScores": [90, 70],
        })
        controller, model = controller_with(repository, cache, reply)

        outcome = await controller.evaluate_all(session.id)

        assert outcome.success is True
        assert outcome.evaluation.total_score == 72
        answers = await repository.get_session_answers(session.id)
        assert [a.evaluation.correctness for a in answers] == [90, 70, 72]
        assert all(a.evaluation.feedback == SHARED_ANSWER_FEEDBACK for a in answers)
        assert all(a.state == AnswerState.EVALUATED for a in answers)

        stored = await repository.get_session_evaluation(session.id)
        assert stored.is_fallback is False
        assert stored.result.recommended_areas == ["Photosynthesis"]

        # Prompt uses the topic without its metadata bracket
        assert "test on Mixed Science." in model.prompts[0]

    @pytest.mark.asyncio
    async def test_success_derives_knowledge_areas(self, repository, cache):
        session = await answered_session(repository)
        controller, _ = controller_with(
            repository, cache,
            '{"totalScore": 60, "strengths": [], "weaknesses": [], "individualScores": [80, 40, 60]}',
        )

        await controller.evaluate_all(session.id)

        areas = {a.name: a.proficiency for a in await repository.get_session_knowledge_areas(session.id)}
        assert areas == {"Algebra": 80, "Newton": 40, "Mixed Science": 60}

    @pytest.mark.asyncio
    async def test_gateway_failure_degrades_to_neutral_result(self, repository, cache):
        session = await answered_session(repository)
        controller, _ = controller_with(repository, cache, TimeoutError("slow upstream"))

        outcome = await controller.evaluate_all(session.id)

        assert outcome.success is True
        assert outcome.evaluation.total_score == 60
        assert outcome.evaluation.recommended_areas == ["Review core concepts of Mixed Science"]
        stored = await repository.get_session_evaluation(session.id)
        assert stored.is_fallback is True

    @pytest.mark.asyncio
    async def test_malformed_reply_uses_mean_of_evaluated_scores(self, repository, cache):
        session = await answered_session(repository)
        questions = await repository.get_session_questions(session.id)
        await repository.save_answer(
            questions[0].id, "x = 5", EvaluationResult(correctness=80, feedback="Good"), AnswerState.EVALUATED
        )
        await repository.save_answer(
            questions[1].id, "F = ma", EvaluationResult(correctness=60, feedback="Ok"), AnswerState.EVALUATED
        )
        controller, _ = controller_with(repository, cache, "Overall the student did well!")

        outcome = await controller.evaluate_all(session.id)

        assert outcome.success is True
        assert outcome.evaluation.total_score == 70
        answers = await repository.get_session_answers(session.id)
        assert [a.evaluation.correctness for a in answers] == [70, 70, 70]
        assert (await repository.get_session_evaluation(session.id)).is_fallback is True

    @pytest.mark.asyncio
    async def test_unchanged_answers_hit_cache(self, repository, cache):
        session = await answered_session(repository)
        reply = '{"totalScore": 50, "strengths": [], "weaknesses": []}'
        controller, model = controller_with(repository, cache, reply, reply)

        await controller.evaluate_all(session.id)
        await controller.evaluate_all(session.id)

        assert model.calls == 1


class TestFullTestEvaluation:
    """Test suite for BatchEvaluationController.evaluate_test."""

    @pytest.mark.asyncio
    async def test_result_lists_answered_questions(self, repository, gateway):
        session = await answered_session(repository)
        await repository.create_question(session.id, "Unanswered question", "easy")

        result = await BatchEvaluationController(repository, gateway).evaluate_test(session.id)

        assert result.total_score == 74
        assert len(result.questions_and_answers) == 3
        assert result.to_dict()["recommendedAreas"] == ["Polynomials"]

    @pytest.mark.asyncio
    async def test_failure_returns_fallback_result(self, repository, cache):
        session = await answered_session(repository)
        controller, _ = controller_with(repository, cache, RuntimeError("boom"))

        result = await controller.evaluate_test(session.id)

        assert result.total_score == 50
        assert result.recommended_areas == ["Review the core concepts of Mixed Science"]

    @pytest.mark.asyncio
    async def test_no_answers(self, repository, gateway):
        session = await repository.create_session(1, "Algebra", "analysis")

        with pytest.raises(NoAnswersError):
            await BatchEvaluationController(repository, gateway).evaluate_test(session.id)
