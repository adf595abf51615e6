"""
Unit Tests for Knowledge Area Derivation
"""

import pytest

from ai_study_tutor.knowledge_areas import KeywordAreaExtractor, derive_knowledge_areas
from ai_study_tutor.models import AnswerState, EvaluationResult


class TestKeywordAreaExtractor:

    @pytest.fixture
    def extractor(self):
        return KeywordAreaExtractor()

    def test_first_keyword_wins(self, extractor):
        assert extractor.extract("Use calculus to find the statistics of motion") == "Calculus"

    def test_multi_word_keyword(self, extractor):
        assert extractor.extract("Which data structures support O(1) lookup?") == "Data Structures"

    def test_no_match(self, extractor):
        assert extractor.extract("Name three rivers in Europe") is None

    def test_custom_keywords(self):
        extractor = KeywordAreaExtractor(keywords=["Rivers", "mountains"])
        assert extractor.extract("Name three rivers in Europe") == "Rivers"


class TestDeriveKnowledgeAreas:

    @pytest.mark.asyncio
    async def test_proficiency_is_mean_of_evaluated_answers(self, repository):
        session = await repository.create_session(1, "Physics", "feedback")
        q1 = await repository.create_question(session.id, "State Newton's first law", "easy")
        q2 = await repository.create_question(session.id, "Apply Newton's third law to rockets", "hard")
        q3 = await repository.create_question(session.id, "What is inertia?", "medium")
        await repository.save_answer(q1.id, "a", EvaluationResult(correctness=90, feedback="ok"))
        await repository.save_answer(q2.id, "b", EvaluationResult(correctness=50, feedback="ok"))
        await repository.save_answer(
            q3.id, "c", EvaluationResult(correctness=0, feedback="pending"), AnswerState.PENDING_EVALUATION
        )

        areas = await derive_knowledge_areas(repository, session)

        assert {a.name: a.proficiency for a in areas} == {"Newton": 70, "Physics": 0}

    @pytest.mark.asyncio
    async def test_existing_areas_are_not_duplicated(self, repository):
        session = await repository.create_session(1, "Algebra", "feedback")
        await repository.create_question(session.id, "Simplify this algebra expression", "easy")

        first = await derive_knowledge_areas(repository, session)
        second = await derive_knowledge_areas(repository, session)

        assert [a.id for a in first] == [a.id for a in second]
        assert len(await repository.get_session_knowledge_areas(session.id)) == 1

    @pytest.mark.asyncio
    async def test_session_without_questions(self, repository):
        session = await repository.create_session(1, "Algebra", "analysis")
        assert await derive_knowledge_areas(repository, session) == []
