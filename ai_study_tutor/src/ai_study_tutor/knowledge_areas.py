"""
Knowledge Area Derivation

Maps question text to named sub-skills with a keyword whitelist and records
one KnowledgeArea per name with a proficiency equal to the mean correctness
of the matching evaluated answers. The extractor is swappable: anything with
an `extract(question_text) -> Optional[str]` method will do.
"""

import logging
from typing import Dict, List, Optional, Sequence

from ai_study_tutor.models import KnowledgeArea, QuestionWithAnswer, Session
from ai_study_tutor.prompt_adapter import parse_topic_metadata
from ai_study_tutor.repository import StudyRepository

logger = logging.getLogger(__name__)

DEFAULT_AREA_KEYWORDS = (
    "algebra",
    "calculus",
    "statistics",
    "quantum",
    "physics",
    "mechanics",
    "newton",
    "motion",
    "algorithms",
    "data structures",
    "machine learning",
)


class KeywordAreaExtractor:
    """First whitelisted keyword found in the question names its area."""

    def __init__(self, keywords: Sequence[str] = DEFAULT_AREA_KEYWORDS):
        self.keywords = [k.lower() for k in keywords]

    def extract(self, question_text: str) -> Optional[str]:
        lowered = question_text.lower()
        for keyword in self.keywords:
            if keyword in lowered:
                return keyword.title()
        return None


def group_by_area(
    questions_with_answers: List[QuestionWithAnswer],
    fallback_name: str,
    extractor
) -> Dict[str, List[int]]:
    """Area name -> correctness scores of evaluated answers (order of first appearance)."""
    groups: Dict[str, List[int]] = {}
    for qa in questions_with_answers:
        name = extractor.extract(qa.question.question) or fallback_name
        scores = groups.setdefault(name, [])
        if qa.answer is not None and qa.answer.is_evaluated:
            scores.append(qa.answer.evaluation.correctness)
    return groups


async def derive_knowledge_areas(
    repository: StudyRepository,
    session: Session,
    extractor=None
) -> List[KnowledgeArea]:
    """
    Create knowledge areas for a session that has none yet.

    Sessions that already have areas are returned unchanged, so repeated
    test completions do not duplicate them.
    """
    existing = await repository.get_session_knowledge_areas(session.id)
    if existing:
        return existing

    extractor = extractor or KeywordAreaExtractor()
    topic = parse_topic_metadata(session.topic).topic
    questions_with_answers = await repository.get_session_questions_with_answers(session.id)
    if not questions_with_answers:
        return []

    areas = []
    for name, scores in group_by_area(questions_with_answers, topic, extractor).items():
        proficiency = int(round(sum(scores) / len(scores))) if scores else 0
        areas.append(await repository.create_knowledge_area(session.id, name, proficiency))

    logger.info(
        f"🧭 [KnowledgeAreas] Session {session.id}: derived "
        f"{', '.join(f'{a.name}={a.proficiency}' for a in areas)}"
    )
    return areas
