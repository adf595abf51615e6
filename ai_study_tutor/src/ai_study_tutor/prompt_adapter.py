"""
Prompt Construction and Response Parsing

One (prompt builder, parser) pair per AI operation:

1. Question generation  - JSON array of {question, difficulty}
2. Single answer review - JSON object {correctness, feedback, strengths, weaknesses}
3. Batch evaluation     - JSON object {totalScore, strengths, weaknesses, recommendedAreas}
4. Full test evaluation - JSON object with feedback, used for the TestResult view
5. Teaching             - free text plus follow-up questions
6. Study notes          - Markdown, passed through
7. Correct answers      - free text, passed through
8. Study breaks         - JSON object {activityType, duration, description, benefits, steps}

Models like to wrap JSON in prose or code fences, so extraction always looks
for the first balanced array/object substring that decodes, never a strict
whole-text parse. Every parser returns a ParseResult: Ok(value) or
Malformed(raw_text, reason). Callers decide the fallback.
"""

import json
import logging
import math
import re
from dataclasses import dataclass
from typing import Any, Generic, List, Optional, Sequence, Tuple, TypeVar, Union

from ai_study_tutor.models import (
    DIFFICULTIES,
    BatchEvaluationResult,
    EvaluationResult,
    StudyBreakRecommendation,
    TeachingContent,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_EDUCATION_LEVEL = "Class 9-10"
DEFAULT_DIFFICULTY_LEVEL = "Standard"

# Share of easy / hard questions per difficulty level; medium takes the rest.
DIFFICULTY_MIX = {
    "Beginner": (2 / 3, 0.0),
    "Standard": (1 / 3, 1 / 3),
    "Advanced": (0.0, 2 / 3),
}

TEACHING_CUES = ("follow-up", "understanding", "check your")

BATCH_FEEDBACK = "Your test has been evaluated based on your answers."
BATCH_DEFAULT_SCORE = 70
MAX_SUMMARY_ITEMS = 3


# ==================== Parse results ====================

@dataclass(frozen=True)
class Ok(Generic[T]):
    value: T

    @property
    def ok(self) -> bool:
        return True


@dataclass(frozen=True)
class Malformed:
    raw_text: str
    reason: str

    @property
    def ok(self) -> bool:
        return False


ParseResult = Union[Ok, Malformed]


# ==================== JSON extraction ====================

_PAIRS = {"{": "}", "[": "]"}


def _balanced_end(text: str, start: int) -> Optional[int]:
    """Index just past the bracket matching text[start], or None."""
    stack = [_PAIRS[text[start]]]
    in_string = False
    escaped = False
    for i in range(start + 1, len(text)):
        ch = text[i]
        if in_string:
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == '"':
                in_string = False
            continue
        if ch == '"':
            in_string = True
        elif ch in _PAIRS:
            stack.append(_PAIRS[ch])
        elif ch in ("}", "]"):
            if ch != stack[-1]:
                return None
            stack.pop()
            if not stack:
                return i + 1
    return None


def extract_json(text: str, opener: str) -> Optional[Any]:
    """
    Decode the first balanced JSON value starting with opener ('{' or '[').

    Candidates that are balanced but not valid JSON (e.g. "[Note]") are
    skipped in favour of the next opener.
    """
    if not text:
        return None
    pos = text.find(opener)
    while pos != -1:
        end = _balanced_end(text, pos)
        if end is not None:
            try:
                return json.loads(text[pos:end])
            except json.JSONDecodeError:
                pass
        pos = text.find(opener, pos + 1)
    return None


def extract_json_object(text: str) -> Optional[dict]:
    value = extract_json(text, "{")
    return value if isinstance(value, dict) else None


def extract_json_array(text: str) -> Optional[list]:
    value = extract_json(text, "[")
    return value if isinstance(value, list) else None


def _is_number(value: Any) -> bool:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return False
    return math.isfinite(value)


def _clamp_score(value: Any, default: int = 0) -> int:
    if not _is_number(value):
        return default
    return max(0, min(100, int(round(value))))


def _string_list(value: Any, limit: Optional[int] = None) -> List[str]:
    if not isinstance(value, list):
        return []
    items = [str(v).strip() for v in value if isinstance(v, (str, int, float)) and str(v).strip()]
    return items[:limit] if limit else items


def normalize_question_text(text: str) -> str:
    """Lower-case, collapse whitespace and drop trailing punctuation."""
    collapsed = re.sub(r"\s+", " ", text.strip().lower())
    return collapsed.rstrip(" ?.!")


# ==================== 1. Question generation ====================

@dataclass
class TopicSpec:
    """Topic plus the education/difficulty levels encoded in its trailing bracket."""
    topic: str
    education_level: str = DEFAULT_EDUCATION_LEVEL
    difficulty_level: str = DEFAULT_DIFFICULTY_LEVEL


@dataclass
class GeneratedQuestion:
    question: str
    difficulty: str


def parse_topic_metadata(raw_topic: str) -> TopicSpec:
    """
    Split "<topic> [Education: <level>, Difficulty: <level>]" into its parts.

    The bracket is stripped from the topic before it is used in any prompt.
    """
    spec = TopicSpec(topic=raw_topic.strip())
    match = re.search(r"\[(.*?)\]", raw_topic)
    if not match:
        return spec

    spec.topic = re.sub(r"\s*\[.*?\]$", "", raw_topic).strip()
    metadata = match.group(1)
    education = re.search(r"Education:\s*(.*?)(?:,|$)", metadata)
    if education and education.group(1).strip():
        spec.education_level = education.group(1).strip()
    difficulty = re.search(r"Difficulty:\s*(.*?)(?:,|$)", metadata)
    if difficulty and difficulty.group(1).strip():
        spec.difficulty_level = difficulty.group(1).strip()
    return spec


def difficulty_distribution(difficulty_level: str, count: int) -> Tuple[int, int, int]:
    """(easy, medium, hard) counts for a difficulty level; unknown levels use Standard."""
    easy_share, hard_share = DIFFICULTY_MIX.get(difficulty_level, DIFFICULTY_MIX[DEFAULT_DIFFICULTY_LEVEL])
    easy = int(round(count * easy_share))
    hard = int(round(count * hard_share))
    medium = max(0, count - easy - hard)
    return easy, medium, hard


def build_question_prompt(spec: TopicSpec, existing_questions: Sequence[str], count: int) -> str:
    easy, medium, hard = difficulty_distribution(spec.difficulty_level, count)

    context = ""
    if existing_questions:
        listed = "\n".join(f"- {q}" for q in existing_questions)
        context = (
            "These questions are already in my test. Do NOT repeat them and do NOT "
            f"write paraphrases or close variants of them:\n{listed}\n\n"
        )

    return f"""{context}Write {count} unique, varied questions that test my knowledge of {spec.topic}.

Student education level: {spec.education_level}
Requested difficulty level: {spec.difficulty_level}

Rules:
- Each question must test a different concept within {spec.topic}.
- Pitch the wording and depth at the {spec.education_level} level.
- Produce exactly {easy} easy, {medium} medium and {hard} hard questions.

Respond with a JSON array only:
[
    {{"question": "question text", "difficulty": "easy|medium|hard"}}
]"""


def _questions_from_lines(text: str) -> List[dict]:
    """Line-scan fallback for replies that contain no JSON array."""
    found = []
    for line in text.splitlines():
        lowered = line.lower()
        if "question" not in lowered:
            continue
        difficulty = next((d for d in DIFFICULTIES if d in lowered), None)
        if difficulty is None:
            continue
        question = re.sub(r"^.*?:\s*", "", line, count=1).strip()
        found.append({"question": question, "difficulty": difficulty})
    return found


def parse_questions(
    text: str,
    existing_questions: Sequence[str] = (),
    limit: Optional[int] = None
) -> ParseResult:
    """
    Parse generated questions.

    Invalid entries (missing text, unknown difficulty, duplicates of an
    existing or earlier question) are dropped one by one; the batch only
    fails when nothing valid remains.
    """
    items = extract_json_array(text)
    if items is None:
        items = _questions_from_lines(text or "")
        if items:
            logger.info(f"🔍 [PromptAdapter] No JSON array found, recovered {len(items)} questions from lines")

    seen = {normalize_question_text(q) for q in existing_questions}
    accepted: List[GeneratedQuestion] = []
    dropped = 0
    for item in items:
        if not isinstance(item, dict):
            dropped += 1
            continue
        question = item.get("question")
        difficulty = str(item.get("difficulty", "")).strip().lower()
        if not isinstance(question, str) or not question.strip() or difficulty not in DIFFICULTIES:
            dropped += 1
            continue
        key = normalize_question_text(question)
        if key in seen:
            dropped += 1
            continue
        seen.add(key)
        accepted.append(GeneratedQuestion(question=question.strip(), difficulty=difficulty))

    if dropped:
        logger.info(f"🔍 [PromptAdapter] Dropped {dropped} invalid or duplicate question entries")
    if limit is not None:
        accepted = accepted[:limit]
    if not accepted:
        return Malformed(raw_text=text or "", reason="no valid questions in reply")
    return Ok(accepted)


# ==================== 2. Single answer evaluation ====================

def build_evaluation_prompt(question: str, user_answer: str) -> str:
    return f"""Question: {question}
Student's Answer: {user_answer}

Evaluate this answer for correctness, depth and clarity.

Respond in JSON format:
{{
    "correctness": 0-100,
    "feedback": "detailed feedback",
    "strengths": ["what the student got right"],
    "weaknesses": ["what is missing or wrong"]
}}"""


def parse_evaluation(text: str) -> ParseResult:
    data = extract_json_object(text)
    if data is None:
        return Malformed(raw_text=text or "", reason="no JSON object in reply")
    if not _is_number(data.get("correctness")):
        return Malformed(raw_text=text, reason="correctness is not numeric")
    return Ok(EvaluationResult(
        correctness=_clamp_score(data["correctness"]),
        feedback=str(data.get("feedback") or "").strip() or "Your answer was evaluated.",
        strengths=_string_list(data.get("strengths")),
        weaknesses=_string_list(data.get("weaknesses")),
    ))


def fallback_evaluation() -> EvaluationResult:
    """Neutral result used whenever a single evaluation cannot be produced."""
    return EvaluationResult(
        correctness=50,
        feedback="We had trouble evaluating your answer automatically.",
        strengths=["Submission received"],
        weaknesses=["Evaluation process encountered an error"],
    )


def evaluation_or_fallback(result: ParseResult) -> EvaluationResult:
    if result.ok:
        return result.value
    logger.warning(f"⚠️ [PromptAdapter] Evaluation reply malformed ({result.reason}), using neutral score")
    return fallback_evaluation()


# ==================== 3. Batch evaluation ====================

@dataclass
class BatchVerdict:
    """Parsed batch evaluation plus any per-question scores the model returned."""
    result: BatchEvaluationResult
    individual_scores: Optional[List[Optional[int]]] = None


def build_batch_prompt(topic: str, pairs: Sequence[Tuple[str, str]]) -> str:
    lines = [f"I've completed a test on {topic}. Please evaluate my performance.", "", "Questions and My Answers:"]
    for index, (question, user_answer) in enumerate(pairs, start=1):
        lines.append("")
        lines.append(f"Question {index}: {question}")
        lines.append(f"My Answer: {user_answer or 'No answer provided'}")

    lines.append(f"""
Based on my answers, provide:
1. An overall score (0-100) for the test
2. Up to {MAX_SUMMARY_ITEMS} clear strengths in my understanding
3. Up to {MAX_SUMMARY_ITEMS} areas where I need improvement
4. Up to {MAX_SUMMARY_ITEMS} specific topics I should study next
5. A score (0-100) for each question, in question order

Respond ONLY with a JSON object like this:
{{
    "totalScore": 75,
    "feedback": "one or two sentences of overall feedback",
    "strengths": ["strength1", "strength2"],
    "weaknesses": ["weakness1", "weakness2"],
    "recommendedAreas": ["area1", "area2"],
    "individualScores": [80, 60]
}}

Do not include any text outside the JSON object.""")
    return "\n".join(lines)


def parse_batch(text: str) -> ParseResult:
    data = extract_json_object(text)
    if data is None:
        return Malformed(raw_text=text or "", reason="no JSON object in reply")
    if not _is_number(data.get("totalScore")):
        return Malformed(raw_text=text, reason="totalScore is not numeric")
    if not isinstance(data.get("strengths"), list) or not isinstance(data.get("weaknesses"), list):
        return Malformed(raw_text=text, reason="strengths/weaknesses are not lists")

    individual = None
    raw_scores = data.get("individualScores")
    if isinstance(raw_scores, list):
        individual = [_clamp_score(s) if _is_number(s) else None for s in raw_scores]

    return Ok(BatchVerdict(
        result=BatchEvaluationResult(
            total_score=_clamp_score(data["totalScore"]),
            feedback=str(data.get("feedback") or "").strip() or BATCH_FEEDBACK,
            strengths=_string_list(data["strengths"], MAX_SUMMARY_ITEMS),
            weaknesses=_string_list(data["weaknesses"], MAX_SUMMARY_ITEMS),
            recommended_areas=_string_list(data.get("recommendedAreas"), MAX_SUMMARY_ITEMS),
        ),
        individual_scores=individual,
    ))


def batch_parse_fallback(topic: str, previous_scores: Sequence[int]) -> BatchEvaluationResult:
    """Fallback for an unusable batch reply: mean of earlier individual scores if any."""
    if previous_scores:
        score = int(round(sum(previous_scores) / len(previous_scores)))
    else:
        score = BATCH_DEFAULT_SCORE
    return BatchEvaluationResult(
        total_score=_clamp_score(score, BATCH_DEFAULT_SCORE),
        feedback=BATCH_FEEDBACK,
        strengths=[
            "You attempted to answer the questions",
            "Your responses show engagement with the material",
        ],
        weaknesses=[
            "Some concepts need deeper understanding",
            "More detailed examples would improve your answers",
        ],
        recommended_areas=[
            f"Review core concepts of {topic}",
            "Practice applying concepts to specific scenarios",
        ],
    )


# ==================== 4. Full test evaluation ====================

def build_test_evaluation_prompt(topic: str, rows: Sequence[Tuple[str, str, str, Optional[int]]]) -> str:
    """rows are (question, difficulty, user_answer, individual_score_or_None)."""
    parts = [f"I've completed a test on {topic}. Please evaluate my overall performance based on these questions and answers:\n"]
    for index, (question, difficulty, user_answer, score) in enumerate(rows, start=1):
        parts.append(f"Question {index} ({difficulty}): {question}")
        parts.append(f"My Answer: {user_answer}")
        if score is not None:
            parts.append(f"Individual Score: {score}/100")
        parts.append("")

    parts.append(f"""Based on my answers above, provide:
1. An overall score out of 100
2. Concise general feedback on my performance
3. My strengths (max {MAX_SUMMARY_ITEMS})
4. Areas that need improvement (max {MAX_SUMMARY_ITEMS})
5. Knowledge areas to focus on next (max {MAX_SUMMARY_ITEMS})

Respond in JSON format:
{{
    "totalScore": 0-100,
    "feedback": "general feedback",
    "strengths": ["strength"],
    "weaknesses": ["weakness"],
    "recommendedAreas": ["area"]
}}""")
    return "\n".join(parts)


def parse_test_evaluation(text: str) -> ParseResult:
    data = extract_json_object(text)
    if data is None:
        return Malformed(raw_text=text or "", reason="no JSON object in reply")
    return Ok(BatchEvaluationResult(
        total_score=_clamp_score(data.get("totalScore"), 0),
        feedback=str(data.get("feedback") or "").strip() or "Your performance was evaluated.",
        strengths=_string_list(data.get("strengths"), MAX_SUMMARY_ITEMS),
        weaknesses=_string_list(data.get("weaknesses"), MAX_SUMMARY_ITEMS),
        recommended_areas=_string_list(data.get("recommendedAreas"), MAX_SUMMARY_ITEMS),
    ))


# ==================== 5. Teaching ====================

def build_teaching_prompt(topic: str, question: str) -> str:
    return f"""I'm stuck on {topic}, specifically on "{question}". Teach me in an engaging way.

Break it down with:
1. Simple explanations
2. Real-life examples or analogies
3. Step-by-step reasoning

After the explanation, give 1-2 follow-up questions to check my understanding.
Keep the response concise and focused."""


def parse_teaching(text: str) -> ParseResult:
    if not text or not text.strip():
        return Malformed(raw_text=text or "", reason="empty teaching reply")

    follow_ups: List[str] = []
    collecting = False
    for line in text.splitlines():
        lowered = line.lower()
        if any(cue in lowered for cue in TEACHING_CUES):
            collecting = True
            continue
        if collecting and "?" in line:
            follow_ups.append(line.strip())

    return Ok(TeachingContent(text=text, follow_up_questions=follow_ups or None))


def teaching_fallback() -> TeachingContent:
    return TeachingContent(
        text="I'm having trouble connecting to the teaching service right now. Please try again in a moment.",
        follow_up_questions=["Would you like to try a different topic?"],
    )


# ==================== 6. Study notes ====================

def build_notes_prompt(topic: str, weak_areas: Optional[Sequence[str]] = None) -> str:
    focus = ""
    if weak_areas:
        focus = f" Give particular emphasis to these weak areas: {', '.join(weak_areas)}."
    return f"""Generate comprehensive study notes on {topic}.{focus}

Include:
1. Key concepts and definitions
2. Important principles
3. Examples or applications
4. Visual representations (described in text)
5. Common misconceptions

Format the notes in Markdown. Keep them concise and focused on what matters most."""


def parse_notes(text: str) -> ParseResult:
    if not text or not text.strip():
        return Malformed(raw_text=text or "", reason="empty notes reply")
    return Ok(text)


def notes_fallback(topic: str) -> str:
    return (
        f"# {topic} - Study Notes\n\n"
        "I'm currently having trouble generating detailed notes. "
        "Here are some basic points to get you started:\n\n"
        "## Key Concepts\n"
        f"- Study the fundamentals of {topic}\n"
        "- Focus on understanding core principles\n"
        "- Practice with examples\n\n"
        "Please try again in a few moments for more detailed notes."
    )


# ==================== 7. Correct answers ====================

CORRECT_ANSWER_APOLOGY = "Sorry, we couldn't generate the correct answer for this question."


def build_correct_answer_prompt(topic: str, question: str) -> str:
    return f"""You are an expert educational assistant. Provide the correct answer to this question on {topic}:

Question: {question}

Give a clear, accurate and concise answer."""


def parse_correct_answer(text: str) -> ParseResult:
    if not text or not text.strip():
        return Malformed(raw_text=text or "", reason="empty answer reply")
    return Ok(text.strip())


# ==================== 8. Study breaks ====================

MIN_BREAK_MINUTES = 3
MAX_BREAK_MINUTES = 15

_FENCED_JSON = re.compile(r"```(?:json)?\s*\n([\s\S]*?)\n\s*```")


def build_study_break_prompt(session_minutes: int, topic: str, last_break_type: Optional[str] = None) -> str:
    last = f"\n- Last break type: {last_break_type}" if last_break_type else ""
    return f"""You are an educational expert in study optimisation and cognitive science.
Recommend one study break that will help learning efficiency and focus.

Current study session:
- Duration so far: {session_minutes} minutes
- Topic: {topic}{last}

Respond in JSON format:
{{
    "activityType": "e.g. physical exercise, mindfulness, creative activity",
    "duration": {MIN_BREAK_MINUTES}-{MAX_BREAK_MINUTES},
    "description": "what to do",
    "benefits": ["benefit for learning"],
    "steps": ["step"]
}}

Choose a different activity type from the last break if one is given.
Longer sessions need longer breaks, but stay under {MAX_BREAK_MINUTES} minutes."""


def parse_study_break(text: str) -> ParseResult:
    data = None
    fenced = _FENCED_JSON.search(text or "")
    if fenced:
        data = extract_json_object(fenced.group(1))
    if data is None:
        data = extract_json_object(text or "")
    if data is None:
        return Malformed(raw_text=text or "", reason="no JSON object in reply")

    activity = str(data.get("activityType") or "").strip()
    description = str(data.get("description") or "").strip()
    if not activity or not description:
        return Malformed(raw_text=text, reason="activityType/description missing")

    duration = data.get("duration")
    duration = int(round(duration)) if _is_number(duration) else MIN_BREAK_MINUTES
    return Ok(StudyBreakRecommendation(
        activity_type=activity,
        duration=max(MIN_BREAK_MINUTES, min(MAX_BREAK_MINUTES, duration)),
        description=description,
        benefits=_string_list(data.get("benefits")),
        steps=_string_list(data.get("steps")),
    ))


def study_break_fallback(session_minutes: int, last_break_type: Optional[str] = None) -> StudyBreakRecommendation:
    duration = max(MIN_BREAK_MINUTES, min(MAX_BREAK_MINUTES, session_minutes // 10 or MIN_BREAK_MINUTES))
    if last_break_type and "physical" in last_break_type.lower():
        return StudyBreakRecommendation(
            activity_type="Mindfulness",
            duration=duration,
            description="Sit comfortably away from your screen and focus on slow breathing.",
            benefits=["Reduces mental fatigue", "Improves focus when you return"],
            steps=["Close your eyes", "Breathe in for 4 counts", "Breathe out for 6 counts", "Repeat until the break ends"],
        )
    return StudyBreakRecommendation(
        activity_type="Physical exercise",
        duration=duration,
        description="Stand up, stretch and walk around for a few minutes.",
        benefits=["Boosts blood flow to the brain", "Relieves tension from sitting"],
        steps=["Stand up and stretch your arms overhead", "Roll your shoulders and neck", "Walk around the room"],
    )
