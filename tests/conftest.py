"""
Shared fixtures: a scripted chat model and the core services wired to it.
"""

import asyncio
import json
import os
import sys

import pytest

# Add project root to path
project_root = os.path.abspath(os.path.dirname(os.path.dirname(__file__)))
sys.path.insert(0, os.path.join(project_root, "ai_study_tutor", "src"))
sys.path.insert(0, os.path.join(project_root, "backend"))

from ai_study_tutor.ai_gateway import AIGateway
from ai_study_tutor.repository import StudyRepository
from ai_study_tutor.response_cache import ResponseCache


QUESTIONS_REPLY = "Here are your questions:\n" + json.dumps([
    {"question": "What is a variable in algebra?", "difficulty": "easy"},
    {"question": "Solve for x: 2x + 3 = 11", "difficulty": "easy"},
    {"question": "How do you factor x^2 - 9?", "difficulty": "medium"},
    {"question": "Explain the distributive property with an example", "difficulty": "medium"},
    {"question": "Solve the system x + y = 5 and x - y = 1", "difficulty": "hard"},
    {"question": "Why does a quadratic equation have at most two real roots?", "difficulty": "hard"},
])

EVALUATION_REPLY = """Sure, here is the evaluation:
{"correctness": 85, "feedback": "Good answer with a clear explanation.", "strengths": ["Clear"], "weaknesses": ["Could add an example"]}"""

BATCH_REPLY = json.dumps({
    "totalScore": 78,
    "feedback": "Solid understanding overall.",
    "strengths": ["Good grasp of basics"],
    "weaknesses": ["Factoring needs practice"],
    "recommendedAreas": ["Quadratic equations"],
})

TEST_EVALUATION_REPLY = json.dumps({
    "totalScore": 74,
    "feedback": "You understand the fundamentals.",
    "strengths": ["Equations"],
    "weaknesses": ["Factoring"],
    "recommendedAreas": ["Polynomials"],
})

TEACHING_REPLY = """Think of a variable as a labelled box that holds a number.

If 2 boxes hold 6 apples in total, each box holds 3.

Check your understanding:
1. If 3x = 12, what is x?
2. What does the letter in 5y stand for?"""

NOTES_REPLY = "# Algebra - Study Notes\n\n## Key Concepts\n- Variables stand for unknown numbers"

STUDY_BREAK_REPLY = """```json
{"activityType": "Physical exercise", "duration": 5, "description": "Walk around the room", "benefits": ["Blood flow"], "steps": ["Stand up", "Walk"]}
```"""


def default_reply(prompt: str) -> str:
    """Canned reply chosen from the prompt's wording."""
    if "Respond with a JSON array only" in prompt:
        return QUESTIONS_REPLY
    if "Student's Answer:" in prompt:
        return EVALUATION_REPLY
    if "individualScores" in prompt:
        return BATCH_REPLY
    if "overall score out of 100" in prompt:
        return TEST_EVALUATION_REPLY
    if "Generate comprehensive study notes" in prompt:
        return NOTES_REPLY
    if "Provide the correct answer" in prompt:
        return "x = 4"
    if "Recommend one study break" in prompt:
        return STUDY_BREAK_REPLY
    return TEACHING_REPLY


class FakeChatModel:
    """
    Call-counting stand-in for the chat model.

    Queued replies are consumed first; each may be a string, an exception
    instance (raised) or a callable taking the prompt. After the queue is
    empty every call goes to `responder`.
    """

    def __init__(self, replies=None, responder=default_reply, delay: float = 0):
        self.replies = list(replies or [])
        self.responder = responder
        self.delay = delay
        self.prompts = []
        self.model = "fake-model"

    @property
    def calls(self) -> int:
        return len(self.prompts)

    async def generate(self, prompt: str) -> str:
        self.prompts.append(prompt)
        if self.delay:
            await asyncio.sleep(self.delay)
        reply = self.replies.pop(0) if self.replies else self.responder
        if isinstance(reply, BaseException):
            raise reply
        if callable(reply):
            return reply(prompt)
        return reply


@pytest.fixture
def fake_model():
    return FakeChatModel()


@pytest.fixture
def repository():
    return StudyRepository()


@pytest.fixture
def cache():
    return ResponseCache(ttl_minutes=60)


@pytest.fixture
def gateway(fake_model, cache):
    return AIGateway(fake_model, cache, timeout_seconds=1.0)
