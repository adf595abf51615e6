"""
Error Taxonomy

Store-level errors (validation, not found) are real errors and map to HTTP
statuses. AI-level errors (timeout, upstream failure, malformed output) are
absorbed by each call site into a domain-shaped fallback value.
"""


class StudyTutorError(Exception):
    """Base class for all study tutor errors."""

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(StudyTutorError):
    """Malformed or missing request fields."""


class NotFoundError(StudyTutorError):
    """Unknown session, question or knowledge area id."""


class NoAnswersError(ValidationError):
    """A session evaluation was requested but nothing has been answered."""

    def __init__(self, session_id: int):
        super().__init__("No answered questions found for this session")
        self.session_id = session_id


class AIGatewayError(StudyTutorError):
    """The generative-AI backend failed (network, API or empty reply)."""


class AIGatewayTimeout(AIGatewayError):
    """The generative-AI backend did not answer within the configured timeout."""


class ParseError(StudyTutorError):
    """Model output was not in the expected shape."""

    def __init__(self, message: str, raw_text: str = ""):
        super().__init__(message)
        self.raw_text = raw_text
