"""AI study tutor core: quiz generation, evaluation, teaching and notes."""

__version__ = "1.0.0"
