"""Query submission and answer stabilization."""

from searchpilot.search.answer_engine import AnswerEngine, failure_message
from searchpilot.search.stabilizer import AnswerStabilizer, compose_answer

__all__ = ["AnswerEngine", "AnswerStabilizer", "compose_answer", "failure_message"]
