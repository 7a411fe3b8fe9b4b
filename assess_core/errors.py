"""Typed refusals raised by the session engine.

Every error carries a short ``reason`` that is also emitted to listeners as an
``InvalidOperation`` event before the exception propagates.
"""
from __future__ import annotations


class EngineError(Exception):
    def __init__(self, reason: str):
        super().__init__(reason)
        self.reason = reason


class InvalidState(EngineError):
    """Operation not allowed in the current phase or blocked by a topic gate."""


class UnknownItem(EngineError):
    """Operation references an item id that is not part of the session."""

    def __init__(self, item_id: str):
        super().__init__(f"unknown item: {item_id}")
        self.item_id = item_id


class PrematureSubmit(EngineError):
    """Exam submitted before the required number of items was answered."""

    def __init__(self, answered: int, required: int):
        super().__init__(f"answered {answered} of {required} required items")
        self.answered = answered
        self.required = required


class InvalidAnswer(EngineError):
    """Answer payload does not fit the item (bad option index, unknown part...)."""


class InvalidItems(EngineError):
    """Item set handed to a session breaks the item-model invariants."""


class GradingError(EngineError):
    """The grading provider failed; the frozen submission is kept for a retry."""


__all__ = [
    "EngineError",
    "InvalidState",
    "UnknownItem",
    "PrematureSubmit",
    "InvalidAnswer",
    "InvalidItems",
    "GradingError",
]
