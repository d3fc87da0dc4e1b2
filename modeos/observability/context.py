"""
Evaluation context management with context-local storage.
"""

import contextvars
import uuid
from typing import Optional

# Context variable for the id of the evaluation currently running
_evaluation_id_var: contextvars.ContextVar[Optional[str]] = contextvars.ContextVar(
    "evaluation_id", default=None
)


def get_evaluation_id() -> Optional[str]:
    """Get the current evaluation ID from context."""
    return _evaluation_id_var.get()


def set_evaluation_id(evaluation_id: str) -> contextvars.Token:
    """Set the evaluation ID in context. Returns token for reset."""
    return _evaluation_id_var.set(evaluation_id)


def generate_evaluation_id() -> str:
    """Generate a new evaluation ID."""
    return f"eval-{uuid.uuid4().hex[:16]}"


class EvaluationContext:
    """
    Context manager for evaluation-scoped operations.

    Usage:
        with EvaluationContext() as ctx:
            logger.info("Deciding", extra={"trigger": "app_open"})
            # All logs within this block carry ctx.evaluation_id
    """

    def __init__(self, evaluation_id: Optional[str] = None):
        self.evaluation_id = evaluation_id or generate_evaluation_id()
        self._token: Optional[contextvars.Token] = None

    def __enter__(self) -> "EvaluationContext":
        self._token = set_evaluation_id(self.evaluation_id)
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        if self._token is not None:
            _evaluation_id_var.reset(self._token)
