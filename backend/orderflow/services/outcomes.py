"""
Per-step results for multi-step procedures.

Sequence drivers (no-show processing, recovery, webhook handlers) run each step
through ``run_step`` and then decide, step by step, whether a failed outcome
aborts the sequence or is recorded and skipped. Expected domain errors map to a
specific ErrorKind; anything else is ``UNEXPECTED`` and is always logged.
"""

from __future__ import annotations

import enum
import logging
from dataclasses import dataclass
from typing import Any, Callable, Generic, TypeVar

from sqlalchemy.exc import SQLAlchemyError

T = TypeVar("T")

logger = logging.getLogger(__name__)


class ErrorKind(str, enum.Enum):
    VALIDATION = "validation"
    NOT_FOUND = "not_found"
    INVALID_TRANSITION = "invalid_transition"
    STOCK = "stock"
    DELIVERY = "delivery"
    STORAGE = "storage"
    UNEXPECTED = "unexpected"


@dataclass(frozen=True)
class StepOutcome(Generic[T]):
    step: str
    ok: bool
    value: T | None = None
    error_kind: ErrorKind | None = None
    message: str | None = None

    @classmethod
    def success(cls, step: str, value: T | None = None) -> "StepOutcome[T]":
        return cls(step=step, ok=True, value=value)

    @classmethod
    def failure(cls, step: str, kind: ErrorKind, message: str) -> "StepOutcome[T]":
        return cls(step=step, ok=False, error_kind=kind, message=message)


def classify_exception(exc: BaseException) -> ErrorKind:
    # Local imports: the service modules import this one.
    from .state_machine import InvalidTransition
    from .stock_service import StockError

    if isinstance(exc, InvalidTransition):
        return ErrorKind.INVALID_TRANSITION
    if isinstance(exc, StockError):
        return ErrorKind.STOCK
    if isinstance(exc, LookupError):
        return ErrorKind.NOT_FOUND
    if isinstance(exc, ValueError):
        return ErrorKind.VALIDATION
    if isinstance(exc, SQLAlchemyError):
        return ErrorKind.STORAGE
    return ErrorKind.UNEXPECTED


def run_step(step: str, func: Callable[..., T], *args: Any, **kwargs: Any) -> StepOutcome[T]:
    """Run one step, converting any exception into a failed StepOutcome."""
    try:
        return StepOutcome.success(step, func(*args, **kwargs))
    except Exception as exc:
        kind = classify_exception(exc)
        if kind in (ErrorKind.UNEXPECTED, ErrorKind.STORAGE):
            logger.exception("Step %s failed unexpectedly", step)
        else:
            logger.warning("Step %s failed (%s): %s", step, kind.value, exc)
        return StepOutcome.failure(step, kind, str(exc) or exc.__class__.__name__)
