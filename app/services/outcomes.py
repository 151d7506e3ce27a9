"""Failure values returned by the scheduling core.

Operations return one of these instead of raising, so callers branch on
``isinstance``. The HTTP layer turns them into error responses.
"""

from dataclasses import dataclass


@dataclass(frozen=True)
class Failure:
    detail: str

    code = "failure"


@dataclass(frozen=True)
class SlotUnavailable(Failure):
    code = "slot_unavailable"


@dataclass(frozen=True)
class SpecialistNotLinked(Failure):
    specialist_id: int | None = None
    service_ids: tuple[int, ...] = ()

    code = "specialist_not_linked"


@dataclass(frozen=True)
class InvalidTransition(Failure):
    current: str | None = None
    requested: str | None = None

    code = "invalid_transition"


@dataclass(frozen=True)
class NotFound(Failure):
    code = "not_found"


@dataclass(frozen=True)
class ValidationFailure(Failure):
    code = "validation_failed"


@dataclass(frozen=True)
class IdempotencyConflict(Failure):
    code = "idempotency_key_reused"


def is_failure(value: object) -> bool:
    return isinstance(value, Failure)
