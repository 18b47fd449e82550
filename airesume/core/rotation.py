"""Key rotation state machine, confirmation gates, and rotation schedules."""

from __future__ import annotations

import calendar
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import UTC, datetime
from enum import Enum
from typing import Protocol

import structlog

from airesume.core.results import ErrorKind, ServiceError, ServiceResult

logger = structlog.get_logger(__name__)

ROTATION_CONFIRMATION_WORD = "rotate"


class RotationPolicy(str, Enum):
    """Scheduled rotation cadence for a key."""

    NEVER = "never"
    MONTHLY = "monthly"
    QUARTERLY = "quarterly"
    YEARLY = "yearly"


_POLICY_MONTHS: dict[RotationPolicy, int] = {
    RotationPolicy.MONTHLY: 1,
    RotationPolicy.QUARTERLY: 3,
    RotationPolicy.YEARLY: 12,
}


def add_months(value: datetime, months: int) -> datetime:
    """Add calendar months, clamping the day to the end of the target month."""
    month_index = value.month - 1 + months
    year = value.year + month_index // 12
    month = month_index % 12 + 1
    day = min(value.day, calendar.monthrange(year, month)[1])
    return value.replace(year=year, month=month, day=day)


def next_rotation_date(policy: RotationPolicy | str, base: datetime) -> datetime | None:
    """Return when a key created or last rotated at ``base`` is next due."""
    months = _POLICY_MONTHS.get(RotationPolicy(policy))
    if months is None:
        return None
    return add_months(base, months)


def is_rotation_due(due_at: datetime | None, now: datetime | None = None) -> bool:
    """Return True once a scheduled rotation date has passed."""
    if due_at is None:
        return False
    return due_at <= (now or datetime.now(UTC))


def matches_rotation_confirmation(typed: str) -> bool:
    """Gate for the rotate button: the operator types ``rotate`` in any case."""
    return typed.strip().lower() == ROTATION_CONFIRMATION_WORD


def matches_deletion_confirmation(typed: str, title: str) -> bool:
    """Gate for the delete button: the operator retypes the item title."""
    return typed.strip() == title.strip()


class RotationState(str, Enum):
    """Interactive rotation lifecycle."""

    IDLE = "idle"
    CONFIRMING = "confirming"
    ROTATING = "rotating"
    COMPLETED = "completed"
    FAILED = "failed"


class RotationStateError(Exception):
    """Raised when an operation is invalid for the current rotation state."""

    def __init__(self, action: str, state: RotationState) -> None:
        super().__init__(f"Cannot {action} while rotation is {state.value}.")
        self.action = action
        self.state = state


class RotatedSecret(Protocol):
    """Shape of a successful store rotation result."""

    api_key: str
    key_version: int


@dataclass(frozen=True)
class RotationOutcome:
    """Result of one rotation attempt.

    ``api_key`` is set only when ``state`` is COMPLETED and is not retained by
    the controller. A FAILED outcome means the previous secret is still valid,
    unless the error kind is ROTATION_OUTCOME_UNKNOWN: the request may have
    been applied, so the key must be re-read before the old secret is trusted.
    """

    state: RotationState
    api_key: str | None = None
    key_version: int | None = None
    error: ServiceError | None = None

    @property
    def previous_secret_valid(self) -> bool:
        if self.state is RotationState.COMPLETED:
            return False
        return self.error is None or self.error.kind is not ErrorKind.ROTATION_OUTCOME_UNKNOWN


Rotator = Callable[[], Awaitable[ServiceResult[RotatedSecret]]]


class RotationController:
    """Drive one key's interactive rotation through its confirmation gate."""

    def __init__(self, rotate: Rotator) -> None:
        self._rotate = rotate
        self._state = RotationState.IDLE
        self._confirmed = False
        self._error: ServiceError | None = None

    @property
    def state(self) -> RotationState:
        return self._state

    @property
    def error(self) -> ServiceError | None:
        return self._error

    @property
    def can_rotate(self) -> bool:
        return self._state is RotationState.CONFIRMING and self._confirmed

    def begin(self) -> None:
        """Open the confirmation gate for a fresh attempt."""
        if self._state not in (RotationState.IDLE, RotationState.FAILED):
            raise RotationStateError("begin", self._state)
        self._state = RotationState.CONFIRMING
        self._confirmed = False
        self._error = None

    def confirm(self, typed: str) -> bool:
        """Record the operator's typed confirmation and return whether it matches."""
        if self._state is not RotationState.CONFIRMING:
            raise RotationStateError("confirm", self._state)
        self._confirmed = matches_rotation_confirmation(typed)
        return self._confirmed

    async def rotate(self) -> RotationOutcome:
        """Replace the secret; the new plaintext is handed out in the returned outcome only."""
        if self._state is not RotationState.CONFIRMING:
            raise RotationStateError("rotate", self._state)
        if not self._confirmed:
            raise RotationStateError("rotate without confirmation", self._state)

        self._state = RotationState.ROTATING
        self._confirmed = False
        try:
            result = await self._rotate()
        except Exception as exc:
            logger.exception("api_key_rotation_raised")
            result = ServiceResult.failure(
                ErrorKind.ROTATION_OUTCOME_UNKNOWN, str(exc) or "Rotation outcome unknown."
            )
        if not result.ok or result.value is None:
            self._state = RotationState.FAILED
            self._error = result.error
            return RotationOutcome(state=RotationState.FAILED, error=result.error)

        self._state = RotationState.COMPLETED
        return RotationOutcome(
            state=RotationState.COMPLETED,
            api_key=result.value.api_key,
            key_version=result.value.key_version,
        )

    def acknowledge(self) -> None:
        """Close a finished attempt and return to IDLE."""
        if self._state not in (RotationState.COMPLETED, RotationState.FAILED):
            raise RotationStateError("acknowledge", self._state)
        self._state = RotationState.IDLE
        self._error = None

    def cancel(self) -> None:
        """Abandon the confirmation gate without rotating."""
        if self._state is RotationState.ROTATING:
            raise RotationStateError("cancel", self._state)
        self._state = RotationState.IDLE
        self._confirmed = False
        self._error = None
