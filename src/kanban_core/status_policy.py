"""Status transition policy for tickets.

Classifies transitions and decides when a reason is mandatory:
- unclaimed → in_progress and in_progress → done are the standard forward path
- setting the same status is always standard
- every other move is non-standard; agents must justify it with a reason
- human callers are trusted and never need a reason

Pure functions only; callers own all persistence side effects.
"""
import enum
import logging
from typing import Optional

from .errors import StatusReasonRequiredError, ValidationError
from .models import TicketStatus

logger = logging.getLogger("kanban-core.status_policy")


class TransitionClass(str, enum.Enum):
    STANDARD = "standard"
    NON_STANDARD = "non_standard"


STANDARD_TRANSITIONS: frozenset[tuple[TicketStatus, TicketStatus]] = frozenset({
    (TicketStatus.UNCLAIMED, TicketStatus.IN_PROGRESS),
    (TicketStatus.IN_PROGRESS, TicketStatus.DONE),
})


def parse_status(value, message: str = "Invalid status") -> TicketStatus:
    """Coerce a raw value into a TicketStatus or raise ValidationError."""
    if isinstance(value, TicketStatus):
        return value
    try:
        return TicketStatus(value)
    except ValueError:
        raise ValidationError(message)


def classify_transition(from_status: TicketStatus, to_status: TicketStatus) -> TransitionClass:
    """
    Classify a status change.

    Args:
        from_status: Current status
        to_status: Requested status

    Returns:
        TransitionClass.STANDARD for no-ops and the forward path, NON_STANDARD otherwise
    """
    from_status, to_status = TicketStatus(from_status), TicketStatus(to_status)
    if from_status == to_status:
        return TransitionClass.STANDARD
    if (from_status, to_status) in STANDARD_TRANSITIONS:
        return TransitionClass.STANDARD
    return TransitionClass.NON_STANDARD


def normalize_reason(reason: Optional[str]) -> Optional[str]:
    """Trim a reason; blank reasons count as absent."""
    if reason is None:
        return None
    trimmed = reason.strip()
    return trimmed or None


def validate_transition_for_actor(
    from_status: TicketStatus,
    to_status: TicketStatus,
    is_agent_caller: bool,
    reason: Optional[str] = None,
) -> tuple[TransitionClass, Optional[str]]:
    """
    Validate a status change for the calling principal.

    Args:
        from_status: Current status
        to_status: Requested status
        is_agent_caller: True for API-key principals
        reason: Optional free-text justification

    Returns:
        (transition class, normalized reason)

    Raises:
        StatusReasonRequiredError: Agent attempted a non-standard move without a reason
    """
    transition = classify_transition(from_status, to_status)
    normalized = normalize_reason(reason)

    if (
        is_agent_caller
        and TicketStatus(from_status) != TicketStatus(to_status)
        and transition == TransitionClass.NON_STANDARD
        and normalized is None
    ):
        logger.warning(
            f"Blocked agent transition without reason: {TicketStatus(from_status).value} → "
            f"{TicketStatus(to_status).value}"
        )
        raise StatusReasonRequiredError()

    return transition, normalized
