"""Tests for the ticket status transition policy."""
import pytest

from kanban_core.errors import StatusReasonRequiredError, ValidationError
from kanban_core.models import TicketStatus
from kanban_core.status_policy import (
    TransitionClass,
    classify_transition,
    normalize_reason,
    parse_status,
    validate_transition_for_actor,
)

UNCLAIMED = TicketStatus.UNCLAIMED
IN_PROGRESS = TicketStatus.IN_PROGRESS
DONE = TicketStatus.DONE


class TestClassification:
    """Test standard vs non-standard classification."""

    def test_forward_path_is_standard(self):
        """Claiming and completing are the standard moves."""
        assert classify_transition(UNCLAIMED, IN_PROGRESS) == TransitionClass.STANDARD
        assert classify_transition(IN_PROGRESS, DONE) == TransitionClass.STANDARD

    def test_same_status_is_standard(self):
        for status in TicketStatus:
            assert classify_transition(status, status) == TransitionClass.STANDARD

    def test_everything_else_is_non_standard(self):
        """Skipping ahead, moving back and reopening all need justification."""
        for from_status, to_status in [
            (UNCLAIMED, DONE),
            (IN_PROGRESS, UNCLAIMED),
            (DONE, IN_PROGRESS),
            (DONE, UNCLAIMED),
        ]:
            assert classify_transition(from_status, to_status) == TransitionClass.NON_STANDARD

    def test_accepts_raw_values(self):
        assert classify_transition("unclaimed", "in_progress") == TransitionClass.STANDARD


class TestActorAsymmetry:
    """Agents must justify non-standard moves; humans never have to."""

    def test_agent_non_standard_without_reason_is_rejected(self):
        with pytest.raises(StatusReasonRequiredError) as exc_info:
            validate_transition_for_actor(DONE, IN_PROGRESS, is_agent_caller=True)

        assert exc_info.value.status_code == 400
        assert exc_info.value.message == "Reason is required for non-standard status transitions"

    def test_agent_blank_reason_counts_as_missing(self):
        with pytest.raises(StatusReasonRequiredError):
            validate_transition_for_actor(UNCLAIMED, DONE, is_agent_caller=True, reason="   ")

    def test_agent_non_standard_with_reason_is_allowed(self):
        transition, reason = validate_transition_for_actor(
            DONE, IN_PROGRESS, is_agent_caller=True, reason="  regression found  "
        )
        assert transition == TransitionClass.NON_STANDARD
        assert reason == "regression found"

    def test_agent_standard_needs_no_reason(self):
        transition, reason = validate_transition_for_actor(UNCLAIMED, IN_PROGRESS, is_agent_caller=True)
        assert transition == TransitionClass.STANDARD
        assert reason is None

    def test_agent_same_status_needs_no_reason(self):
        transition, _ = validate_transition_for_actor(DONE, DONE, is_agent_caller=True)
        assert transition == TransitionClass.STANDARD

    def test_human_non_standard_without_reason_is_allowed(self):
        transition, reason = validate_transition_for_actor(DONE, UNCLAIMED, is_agent_caller=False)
        assert transition == TransitionClass.NON_STANDARD
        assert reason is None


class TestParsing:
    def test_parse_status(self):
        assert parse_status("done") == DONE
        assert parse_status(IN_PROGRESS) == IN_PROGRESS

    def test_parse_unknown_status(self):
        with pytest.raises(ValidationError) as exc_info:
            parse_status("blocked")
        assert exc_info.value.message == "Invalid status"

    def test_normalize_reason(self):
        assert normalize_reason(None) is None
        assert normalize_reason("") is None
        assert normalize_reason(" why ") == "why"
