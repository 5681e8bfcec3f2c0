"""Tests for SessionStateMachine."""

import pytest

from forgeflow.core.exceptions import InvalidTransitionError
from forgeflow.schemas.session import SessionStatus as S
from forgeflow.workflow.state_machine import SessionStateMachine

pytestmark = pytest.mark.unit


@pytest.mark.parametrize(
    "current,requested",
    [
        (S.PENDING, S.INITIALIZING),
        (S.INITIALIZING, S.SETTING_UP_INFRASTRUCTURE),  # skipping is allowed
        (S.GENERATING, S.COMMITTING),
        (S.DEPLOYING, S.DEPLOYED),
        (S.DEPLOYED, S.COMPLETED),
        (S.SETTING_UP_INFRASTRUCTURE, S.SETTING_UP_INFRASTRUCTURE),
        (S.PREPARING, S.FAILED),
        (S.PENDING, S.CANCELLED),
    ],
)
def test_allowed_transitions(current, requested):
    """Forward moves, repeats and aborts are accepted."""
    SessionStateMachine.validate(current, requested)


@pytest.mark.parametrize(
    "current,requested",
    [
        (S.DEPLOYING, S.GENERATING),
        (S.PREPARING, S.SANDBOX_CREATING),
        (S.COMPLETED, S.FAILED),
        (S.FAILED, S.PENDING),
        (S.CANCELLED, S.CANCELLED),
    ],
)
def test_rejected_transitions(current, requested):
    """Backward moves and anything out of a terminal status raise."""
    with pytest.raises(InvalidTransitionError):
        SessionStateMachine.validate(current, requested)


def test_progress_never_decreases():
    """Lower progress than recorded is rejected."""
    with pytest.raises(InvalidTransitionError):
        SessionStateMachine.validate_progress(50, 30, S.COMMITTING)


def test_progress_100_only_when_completed():
    """A non-completed session may not report 100."""
    SessionStateMachine.validate_progress(90, 100, S.COMPLETED)
    with pytest.raises(InvalidTransitionError):
        SessionStateMachine.validate_progress(90, 100, S.DEPLOYED)
