# intents/confirmations.py
"""
Two-state confirmation protocol for destructive assistant actions.

    propose()  -> row in state PROPOSED, its confirmation_id goes to the caller
    confirm()  -> PROPOSED row for the same user/resource moves to EXECUTED

A confirmation can be executed once; replaying it is rejected.
"""

from __future__ import annotations

import logging
from enum import Enum

from sqlalchemy.orm import Session

from models import PendingConfirmation, utcnow

logger = logging.getLogger(__name__)


class ConfirmationState(str, Enum):
    PROPOSED = "proposed"
    EXECUTED = "executed"


class ConfirmationError(Exception):
    pass


def propose(db: Session, user_id: str, resource: str, action: str, target_id: str) -> PendingConfirmation:
    pending = PendingConfirmation(
        user_id=user_id,
        resource=resource,
        action=action,
        target_id=target_id,
        state=ConfirmationState.PROPOSED.value,
    )
    db.add(pending)
    db.flush()
    logger.info("Proposed %s %s %s (confirmation_id=%s)", action, resource, target_id, pending.confirmation_id)
    return pending


def get_proposed(db: Session, user_id: str, confirmation_id: str, resource: str, action: str) -> PendingConfirmation:
    """Load a confirmation that can still be executed, or raise ConfirmationError."""
    pending = (
        db.query(PendingConfirmation)
        .filter(
            PendingConfirmation.confirmation_id == confirmation_id,
            PendingConfirmation.user_id == user_id,
        )
        .one_or_none()
    )
    if pending is None or pending.resource != resource or pending.action != action:
        raise ConfirmationError(f"No pending {action} request matches confirmation id {confirmation_id}.")
    if pending.state != ConfirmationState.PROPOSED.value:
        raise ConfirmationError("This request was already confirmed and carried out.")
    return pending


def mark_executed(db: Session, pending: PendingConfirmation) -> None:
    if pending.state != ConfirmationState.PROPOSED.value:
        raise ConfirmationError("Only a proposed request can be executed.")
    pending.state = ConfirmationState.EXECUTED.value
    pending.executed_at = utcnow()
    db.flush()
