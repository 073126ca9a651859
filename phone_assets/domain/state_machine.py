from __future__ import annotations

from collections.abc import Iterable
from enum import StrEnum


class PhoneStatus(StrEnum):
    IDLE = "idle"
    IN_USE = "in_use"
    PENDING_DEACTIVATION_USER = "pending_deactivation_user"
    PENDING_DEACTIVATION_ADMIN = "pending_deactivation_admin"
    DEACTIVATED = "deactivated"
    RISK_PENDING = "risk_pending"
    USER_REPORTED = "user_reported"
    SUSPENDED = "suspended"
    CARD_REPLACING = "card_replacing"


PENDING_DEACTIVATION_STATES: frozenset[PhoneStatus] = frozenset(
    {PhoneStatus.PENDING_DEACTIVATION_USER, PhoneStatus.PENDING_DEACTIVATION_ADMIN}
)
RISK_STATES: frozenset[PhoneStatus] = frozenset({PhoneStatus.RISK_PENDING, PhoneStatus.USER_REPORTED})
RECOVERABLE_STATES: frozenset[PhoneStatus] = frozenset({PhoneStatus.IN_USE, *PENDING_DEACTIVATION_STATES})
FINALIZABLE_STATES: frozenset[PhoneStatus] = frozenset({*PENDING_DEACTIVATION_STATES, *RISK_STATES})
AUDIT_ELIGIBLE_STATES: frozenset[PhoneStatus] = frozenset(
    {
        PhoneStatus.IN_USE,
        PhoneStatus.SUSPENDED,
        PhoneStatus.CARD_REPLACING,
        PhoneStatus.RISK_PENDING,
        PhoneStatus.USER_REPORTED,
    }
)

ALLOWED_TRANSITIONS: dict[PhoneStatus, set[PhoneStatus]] = {
    PhoneStatus.IDLE: {PhoneStatus.IN_USE},
    PhoneStatus.IN_USE: {
        PhoneStatus.IDLE,
        PhoneStatus.PENDING_DEACTIVATION_USER,
        PhoneStatus.PENDING_DEACTIVATION_ADMIN,
        PhoneStatus.RISK_PENDING,
        PhoneStatus.USER_REPORTED,
        PhoneStatus.SUSPENDED,
        PhoneStatus.CARD_REPLACING,
    },
    PhoneStatus.PENDING_DEACTIVATION_USER: {PhoneStatus.DEACTIVATED, PhoneStatus.IDLE},
    PhoneStatus.PENDING_DEACTIVATION_ADMIN: {PhoneStatus.DEACTIVATED, PhoneStatus.IDLE},
    PhoneStatus.RISK_PENDING: {PhoneStatus.IN_USE, PhoneStatus.DEACTIVATED},
    PhoneStatus.USER_REPORTED: {PhoneStatus.IN_USE, PhoneStatus.DEACTIVATED},
    PhoneStatus.SUSPENDED: {PhoneStatus.IN_USE},
    PhoneStatus.CARD_REPLACING: {PhoneStatus.IN_USE},
    PhoneStatus.DEACTIVATED: set(),
}


def can_transition(source: PhoneStatus, target: PhoneStatus) -> bool:
    return target in ALLOWED_TRANSITIONS.get(source, set())


class DeactivationInitiator(StrEnum):
    USER = "user"
    ADMIN = "admin"


DEACTIVATION_TARGETS: dict[DeactivationInitiator, PhoneStatus] = {
    DeactivationInitiator.USER: PhoneStatus.PENDING_DEACTIVATION_USER,
    DeactivationInitiator.ADMIN: PhoneStatus.PENDING_DEACTIVATION_ADMIN,
}


class RiskReason(StrEnum):
    APPLICANT_DEPARTED = "applicant_departed"
    USER_REPORTED = "user_reported"


RISK_TARGETS: dict[RiskReason, PhoneStatus] = {
    RiskReason.APPLICANT_DEPARTED: PhoneStatus.RISK_PENDING,
    RiskReason.USER_REPORTED: PhoneStatus.USER_REPORTED,
}


class TransferState(StrEnum):
    PENDING = "pending"
    ACCEPTED = "accepted"
    REJECTED = "rejected"


TRANSFER_ALLOWED_TRANSITIONS: dict[TransferState, set[TransferState]] = {
    TransferState.PENDING: {TransferState.ACCEPTED, TransferState.REJECTED},
    TransferState.ACCEPTED: set(),
    TransferState.REJECTED: set(),
}


def can_transfer_transition(source: TransferState, target: TransferState) -> bool:
    return target in TRANSFER_ALLOWED_TRANSITIONS.get(source, set())


class InventoryTaskStatus(StrEnum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CLOSED = "closed"


class InventoryItemStatus(StrEnum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    UNAVAILABLE = "unavailable"


class InventoryItemAction(StrEnum):
    CONFIRM = "confirm"
    MARK_UNAVAILABLE = "markUnavailable"


ITEM_ACTION_TARGETS: dict[InventoryItemAction, InventoryItemStatus] = {
    InventoryItemAction.CONFIRM: InventoryItemStatus.CONFIRMED,
    InventoryItemAction.MARK_UNAVAILABLE: InventoryItemStatus.UNAVAILABLE,
}


def can_apply_item_action(current: InventoryItemStatus, action: InventoryItemAction) -> bool:
    if current == InventoryItemStatus.UNAVAILABLE:
        return False
    # Re-confirming a confirmed item is allowed and idempotent.
    return current in {InventoryItemStatus.PENDING, InventoryItemStatus.CONFIRMED} and action in ITEM_ACTION_TARGETS


def derive_task_status(item_statuses: Iterable[InventoryItemStatus], *, closed: bool = False) -> InventoryTaskStatus:
    if closed:
        return InventoryTaskStatus.CLOSED
    statuses = list(item_statuses)
    if not statuses:
        return InventoryTaskStatus.PENDING
    pending = sum(1 for item in statuses if item == InventoryItemStatus.PENDING)
    if pending == 0:
        return InventoryTaskStatus.COMPLETED
    if pending == len(statuses):
        return InventoryTaskStatus.PENDING
    return InventoryTaskStatus.IN_PROGRESS
