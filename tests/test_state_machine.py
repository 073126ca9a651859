from __future__ import annotations

import pytest

from phone_assets.domain.state_machine import (
    ALLOWED_TRANSITIONS,
    InventoryItemAction,
    InventoryItemStatus,
    InventoryTaskStatus,
    PhoneStatus,
    TransferState,
    can_apply_item_action,
    can_transfer_transition,
    can_transition,
    derive_task_status,
)


def test_every_status_has_a_transition_row() -> None:
    assert set(ALLOWED_TRANSITIONS) == set(PhoneStatus)
    for targets in ALLOWED_TRANSITIONS.values():
        assert targets <= set(PhoneStatus)


@pytest.mark.parametrize(
    ("source", "target", "allowed"),
    [
        (PhoneStatus.IDLE, PhoneStatus.IN_USE, True),
        (PhoneStatus.IDLE, PhoneStatus.DEACTIVATED, False),
        (PhoneStatus.IN_USE, PhoneStatus.PENDING_DEACTIVATION_USER, True),
        (PhoneStatus.PENDING_DEACTIVATION_USER, PhoneStatus.PENDING_DEACTIVATION_ADMIN, False),
        (PhoneStatus.RISK_PENDING, PhoneStatus.IN_USE, True),
        (PhoneStatus.USER_REPORTED, PhoneStatus.DEACTIVATED, True),
        (PhoneStatus.SUSPENDED, PhoneStatus.CARD_REPLACING, False),
        (PhoneStatus.DEACTIVATED, PhoneStatus.IDLE, False),
    ],
)
def test_phone_transitions(source: PhoneStatus, target: PhoneStatus, allowed: bool) -> None:
    assert can_transition(source, target) is allowed


def test_transfer_states_are_terminal_after_resolution() -> None:
    assert can_transfer_transition(TransferState.PENDING, TransferState.ACCEPTED)
    assert can_transfer_transition(TransferState.PENDING, TransferState.REJECTED)
    assert not can_transfer_transition(TransferState.ACCEPTED, TransferState.REJECTED)
    assert not can_transfer_transition(TransferState.REJECTED, TransferState.ACCEPTED)


def test_unavailable_item_is_terminal() -> None:
    assert can_apply_item_action(InventoryItemStatus.PENDING, InventoryItemAction.CONFIRM)
    assert can_apply_item_action(InventoryItemStatus.CONFIRMED, InventoryItemAction.CONFIRM)
    assert not can_apply_item_action(InventoryItemStatus.UNAVAILABLE, InventoryItemAction.CONFIRM)
    assert not can_apply_item_action(InventoryItemStatus.UNAVAILABLE, InventoryItemAction.MARK_UNAVAILABLE)


def test_task_status_aggregation() -> None:
    pending = InventoryItemStatus.PENDING
    confirmed = InventoryItemStatus.CONFIRMED
    unavailable = InventoryItemStatus.UNAVAILABLE

    assert derive_task_status([]) == InventoryTaskStatus.PENDING
    assert derive_task_status([pending, pending]) == InventoryTaskStatus.PENDING
    assert derive_task_status([pending, confirmed]) == InventoryTaskStatus.IN_PROGRESS
    assert derive_task_status([confirmed, unavailable]) == InventoryTaskStatus.COMPLETED
    assert derive_task_status([confirmed], closed=True) == InventoryTaskStatus.CLOSED
