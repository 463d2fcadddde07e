"""
Order status state machine.

    pending → processing → shipped → delivered → completed
    shipped/delivered → returned → refunded
    pending/processing → cancelled

``cancelled``, ``completed`` and ``refunded`` are terminal.
"""
from typing import Any, Dict

from pymongo import ReturnDocument

import database
from errors import InvalidTransition
from schemas import OrderStatus

VALID_TRANSITIONS = {
    OrderStatus.pending: {OrderStatus.processing, OrderStatus.cancelled},
    OrderStatus.processing: {OrderStatus.shipped, OrderStatus.cancelled},
    OrderStatus.shipped: {OrderStatus.delivered, OrderStatus.returned},
    OrderStatus.delivered: {OrderStatus.completed, OrderStatus.returned},
    OrderStatus.returned: {OrderStatus.refunded},
    OrderStatus.cancelled: set(),
    OrderStatus.completed: set(),
    OrderStatus.refunded: set(),
}

TERMINAL_STATES = {status for status, targets in VALID_TRANSITIONS.items() if not targets}

# Customers may cancel their own order only while it has not shipped.
CANCELLABLE_STATES = {status for status, targets in VALID_TRANSITIONS.items() if OrderStatus.cancelled in targets}


def can_transition(source, target) -> bool:
    return OrderStatus(target) in VALID_TRANSITIONS[OrderStatus(source)]


def transition(order: Dict[str, Any], target) -> Dict[str, Any]:
    """Move ``order`` to ``target`` and return the updated document.

    The write only applies if the stored status still equals the one we
    validated against, so a concurrent transition of the same order makes
    this call fail with InvalidTransition instead of overwriting it.
    """
    source = OrderStatus(order["status"])
    target = OrderStatus(target)
    if not can_transition(source, target):
        raise InvalidTransition(source.value, target.value)

    updated = database.get_db().order.find_one_and_update(
        {"_id": order["_id"], "status": source.value},
        {"$set": {"status": target.value, "updated_at": database.now()}},
        return_document=ReturnDocument.AFTER,
    )
    if updated is None:
        current = database.get_db().order.find_one({"_id": order["_id"]}, {"status": 1})
        raise InvalidTransition(current["status"] if current else source.value, target.value)
    return updated
