# orders.py
"""Admin-side order status changes."""
import structlog

from core import db, Order, ORDER_STATUSES, PAYMENT_STATUSES

log = structlog.get_logger()

# action -> (order_status, payment_status or None to leave unchanged)
ORDER_ACTIONS = {
    "mark_paid": ("paid", "completed"),
    "confirm": ("confirmed", "completed"),
    "ship": ("shipped", None),
    "deliver": ("delivered", None),
    "cancel": ("cancelled", None),
}


class StaleOrderError(Exception):
    """The order changed since the admin loaded it."""


class InvalidStatusError(ValueError):
    pass


def update_order(order_id, expected_version, patch):
    """Apply ``patch`` only if the row is still at ``expected_version``."""
    patch = dict(patch, version=Order.version + 1)
    changed = (
        Order.query.filter_by(id=order_id, version=expected_version)
        .update(patch, synchronize_session=False)
    )
    if not changed:
        db.session.rollback()
        raise StaleOrderError(order_id)
    db.session.commit()
    log.info("order_updated", order_id=order_id, fields=sorted(k for k in patch if k != "version"))


def set_status(order_id, expected_version, order_status, payment_status=None):
    if order_status not in ORDER_STATUSES:
        raise InvalidStatusError(f"Unknown order status: {order_status}")
    patch = {"order_status": order_status}
    if payment_status is not None:
        if payment_status not in PAYMENT_STATUSES:
            raise InvalidStatusError(f"Unknown payment status: {payment_status}")
        patch["payment_status"] = payment_status
    update_order(order_id, expected_version, patch)


def apply_action(order_id, expected_version, action):
    if action not in ORDER_ACTIONS:
        raise InvalidStatusError(f"Unknown action: {action}")
    order_status, payment_status = ORDER_ACTIONS[action]
    set_status(order_id, expected_version, order_status, payment_status)


def set_notes(order_id, expected_version, notes):
    update_order(order_id, expected_version, {"admin_notes": notes.strip() or None})


def orders_by_status(status=None):
    query = Order.query
    if status and status != "all":
        query = query.filter_by(order_status=status)
    return query.order_by(Order.created_at.desc(), Order.id.desc()).all()
