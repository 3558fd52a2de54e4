# store.py
"""Reads and writes the checkout workflow needs from the database."""
from dataclasses import dataclass
import uuid

import structlog
from sqlalchemy.exc import SQLAlchemyError

from core import db, Order, SiteSettings

log = structlog.get_logger()


@dataclass(frozen=True)
class Ok:
    value: object


@dataclass(frozen=True)
class Err:
    reason: str


def new_order_number():
    return str(uuid.uuid4())[:8].upper()


def load_site_settings():
    """Return the settings singleton, or None when it cannot be read."""
    try:
        return db.session.get(SiteSettings, 1)
    except SQLAlchemyError as exc:
        db.session.rollback()
        log.warning("site_settings_unavailable", error=str(exc))
        return None


def find_order_by_key(idempotency_key):
    return Order.query.filter_by(idempotency_key=idempotency_key).first()


def insert_order(fields):
    """Insert one Order row, at most once per idempotency key.

    Returns Ok(order) with the new (or previously stored) row, or Err(reason)
    when the write fails. The session is rolled back on failure.
    """
    key = fields["idempotency_key"]
    existing = find_order_by_key(key)
    if existing is not None:
        log.info("order_replayed", order_number=existing.order_number)
        return Ok(existing)

    order = Order(order_number=new_order_number(), **fields)
    try:
        db.session.add(order)
        db.session.commit()
    except SQLAlchemyError as exc:
        db.session.rollback()
        log.error("order_insert_failed", book_id=fields.get("book_id"), error=str(exc))
        # A concurrent submit with the same key may have won the race.
        existing = find_order_by_key(key)
        if existing is not None:
            return Ok(existing)
        return Err("order could not be saved")

    log.info(
        "order_placed",
        order_number=order.order_number,
        book_id=order.book_id,
        total_amount=str(order.total_amount),
    )
    return Ok(order)
