# checkout.py
"""Storefront checkout for a single physical book.

The buyer moves through three steps: shipping details, order review, and
payment. Review "Back" returns to shipping details with everything that was
typed intact; review "Proceed" saves one order and, only if that succeeds,
moves to payment. Payment is handed off to WhatsApp with a pre-filled message;
nothing is tracked after that.

A book without a physical format never enters the flow.
"""
from dataclasses import dataclass, asdict, fields
from decimal import Decimal
from enum import Enum
from urllib.parse import quote as urlquote
import re
import uuid

from pricing import quote, to_money
from store import Ok


class Step(Enum):
    UNAVAILABLE = "unavailable"
    SHIPPING = "shipping"
    REVIEW = "review"
    PAYMENT = "payment"


class InvalidTransition(Exception):
    def __init__(self, step, action):
        super().__init__(f"cannot {action} while at {step.value}")
        self.step = step
        self.action = action


# Characters encodeURIComponent leaves alone.
URL_SAFE = "-_.!~*'()"

REQUIRED_FIELDS = [
    "customer_name",
    "customer_phone",
    "customer_whatsapp",
    "shipping_address",
    "shipping_pincode",
    "shipping_state",
]

FIELD_LABELS = {
    "customer_name": "Full Name",
    "customer_email": "Email",
    "customer_phone": "Phone Number",
    "customer_whatsapp": "WhatsApp Number",
    "shipping_address": "Shipping Address",
    "shipping_pincode": "Pincode",
    "shipping_state": "State",
}


@dataclass(frozen=True)
class ShippingDetails:
    customer_name: str = ""
    customer_email: str = ""
    customer_phone: str = ""
    customer_whatsapp: str = ""
    shipping_address: str = ""
    shipping_pincode: str = ""
    shipping_state: str = ""

    @classmethod
    def from_mapping(cls, data):
        # Values are kept exactly as typed so the form can be shown again unchanged.
        return cls(**{f.name: data.get(f.name) or "" for f in fields(cls)})

    def missing_fields(self):
        return [name for name in REQUIRED_FIELDS if not getattr(self, name).strip()]

    def as_dict(self):
        return asdict(self)


@dataclass(frozen=True)
class BookSnapshot:
    book_id: int
    title: str
    author: str
    unit_price: Decimal

    @classmethod
    def from_book(cls, book):
        physical = book.physical_format
        if physical is None or not physical.is_available:
            return None
        return cls(book.id, book.title, book.author, to_money(physical.price))


@dataclass(frozen=True)
class OrderSummary:
    title: str
    author: str
    unit_price: Decimal
    shipping_cost: Decimal
    total_amount: Decimal
    region_label: str
    details: ShippingDetails


def summarize(snapshot, details, rates):
    q = quote(snapshot.unit_price, details.shipping_state, rates)
    return OrderSummary(
        title=snapshot.title,
        author=snapshot.author,
        unit_price=q.unit_price,
        shipping_cost=q.shipping_cost,
        total_amount=q.total_amount,
        region_label=q.region_label,
        details=details,
    )


def order_fields(snapshot, details, rates, idempotency_key):
    """Column values for the Order row the review step persists."""
    q = quote(snapshot.unit_price, details.shipping_state, rates)
    email = details.customer_email.strip()
    return {
        "idempotency_key": idempotency_key,
        "book_id": snapshot.book_id,
        "book_title": snapshot.title,
        "book_author": snapshot.author,
        "book_price": q.unit_price,
        "shipping_cost": q.shipping_cost,
        "total_amount": q.total_amount,
        "customer_name": details.customer_name.strip(),
        "customer_email": email or None,
        "customer_phone": details.customer_phone.strip(),
        "customer_whatsapp": details.customer_whatsapp.strip(),
        "shipping_address": details.shipping_address.strip(),
        "shipping_pincode": details.shipping_pincode.strip(),
        "shipping_state": details.shipping_state.strip(),
        "is_home_region": q.in_region,
        "is_guest": True,
        "order_status": "pending",
        "payment_status": "pending",
    }


def digits_only(number):
    return re.sub(r"[^0-9]", "", number or "")


def handoff_message(title, author, total_amount):
    return f'Hi, I have placed an order for "{title}" by {author}. Order Total: Rs.{to_money(total_amount):.2f}'


def handoff_url(host, contact_number, message):
    """WhatsApp deep link for the message, or None without a usable number."""
    number = digits_only(contact_number)
    if not number:
        return None
    return f"https://{host}/{number}?text={urlquote(message, safe=URL_SAFE)}"


class CheckoutSession:
    """Where one buyer is in the checkout for one book."""

    def __init__(self, snapshot, step=None, details=None, token=None, order_number=None):
        self.snapshot = snapshot
        if snapshot is None:
            step = Step.UNAVAILABLE
        self.step = step or Step.SHIPPING
        self.details = details or ShippingDetails()
        self.token = token
        self.order_number = order_number

    @classmethod
    def start(cls, book):
        return cls(BookSnapshot.from_book(book))

    def _require(self, step, action):
        if self.step is not step:
            raise InvalidTransition(self.step, action)

    def submit_shipping(self, details):
        """Capture the form; returns the missing required fields (empty on success)."""
        self._require(Step.SHIPPING, "submit shipping details")
        self.details = details
        missing = details.missing_fields()
        if missing:
            return missing
        self.step = Step.REVIEW
        self.token = uuid.uuid4().hex
        return []

    def back(self):
        self._require(Step.REVIEW, "go back")
        self.step = Step.SHIPPING

    def summary(self, rates):
        if self.snapshot is None:
            raise InvalidTransition(self.step, "summarize")
        return summarize(self.snapshot, self.details, rates)

    def proceed(self, rates, save):
        """Persist the order through ``save``; advance to payment only on Ok."""
        self._require(Step.REVIEW, "place the order")
        result = save(order_fields(self.snapshot, self.details, rates, self.token))
        if isinstance(result, Ok):
            self.step = Step.PAYMENT
            self.order_number = result.value.order_number
        return result

    def to_dict(self):
        return {
            "step": self.step.value,
            "details": self.details.as_dict(),
            "token": self.token,
            "order_number": self.order_number,
        }

    @classmethod
    def from_dict(cls, snapshot, data):
        if not data:
            return cls(snapshot)
        return cls(
            snapshot,
            step=Step(data.get("step", Step.SHIPPING.value)),
            details=ShippingDetails.from_mapping(data.get("details") or {}),
            token=data.get("token"),
            order_number=data.get("order_number"),
        )
