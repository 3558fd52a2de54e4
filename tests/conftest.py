from decimal import Decimal

import pytest

from core import create_app, db, Book, BookFormat, SiteSettings, slugify


@pytest.fixture
def app():
    app = create_app({
        "TESTING": True,
        "SECRET_KEY": "test",
        "SQLALCHEMY_DATABASE_URI": "sqlite://",
        "SEED_DEMO_DATA": False,
        "ADMIN_PASSWORD": "letmein",
    })
    with app.app_context():
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def admin_client(client):
    client.post("/admin/login", data={"password": "letmein"})
    return client


@pytest.fixture
def make_book(app):
    def _make(title="Ponniyin Selvan", author="Kalki", price="500.00", formats=None, **extra):
        if formats is None:
            formats = [{"format_type": "physical", "price": Decimal(price), "stock_quantity": 3}]
        bk = Book(title=title, author=author, slug=extra.pop("slug", slugify(title)), **extra)
        bk.formats = [BookFormat(**f) for f in formats]
        db.session.add(bk)
        db.session.commit()
        return bk
    return _make


@pytest.fixture
def settings(app):
    s = SiteSettings(
        id=1,
        whatsapp_number="+91 98765 43210",
        payment_qr_code_url="https://cdn.example.org/qr.png",
        payment_instructions="Pay by UPI to bookshop@upi",
    )
    db.session.add(s)
    db.session.commit()
    return s


@pytest.fixture
def shipping_form():
    return {
        "customer_name": "Meena",
        "customer_email": "",
        "customer_phone": "9000000001",
        "customer_whatsapp": "9000000001",
        "shipping_address": "12 Temple Street\nMylapore",
        "shipping_pincode": "600004",
        "shipping_state": "Kerala",
    }
