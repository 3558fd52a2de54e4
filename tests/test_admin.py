import io
import json
from decimal import Decimal

import pytest

from core import (
    db, Book, Order, AudiobookChapter, BlogComment, Blog, UiTranslation, SiteSettings, HeroSlide,
)
from content import translate


def make_order(**overrides):
    values = dict(
        order_number="AB12CD34", idempotency_key="k" * 32, book_title="Ponniyin Selvan",
        book_author="Kalki", book_price=Decimal("500.00"), shipping_cost=Decimal("100.00"),
        total_amount=Decimal("600.00"), customer_name="Meena", customer_phone="9000000001",
        customer_whatsapp="9000000001", shipping_address="12 Temple Street",
        shipping_pincode="600004", shipping_state="Kerala",
    )
    values.update(overrides)
    order = Order(**values)
    db.session.add(order)
    db.session.commit()
    return order


def reload(model, ident):
    db.session.expire_all()
    return db.session.get(model, ident)


def test_admin_pages_need_login(client):
    resp = client.get("/admin/orders/")
    assert resp.status_code == 302
    assert resp.headers["Location"].endswith("/admin/login")


def test_wrong_password_is_rejected(client):
    resp = client.post("/admin/login", data={"password": "nope"}, follow_redirects=True)
    assert b"Incorrect password." in resp.data
    assert client.get("/admin/").status_code == 302


def test_login_opens_the_console(admin_client):
    assert admin_client.get("/admin/").status_code == 200


@pytest.mark.parametrize("action, order_status, payment_status", [
    ("mark_paid", "paid", "completed"),
    ("confirm", "confirmed", "completed"),
    ("ship", "shipped", "pending"),
    ("deliver", "delivered", "pending"),
    ("cancel", "cancelled", "pending"),
])
def test_order_actions(admin_client, action, order_status, payment_status):
    order = make_order()
    admin_client.post(f"/admin/orders/{order.id}/status", data={"version": 1, "action": action})
    order = reload(Order, order.id)
    assert order.order_status == order_status
    assert order.payment_status == payment_status
    assert order.version == 2
    assert order.total_amount == Decimal("600.00")


def test_stale_admin_edit_is_rejected(admin_client):
    order = make_order()
    admin_client.post(f"/admin/orders/{order.id}/status", data={"version": 1, "action": "confirm"})
    resp = admin_client.post(f"/admin/orders/{order.id}/status",
                             data={"version": 1, "action": "cancel"}, follow_redirects=True)
    assert b"changed by someone else" in resp.data
    assert reload(Order, order.id).order_status == "confirmed"


def test_unknown_status_is_rejected(admin_client):
    order = make_order()
    resp = admin_client.post(f"/admin/orders/{order.id}/status",
                             data={"version": 1, "order_status": "lost"}, follow_redirects=True)
    assert b"Unknown order status: lost" in resp.data
    assert reload(Order, order.id).order_status == "pending"


def test_set_status_directly(admin_client):
    order = make_order()
    admin_client.post(f"/admin/orders/{order.id}/status",
                      data={"version": 1, "order_status": "shipped", "payment_status": "completed"})
    order = reload(Order, order.id)
    assert (order.order_status, order.payment_status) == ("shipped", "completed")


def test_admin_notes(admin_client):
    order = make_order()
    admin_client.post(f"/admin/orders/{order.id}/notes", data={"version": 1, "admin_notes": " Called buyer "})
    assert reload(Order, order.id).admin_notes == "Called buyer"


def test_order_list_filters_by_status(admin_client):
    make_order()
    make_order(order_number="ZZ99YY88", idempotency_key="z" * 32, order_status="shipped",
               customer_name="Kumar")
    html = admin_client.get("/admin/orders/", query_string={"status": "shipped"}).data
    assert b"ZZ99YY88" in html
    assert b"AB12CD34" not in html
    assert admin_client.get("/admin/orders/", query_string={"status": "lost"}).status_code == 404


def test_create_book_with_physical_format(admin_client):
    resp = admin_client.post("/admin/new", data={"title": "Kurunthogai", "author": "Various", "sku": "KT-1"})
    bk = Book.query.filter_by(sku="KT-1").one()
    assert bk.slug == "kurunthogai"
    assert resp.headers["Location"].endswith(f"/admin/edit/{bk.id}")
    admin_client.post(f"/admin/books/{bk.id}/formats/new",
                      data={"format_type": "physical", "price": "275.5", "is_available": "on"})
    bk = reload(Book, bk.id)
    assert bk.physical_format.price == Decimal("275.50")
    assert bk.physical_format.is_available is True


@pytest.mark.parametrize("price", ["cheap", "-50"])
def test_invalid_price_is_rejected(admin_client, make_book, price):
    bk = make_book(formats=[])
    resp = admin_client.post(f"/admin/books/{bk.id}/formats/new",
                             data={"format_type": "physical", "price": price}, follow_redirects=True)
    assert b"Invalid price." in resp.data
    assert reload(Book, bk.id).formats == []


def test_duplicate_chapter_number_is_rejected(admin_client, make_book):
    bk = make_book(formats=[{"format_type": "audiobook"}])
    fmt_id = bk.formats[0].id
    chapter = {"chapter_number": "1", "title": "Opening", "audio_url": "https://x/1.mp3"}
    admin_client.post(f"/admin/formats/{fmt_id}/chapters", data=chapter)
    resp = admin_client.post(f"/admin/formats/{fmt_id}/chapters", data=chapter, follow_redirects=True)
    assert b"Chapter 1 already exists." in resp.data
    assert AudiobookChapter.query.count() == 1


def test_chapter_numbers_must_be_positive(admin_client, make_book):
    bk = make_book(formats=[{"format_type": "audiobook"}])
    fmt_id = bk.formats[0].id
    admin_client.post(f"/admin/formats/{fmt_id}/chapters",
                      data={"chapter_number": "0", "title": "Intro", "audio_url": "https://x/0.mp3"})
    assert AudiobookChapter.query.count() == 0


def test_comment_moderation(admin_client):
    post = Blog(slug="p", title="P", is_published=True)
    post.comments.append(BlogComment(user_name="A", user_email="a@x.org", comment="Hi"))
    db.session.add(post)
    db.session.commit()
    cid = post.comments[0].id
    admin_client.post(f"/admin/comments/{cid}/toggle")
    assert reload(BlogComment, cid).is_approved is True
    admin_client.post(f"/admin/comments/{cid}/toggle")
    assert reload(BlogComment, cid).is_approved is False
    admin_client.post(f"/admin/comments/{cid}/delete")
    assert reload(BlogComment, cid) is None


def test_generic_content_screens(admin_client):
    admin_client.post("/admin/content/translations/new",
                      data={"key": "Buy Now", "english": "Buy Now", "tamil": "இப்போது வாங்கு"})
    row = UiTranslation.query.filter_by(key="Buy Now").one()
    assert row.category == "general"
    assert "Buy Now".encode() in admin_client.get("/admin/content/translations/").data
    resp = admin_client.post("/admin/content/translations/new",
                             data={"key": "Buy Now", "english": "again"}, follow_redirects=True)
    assert b"already exists" in resp.data
    assert admin_client.get("/admin/content/nothing/").status_code == 404


def test_blog_slug_defaults_from_title(admin_client):
    admin_client.post("/admin/content/blogs/new", data={"title": "New Arrivals!", "is_published": "on"})
    post = Blog.query.one()
    assert post.slug == "new-arrivals"
    assert post.is_published is True


def test_site_settings_form(admin_client):
    admin_client.post("/admin/settings", data={"site_name": "Pusthaka", "whatsapp_number": "+91 98765 43210"})
    assert reload(SiteSettings, 1).whatsapp_number == "+91 98765 43210"


def test_translation_lookup_falls_back_to_key():
    table = {"Home": UiTranslation(key="Home", english="Home", tamil="முகப்பு")}
    assert translate("Home", "ta", table) == "முகப்பு"
    assert translate("Home", "en", table) == "Home"
    assert translate("Missing", "ta", table) == "Missing"


def test_book_backup_round_trip(admin_client, make_book):
    make_book(sku="PS-001", formats=[
        {"format_type": "physical", "price": Decimal("500.00")},
        {"format_type": "ebook", "file_url": "https://x/ps.epub"},
    ])
    exported = json.loads(admin_client.get("/admin/backup/books.json").data)
    assert exported[0]["formats"][0]["price"] == "500.00"

    exported[0]["title"] = "Ponniyin Selvan (Deluxe)"
    exported[0]["formats"] = [{"format_type": "physical", "price": "650.00"}]
    exported.append({"title": "Parthiban Kanavu", "author": "Kalki", "sku": "PK-001"})
    upload = {"file": (io.BytesIO(json.dumps(exported).encode()), "books.json")}
    resp = admin_client.post("/admin/backup/import/books", data=upload,
                             content_type="multipart/form-data", follow_redirects=True)
    assert b"Successfully imported 2 books!" in resp.data

    db.session.expire_all()
    assert Book.query.count() == 2
    updated = Book.query.filter_by(sku="PS-001").one()
    assert updated.title == "Ponniyin Selvan (Deluxe)"
    assert {f.format_type: f.price for f in updated.formats} == {
        "physical": Decimal("650.00"),
        "ebook": Decimal("0.00"),
    }


def test_reimporting_an_export_keeps_audiobook_chapters(admin_client, make_book):
    bk = make_book(title="Sivakamiyin Sabatham", sku="AB-1", formats=[
        {"format_type": "audiobook", "file_url": "https://x/ss"},
    ])
    fmt_id = bk.formats[0].id
    db.session.add(AudiobookChapter(
        format_id=fmt_id, chapter_number=1, title="Paranjothi", audio_url="https://x/ss/1.mp3",
    ))
    db.session.commit()

    exported = admin_client.get("/admin/backup/books.json").data
    assert json.loads(exported)[0]["formats"][0]["chapters"][0]["title"] == "Paranjothi"
    upload = {"file": (io.BytesIO(exported), "books.json")}
    admin_client.post("/admin/backup/import/books", data=upload, content_type="multipart/form-data")

    db.session.expire_all()
    assert Book.query.count() == 1
    assert [f.id for f in Book.query.one().formats] == [fmt_id]
    assert [c.title for c in AudiobookChapter.query.all()] == ["Paranjothi"]


def test_import_restores_chapters_for_a_new_book(admin_client):
    data = [{
        "title": "Kalki Short Stories", "author": "Kalki", "sku": "KS-1",
        "formats": [{
            "format_type": "audiobook", "file_url": "https://x/ks",
            "chapters": [
                {"chapter_number": 2, "title": "Two", "audio_url": "https://x/ks/2.mp3"},
                {"chapter_number": 1, "title": "One", "audio_url": "https://x/ks/1.mp3"},
            ],
        }],
    }]
    upload = {"file": (io.BytesIO(json.dumps(data).encode()), "books.json")}
    admin_client.post("/admin/backup/import/books", data=upload, content_type="multipart/form-data")

    db.session.expire_all()
    fmt = Book.query.filter_by(sku="KS-1").one().formats[0]
    assert [c.title for c in fmt.chapters] == ["One", "Two"]


def test_bad_backup_file(admin_client):
    upload = {"file": (io.BytesIO(b"{not json"), "books.json")}
    resp = admin_client.post("/admin/backup/import/books", data=upload,
                             content_type="multipart/form-data", follow_redirects=True)
    assert b"not valid JSON" in resp.data


def test_settings_backup_replaces_carousel(admin_client, settings):
    db.session.add(HeroSlide(title="Old", image_url="https://x/old.png"))
    db.session.commit()
    data = {
        "settings": [{"id": 1, "whatsapp_number": "+91 90000 00000"}],
        "carousel": [{"title": "New", "image_url": "https://x/new.png", "order_index": 0, "is_active": True}],
    }
    upload = {"file": (io.BytesIO(json.dumps(data).encode()), "settings.json")}
    admin_client.post("/admin/backup/import/settings", data=upload, content_type="multipart/form-data")
    db.session.expire_all()
    assert [s.title for s in HeroSlide.query.all()] == ["New"]
    assert db.session.get(SiteSettings, 1).whatsapp_number == "+91 90000 00000"
