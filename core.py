# core.py
from flask import Flask
from flask_sqlalchemy import SQLAlchemy
from sqlalchemy import func
from decimal import Decimal
from dotenv import load_dotenv
import os

import structlog

log = structlog.get_logger()

# --- DB handle (imported by blueprints) ---
db = SQLAlchemy()

# --- Constants shared across blueprints ---
FORMAT_TYPES = ["physical", "ebook", "audiobook"]
ORDER_STATUSES = ["pending", "paid", "confirmed", "shipped", "delivered", "cancelled"]
PAYMENT_STATUSES = ["pending", "completed"]
LANGUAGES = ["en", "ta"]
FONT_SIZES = ["small", "medium", "large", "extra-large"]

DEFAULT_CONFIG = {
    "SECRET_KEY": "dev-secret-change-me",
    "SQLALCHEMY_TRACK_MODIFICATIONS": False,
    "ADMIN_PASSWORD": "admin123",
    "HOME_REGION": "tamil nadu",
    "SHIPPING_IN_REGION": Decimal("50.00"),
    "SHIPPING_OUT_OF_REGION": Decimal("100.00"),
    "MESSAGING_HOST": "wa.me",
    "SEED_DEMO_DATA": True,
}

# Settings read from the environment (after .env is loaded)
ENV_KEYS = ["SECRET_KEY", "ADMIN_PASSWORD", "HOME_REGION", "MESSAGING_HOST"]
ENV_MONEY_KEYS = ["SHIPPING_IN_REGION", "SHIPPING_OUT_OF_REGION"]


# --- Catalog ---
class Book(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    slug = db.Column(db.String(160), unique=True, nullable=False)
    title = db.Column(db.String(200), nullable=False)
    author = db.Column(db.String(160), nullable=False)
    description = db.Column(db.Text, nullable=False, default="")
    publisher = db.Column(db.String(160), nullable=False, default="")
    isbn = db.Column(db.String(20), nullable=True)
    sku = db.Column(db.String(60), unique=True, nullable=True)  # backup import upserts on this
    genre = db.Column(db.String(80), nullable=True)
    published_date = db.Column(db.String(20), nullable=True)
    cover_image_url = db.Column(db.String(500), nullable=False, default="")
    created_at = db.Column(db.DateTime, nullable=False, server_default=func.now())
    updated_at = db.Column(db.DateTime, nullable=False, server_default=func.now(), onupdate=func.now())

    formats = db.relationship(
        "BookFormat", backref="book", cascade="all, delete-orphan", order_by="BookFormat.id"
    )

    def formats_of(self, format_type):
        return [f for f in self.formats if f.format_type == format_type]

    @property
    def physical_format(self):
        """The format whose price drives checkout, or None."""
        physical = self.formats_of("physical")
        return physical[0] if physical else None


class BookFormat(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    book_id = db.Column(db.Integer, db.ForeignKey("book.id"), nullable=False)
    format_type = db.Column(db.String(20), nullable=False)  # physical, ebook, audiobook
    price = db.Column(db.Numeric(10, 2), nullable=False, default=0)
    file_url = db.Column(db.String(500), nullable=True)
    file_format = db.Column(db.String(20), nullable=True)  # pdf, epub, html, mp3
    file_size = db.Column(db.Integer, nullable=True)
    stock_quantity = db.Column(db.Integer, nullable=True)  # physical only
    is_available = db.Column(db.Boolean, nullable=False, default=True)
    license_info = db.Column(db.String(200), nullable=True)
    created_at = db.Column(db.DateTime, nullable=False, server_default=func.now())

    chapters = db.relationship(
        "AudiobookChapter",
        backref="format",
        cascade="all, delete-orphan",
        order_by="AudiobookChapter.chapter_number",
    )

    @property
    def is_free(self):
        return self.format_type in ("ebook", "audiobook")


class AudiobookChapter(db.Model):
    __table_args__ = (db.UniqueConstraint("format_id", "chapter_number"),)

    id = db.Column(db.Integer, primary_key=True)
    format_id = db.Column(db.Integer, db.ForeignKey("book_format.id"), nullable=False)
    chapter_number = db.Column(db.Integer, nullable=False)
    title = db.Column(db.String(200), nullable=False)
    audio_url = db.Column(db.String(500), nullable=False)
    duration_minutes = db.Column(db.Integer, nullable=True)


# --- Orders ---
class Order(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    order_number = db.Column(db.String(12), unique=True, nullable=False)  # short public id
    idempotency_key = db.Column(db.String(32), unique=True, nullable=False)
    book_id = db.Column(db.Integer, db.ForeignKey("book.id", ondelete="SET NULL"), nullable=True)
    # snapshot at time of order
    book_title = db.Column(db.String(200), nullable=False)
    book_author = db.Column(db.String(160), nullable=False)
    book_price = db.Column(db.Numeric(10, 2), nullable=False)
    shipping_cost = db.Column(db.Numeric(10, 2), nullable=False)
    total_amount = db.Column(db.Numeric(10, 2), nullable=False)
    customer_name = db.Column(db.String(160), nullable=False)
    customer_email = db.Column(db.String(200), nullable=True)
    customer_phone = db.Column(db.String(40), nullable=False)
    customer_whatsapp = db.Column(db.String(40), nullable=False)
    shipping_address = db.Column(db.Text, nullable=False)
    shipping_pincode = db.Column(db.String(20), nullable=False)
    shipping_state = db.Column(db.String(80), nullable=False)
    is_home_region = db.Column(db.Boolean, nullable=False, default=False)
    is_guest = db.Column(db.Boolean, nullable=False, default=True)
    # admin-driven
    order_status = db.Column(db.String(20), nullable=False, default="pending")
    payment_status = db.Column(db.String(20), nullable=False, default="pending")
    payment_screenshot_url = db.Column(db.String(500), nullable=True)
    admin_notes = db.Column(db.Text, nullable=True)
    version = db.Column(db.Integer, nullable=False, default=1)
    created_at = db.Column(db.DateTime, nullable=False, server_default=func.now())


# --- Site content ---
class SiteSettings(db.Model):
    """Singleton row (id 1) with storefront-wide settings."""
    id = db.Column(db.Integer, primary_key=True)
    site_name = db.Column(db.String(120), nullable=False, default="Pusthaka")
    whatsapp_number = db.Column(db.String(40), nullable=True)
    payment_qr_code_url = db.Column(db.String(500), nullable=True)
    payment_instructions = db.Column(db.Text, nullable=True)
    contact_email = db.Column(db.String(200), nullable=True)
    contact_phone = db.Column(db.String(40), nullable=True)
    address = db.Column(db.Text, nullable=True)


class Blog(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    slug = db.Column(db.String(160), unique=True, nullable=False)
    title = db.Column(db.String(200), nullable=False)
    excerpt = db.Column(db.String(500), nullable=False, default="")
    content = db.Column(db.Text, nullable=False, default="")
    author = db.Column(db.String(160), nullable=False, default="")
    cover_image_url = db.Column(db.String(500), nullable=True)
    is_published = db.Column(db.Boolean, nullable=False, default=False)
    created_at = db.Column(db.DateTime, nullable=False, server_default=func.now())
    updated_at = db.Column(db.DateTime, nullable=False, server_default=func.now(), onupdate=func.now())

    comments = db.relationship("BlogComment", backref="blog", cascade="all, delete-orphan")


class BlogComment(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    blog_id = db.Column(db.Integer, db.ForeignKey("blog.id"), nullable=False)
    user_name = db.Column(db.String(120), nullable=False)
    user_email = db.Column(db.String(200), nullable=False)
    comment = db.Column(db.Text, nullable=False)
    is_approved = db.Column(db.Boolean, nullable=False, default=False)
    created_at = db.Column(db.DateTime, nullable=False, server_default=func.now())


class PageContent(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    page_key = db.Column(db.String(60), unique=True, nullable=False)  # about, contact, contribute
    title = db.Column(db.String(200), nullable=False)
    content = db.Column(db.Text, nullable=False, default="")


class UiTranslation(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    key = db.Column(db.String(120), unique=True, nullable=False)
    english = db.Column(db.Text, nullable=False)
    tamil = db.Column(db.Text, nullable=False, default="")
    category = db.Column(db.String(60), nullable=False, default="general")


class MenuSetting(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    menu_key = db.Column(db.String(60), unique=True, nullable=False)
    label = db.Column(db.String(120), nullable=False)
    order_index = db.Column(db.Integer, nullable=False, default=0)
    is_visible = db.Column(db.Boolean, nullable=False, default=True)


class Genre(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    name_en = db.Column(db.String(80), unique=True, nullable=False)
    name_ta = db.Column(db.String(120), nullable=False, default="")


class HeroSlide(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    title = db.Column(db.String(200), nullable=False)
    subtitle = db.Column(db.String(300), nullable=True)
    image_url = db.Column(db.String(500), nullable=False)
    link_url = db.Column(db.String(500), nullable=True)
    order_index = db.Column(db.Integer, nullable=False, default=0)
    is_active = db.Column(db.Boolean, nullable=False, default=True)


def slugify(text):
    return "-".join("".join(c if c.isalnum() else " " for c in text.lower()).split())


def seed_if_empty():
    """Seed a small demo catalog and default content on first run."""
    if Book.query.count() > 0:
        return
    books = [
        {
            "title": "Ponniyin Selvan", "author": "Kalki Krishnamurthy", "genre": "Historical Fiction",
            "publisher": "Vanathi Pathippagam", "sku": "PS-001",
            "formats": [
                {"format_type": "physical", "price": Decimal("500.00"), "stock_quantity": 12},
                {"format_type": "ebook", "file_url": "https://files.example.org/ponniyin-selvan.epub", "file_format": "epub"},
            ],
        },
        {
            "title": "Thirukkural", "author": "Thiruvalluvar", "genre": "Poetry",
            "publisher": "Public Domain", "sku": "TK-001",
            "formats": [
                {"format_type": "ebook", "file_url": "https://files.example.org/thirukkural.pdf", "file_format": "pdf"},
                {"format_type": "audiobook", "file_url": "https://files.example.org/thirukkural.mp3", "file_format": "mp3"},
            ],
        },
        {
            "title": "Sivagamiyin Sapatham", "author": "Kalki Krishnamurthy", "genre": "Historical Fiction",
            "publisher": "Vanathi Pathippagam", "sku": "SS-001",
            "formats": [
                {"format_type": "physical", "price": Decimal("350.00"), "stock_quantity": 5},
            ],
        },
    ]
    for b in books:
        formats = b.pop("formats")
        bk = Book(slug=slugify(b["title"]), **b)
        bk.formats = [BookFormat(**f) for f in formats]
        db.session.add(bk)
    if db.session.get(SiteSettings, 1) is None:
        db.session.add(SiteSettings(id=1))
    menus = ["home", "books", "ebooks", "audiobooks", "blog", "about", "contact"]
    for i, key in enumerate(menus):
        db.session.add(MenuSetting(menu_key=key, label=key.capitalize(), order_index=i))
    db.session.commit()
    log.info("demo_data_seeded", books=len(books))


def load_config(app, config=None):
    """Defaults, then environment (.env honoured), then explicit overrides."""
    load_dotenv()
    app.config.update(DEFAULT_CONFIG)
    base_dir = os.path.abspath(os.path.dirname(__file__))
    app.config["SQLALCHEMY_DATABASE_URI"] = os.environ.get(
        "DATABASE_URL", f"sqlite:///{os.path.join(base_dir, 'bookstore.db')}"
    )
    for key in ENV_KEYS:
        if key in os.environ:
            app.config[key] = os.environ[key]
    for key in ENV_MONEY_KEYS:
        if key in os.environ:
            app.config[key] = Decimal(os.environ[key])
    if config:
        app.config.update(config)


def create_app(config=None):
    app = Flask(__name__)
    load_config(app, config)

    db.init_app(app)

    # Register blueprints (import inside to avoid circular imports)
    from shop import shop_bp
    from admin import admin_bp
    from content import register_template_helpers
    app.register_blueprint(shop_bp)          # storefront at /
    app.register_blueprint(admin_bp, url_prefix="/admin")
    register_template_helpers(app)

    # Ensure tables exist at startup
    with app.app_context():
        db.create_all()
        if app.config["SEED_DEMO_DATA"]:
            seed_if_empty()

    log.info("app_created", database=app.config["SQLALCHEMY_DATABASE_URI"].split("://")[0])
    return app


# Local dev entrypoint
if __name__ == "__main__":
    app = create_app()
    app.run(debug=True)
