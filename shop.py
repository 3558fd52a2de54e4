# shop.py
from flask import (
    Blueprint, render_template, redirect, url_for, session, request, flash, abort,
    current_app, jsonify,
)
from sqlalchemy import func

import structlog

from core import (
    db, Book, BookFormat, Blog, BlogComment, Order, FORMAT_TYPES, LANGUAGES, FONT_SIZES,
)
from checkout import (
    CheckoutSession, BookSnapshot, ShippingDetails, Step, FIELD_LABELS,
    handoff_message, handoff_url,
)
from content import active_slides, page_content
from pricing import ShippingRates, quote
from store import Ok, insert_order, load_site_settings

log = structlog.get_logger()

shop_bp = Blueprint("shop", __name__)

KIND_TITLES = {
    "physical": "Physical Books",
    "ebook": "Free Ebooks",
    "audiobook": "Free Audiobooks",
}

ORDER_FAILED_MSG = "We could not place your order. Please try again."


# --- Helpers (storefront-specific) ---
def shipping_rates():
    return ShippingRates.from_config(current_app.config)


def books_with_format(kind, q=""):
    query = Book.query.join(BookFormat).filter(BookFormat.format_type == kind)
    if q:
        like = f"%{q.lower()}%"
        query = query.filter(
            func.lower(Book.title).like(like)
            | func.lower(Book.author).like(like)
            | func.lower(Book.description).like(like)
        )
    return query.distinct().order_by(Book.created_at.desc(), Book.id.desc()).all()


def load_checkout(book_id):
    book = db.get_or_404(Book, book_id)
    flows = session.get("checkout", {})
    state = CheckoutSession.from_dict(BookSnapshot.from_book(book), flows.get(str(book_id)))
    return book, state


def save_checkout(book_id, state):
    flows = session.get("checkout", {})
    flows[str(book_id)] = state.to_dict()
    session["checkout"] = flows


def redirect_to_step(book_id, state):
    if state.step is Step.REVIEW:
        return redirect(url_for("shop.checkout_review", book_id=book_id))
    if state.step is Step.PAYMENT:
        return redirect(url_for("shop.checkout_payment", book_id=book_id))
    return redirect(url_for("shop.checkout", book_id=book_id))


# --- Routes: Storefront ---
@shop_bp.route("/")
def index():
    recent = Book.query.order_by(Book.created_at.desc(), Book.id.desc()).limit(8).all()
    return render_template("index.html", slides=active_slides(), books=recent)


@shop_bp.route("/books/<kind>")
def books(kind):
    if kind not in FORMAT_TYPES:
        abort(404)
    q = request.args.get("q", "").strip()
    return render_template(
        "books.html", kind=kind, title=KIND_TITLES[kind], q=q, books=books_with_format(kind, q)
    )


@shop_bp.route("/book/<slug>")
def book_detail(slug):
    bk = Book.query.filter_by(slug=slug).first_or_404()
    return render_template(
        "book_detail.html",
        book=bk,
        physical=bk.physical_format,
        ebooks=bk.formats_of("ebook"),
        audiobooks=bk.formats_of("audiobook"),
    )


@shop_bp.route("/download/<int:format_id>")
def download(format_id):
    fmt = db.get_or_404(BookFormat, format_id)
    if not fmt.is_free or not fmt.is_available or not fmt.file_url:
        abort(404)
    log.info("format_downloaded", format_id=fmt.id, book_id=fmt.book_id, format_type=fmt.format_type)
    return redirect(fmt.file_url)


@shop_bp.route("/audiobook/<int:format_id>")
def audiobook(format_id):
    fmt = db.get_or_404(BookFormat, format_id)
    if fmt.format_type != "audiobook":
        abort(404)
    return render_template("audiobook.html", fmt=fmt, book=fmt.book, chapters=fmt.chapters)


# --- Routes: Checkout ---
@shop_bp.route("/checkout/<int:book_id>", methods=["GET", "POST"])
def checkout(book_id):
    bk, state = load_checkout(book_id)
    if state.step is Step.UNAVAILABLE:
        return render_template("checkout_unavailable.html", book=bk)

    if request.method == "POST":
        if state.step is not Step.SHIPPING:
            return redirect_to_step(book_id, state)
        missing = state.submit_shipping(ShippingDetails.from_mapping(request.form))
        save_checkout(book_id, state)
        if missing:
            flash("Please fill in: " + ", ".join(FIELD_LABELS[m] for m in missing) + ".", "error")
            return redirect(url_for("shop.checkout", book_id=book_id))
        return redirect(url_for("shop.checkout_review", book_id=book_id))

    if state.step is Step.PAYMENT:
        # A finished checkout starts over for a new order.
        state = CheckoutSession.start(bk)
        save_checkout(book_id, state)
    elif state.step is Step.REVIEW:
        return redirect_to_step(book_id, state)

    rates = shipping_rates()
    preview = quote(state.snapshot.unit_price, state.details.shipping_state, rates)
    return render_template(
        "checkout_shipping.html",
        book=bk, details=state.details, labels=FIELD_LABELS, preview=preview, rates=rates,
    )


@shop_bp.route("/checkout/<int:book_id>/quote")
def checkout_quote(book_id):
    bk = db.get_or_404(Book, book_id)
    snapshot = BookSnapshot.from_book(bk)
    if snapshot is None:
        return jsonify({"error": "This book is not available for purchase."}), 404
    q = quote(snapshot.unit_price, request.args.get("state", ""), shipping_rates())
    return jsonify(q.as_dict())


@shop_bp.route("/checkout/<int:book_id>/review", methods=["GET", "POST"])
def checkout_review(book_id):
    bk, state = load_checkout(book_id)
    if state.step is not Step.REVIEW:
        return redirect_to_step(book_id, state)

    if request.method == "POST":
        action = request.form.get("action")
        if action == "back":
            state.back()
            save_checkout(book_id, state)
            return redirect(url_for("shop.checkout", book_id=book_id))
        if action == "proceed":
            result = state.proceed(shipping_rates(), insert_order)
            save_checkout(book_id, state)
            if not isinstance(result, Ok):
                flash(ORDER_FAILED_MSG, "error")
                return redirect(url_for("shop.checkout_review", book_id=book_id))
            return redirect(url_for("shop.checkout_payment", book_id=book_id))
        abort(400)

    return render_template("checkout_review.html", book=bk, summary=state.summary(shipping_rates()))


@shop_bp.route("/checkout/<int:book_id>/payment")
def checkout_payment(book_id):
    bk, state = load_checkout(book_id)
    if state.step is not Step.PAYMENT:
        return redirect_to_step(book_id, state)
    order = Order.query.filter_by(order_number=state.order_number).first_or_404()
    settings = load_site_settings()
    message = handoff_message(order.book_title, order.book_author, order.total_amount)
    whatsapp_url = handoff_url(
        current_app.config["MESSAGING_HOST"],
        settings.whatsapp_number if settings else None,
        message,
    )
    return render_template(
        "checkout_payment.html", book=bk, order=order, settings=settings, whatsapp_url=whatsapp_url
    )


# --- Routes: Blog & pages ---
@shop_bp.route("/blog")
def blog_list():
    posts = Blog.query.filter_by(is_published=True).order_by(Blog.created_at.desc(), Blog.id.desc()).all()
    return render_template("blog_list.html", posts=posts)


@shop_bp.route("/blog/<slug>", methods=["GET", "POST"])
def blog_detail(slug):
    post = Blog.query.filter_by(slug=slug, is_published=True).first_or_404()
    if request.method == "POST":
        user_name = request.form.get("user_name", "").strip()
        user_email = request.form.get("user_email", "").strip()
        comment = request.form.get("comment", "").strip()
        if not user_name or not user_email or not comment:
            flash("Please provide your name, email and a comment.", "error")
            return redirect(url_for("shop.blog_detail", slug=slug))
        db.session.add(BlogComment(
            blog_id=post.id, user_name=user_name, user_email=user_email, comment=comment, is_approved=False
        ))
        db.session.commit()
        log.info("comment_submitted", blog_id=post.id)
        flash("Comment submitted! It will appear after admin approval.", "success")
        return redirect(url_for("shop.blog_detail", slug=slug))
    comments = (
        BlogComment.query.filter_by(blog_id=post.id, is_approved=True)
        .order_by(BlogComment.created_at.desc(), BlogComment.id.desc())
        .all()
    )
    return render_template("blog_detail.html", post=post, comments=comments)


@shop_bp.route("/page/<page_key>")
def page(page_key):
    content = page_content(page_key)
    if content is None:
        abort(404)
    return render_template("page.html", page=content)


@shop_bp.route("/language/<code>")
def set_language(code):
    if code in LANGUAGES:
        session["language"] = code
    return redirect(request.referrer or url_for("shop.index"))


@shop_bp.route("/font-size/<size>")
def set_font_size(size):
    if size in FONT_SIZES:
        session["font_size"] = size
    return redirect(request.referrer or url_for("shop.index"))
