# admin.py
from flask import (
    Blueprint, render_template, redirect, url_for, session, request, flash, abort,
    current_app, Response,
)
from datetime import date
from dataclasses import dataclass

import structlog
from sqlalchemy.exc import IntegrityError

from core import (
    db, Book, BookFormat, AudiobookChapter, Order, SiteSettings, Blog, BlogComment,
    PageContent, UiTranslation, MenuSetting, HeroSlide, Genre,
    FORMAT_TYPES, ORDER_STATUSES, PAYMENT_STATUSES, slugify,
)
from forms import Field, parse_form, initial_values
from orders import (
    ORDER_ACTIONS, StaleOrderError, InvalidStatusError, apply_action, set_status, set_notes,
    orders_by_status,
)
import backup

log = structlog.get_logger()

admin_bp = Blueprint("admin", __name__)

BOOK_FIELDS = [
    Field("title", "Title", required=True),
    Field("author", "Author", required=True),
    Field("slug", "Slug"),
    Field("description", "Description", "textarea"),
    Field("publisher", "Publisher"),
    Field("isbn", "ISBN", blank=None),
    Field("sku", "SKU", blank=None),
    Field("genre", "Genre", blank=None),
    Field("published_date", "Published", blank=None),
    Field("cover_image_url", "Cover image URL", "url"),
]

FORMAT_FIELDS = [
    Field("format_type", "Format", "select", required=True, choices=tuple(FORMAT_TYPES)),
    Field("price", "Price", "money", blank=0),
    Field("stock_quantity", "Stock", "int", blank=None),
    Field("file_url", "File URL", "url", blank=None),
    Field("file_format", "File format", blank=None),
    Field("file_size", "File size (bytes)", "int", blank=None),
    Field("license_info", "License", blank=None),
    Field("is_available", "Available", "bool"),
]

CHAPTER_FIELDS = [
    Field("chapter_number", "Chapter number", "int", required=True),
    Field("title", "Title", required=True),
    Field("audio_url", "Audio URL", "url", required=True),
    Field("duration_minutes", "Duration (minutes)", "int", blank=None),
]

SETTINGS_FIELDS = [
    Field("site_name", "Site name", required=True),
    Field("whatsapp_number", "WhatsApp number", blank=None),
    Field("payment_qr_code_url", "Payment QR code URL", "url", blank=None),
    Field("payment_instructions", "Payment instructions", "textarea", blank=None),
    Field("contact_email", "Contact email", blank=None),
    Field("contact_phone", "Contact phone", blank=None),
    Field("address", "Address", "textarea", blank=None),
]


@dataclass(frozen=True)
class Resource:
    """A table edited through the generic list/form screens."""
    model: type
    title: str
    fields: list
    columns: tuple
    order_by: str
    slug_from: str = ""


CONTENT = {
    "blogs": Resource(Blog, "Blog posts", [
        Field("title", "Title", required=True),
        Field("slug", "Slug"),
        Field("author", "Author"),
        Field("excerpt", "Excerpt", "textarea"),
        Field("content", "Content", "textarea"),
        Field("cover_image_url", "Cover image URL", "url", blank=None),
        Field("is_published", "Published", "bool"),
    ], ("title", "author", "is_published"), "created_at", slug_from="title"),
    "pages": Resource(PageContent, "Pages", [
        Field("page_key", "Page key", required=True),
        Field("title", "Title", required=True),
        Field("content", "Content", "textarea"),
    ], ("page_key", "title"), "page_key"),
    "translations": Resource(UiTranslation, "UI translations", [
        Field("key", "Key", required=True),
        Field("english", "English", required=True),
        Field("tamil", "Tamil"),
        Field("category", "Category", blank="general"),
    ], ("key", "english", "tamil", "category"), "category"),
    "genres": Resource(Genre, "Genres", [
        Field("name_en", "English name", required=True),
        Field("name_ta", "Tamil name"),
    ], ("name_en", "name_ta"), "name_en"),
    "carousel": Resource(HeroSlide, "Hero carousel", [
        Field("title", "Title", required=True),
        Field("subtitle", "Subtitle", blank=None),
        Field("image_url", "Image URL", "url", required=True),
        Field("link_url", "Link URL", "url", blank=None),
        Field("order_index", "Position", "int", blank=0),
        Field("is_active", "Active", "bool"),
    ], ("title", "order_index", "is_active"), "order_index"),
}


def require_admin():
    if session.get("is_admin"):
        return None
    return redirect(url_for("admin.admin_login"))


@admin_bp.before_request
def guard():
    if request.endpoint in ("admin.admin_login", "admin.admin_logout"):
        return None
    return require_admin()


def commit_or_flash(message):
    """Commit; on a constraint violation roll back and flash ``message``."""
    try:
        db.session.commit()
    except IntegrityError as exc:
        db.session.rollback()
        log.warning("admin_write_rejected", error=str(exc.orig))
        flash(message, "error")
        return False
    return True


def render_form(title, fields, values, action, back):
    return render_template(
        "admin_form.html", title=title, fields=fields, values=values, action=action, back=back
    )


# --- Session ---
@admin_bp.route("/login", methods=["GET", "POST"])
def admin_login():
    if request.method == "POST":
        pwd = request.form.get("password", "")
        if pwd == current_app.config["ADMIN_PASSWORD"]:
            session["is_admin"] = True
            log.info("admin_logged_in")
            return redirect(url_for("admin.admin"))
        else:
            log.warning("admin_login_failed")
            flash("Incorrect password.", "error")
    return render_template("admin_login.html")


@admin_bp.route("/logout")
def admin_logout():
    session.pop("is_admin", None)
    flash("Logged out.", "success")
    return redirect(url_for("shop.index"))


# --- Books ---
@admin_bp.route("/")
def admin():
    books = Book.query.order_by(Book.title).all()
    return render_template("admin.html", books=books)


@admin_bp.route("/new", methods=["GET", "POST"])
def admin_new():
    if request.method == "POST":
        values, errors = parse_form(BOOK_FIELDS, request.form)
        if errors:
            flash(" ".join(errors), "error")
            return redirect(url_for("admin.admin_new"))
        values["slug"] = values["slug"] or slugify(values["title"])
        bk = Book(**values)
        db.session.add(bk)
        if not commit_or_flash("Slug or SKU already in use."):
            return redirect(url_for("admin.admin_new"))
        log.info("book_created", book_id=bk.id)
        flash("Book created.", "success")
        return redirect(url_for("admin.admin_edit", book_id=bk.id))
    return render_form("New book", BOOK_FIELDS, initial_values(BOOK_FIELDS),
                       url_for("admin.admin_new"), url_for("admin.admin"))


@admin_bp.route("/edit/<int:book_id>", methods=["GET", "POST"])
def admin_edit(book_id):
    bk = db.get_or_404(Book, book_id)
    if request.method == "POST":
        values, errors = parse_form(BOOK_FIELDS, request.form)
        if errors:
            flash(" ".join(errors), "error")
            return redirect(url_for("admin.admin_edit", book_id=bk.id))
        values["slug"] = values["slug"] or bk.slug
        for key, val in values.items():
            setattr(bk, key, val)
        if not commit_or_flash("Slug or SKU already in use."):
            return redirect(url_for("admin.admin_edit", book_id=bk.id))
        flash("Book updated.", "success")
        return redirect(url_for("admin.admin"))
    return render_template(
        "admin_book.html", book=bk, fields=BOOK_FIELDS, values=initial_values(BOOK_FIELDS, bk)
    )


@admin_bp.route("/delete/<int:book_id>", methods=["POST"])
def admin_delete(book_id):
    bk = db.get_or_404(Book, book_id)
    db.session.delete(bk)
    db.session.commit()
    log.info("book_deleted", book_id=book_id)
    flash("Book deleted.", "success")
    return redirect(url_for("admin.admin"))


# --- Formats ---
@admin_bp.route("/books/<int:book_id>/formats/new", methods=["GET", "POST"])
def format_new(book_id):
    bk = db.get_or_404(Book, book_id)
    if request.method == "POST":
        values, errors = parse_form(FORMAT_FIELDS, request.form)
        if errors:
            flash(" ".join(errors), "error")
            return redirect(url_for("admin.format_new", book_id=bk.id))
        bk.formats.append(BookFormat(**values))
        db.session.commit()
        flash("Format added.", "success")
        return redirect(url_for("admin.admin_edit", book_id=bk.id))
    return render_form(f"New format for {bk.title}", FORMAT_FIELDS,
                       dict(initial_values(FORMAT_FIELDS), is_available=True),
                       url_for("admin.format_new", book_id=bk.id),
                       url_for("admin.admin_edit", book_id=bk.id))


@admin_bp.route("/formats/<int:format_id>/edit", methods=["GET", "POST"])
def format_edit(format_id):
    fmt = db.get_or_404(BookFormat, format_id)
    if request.method == "POST":
        values, errors = parse_form(FORMAT_FIELDS, request.form)
        if errors:
            flash(" ".join(errors), "error")
            return redirect(url_for("admin.format_edit", format_id=fmt.id))
        for key, val in values.items():
            setattr(fmt, key, val)
        db.session.commit()
        flash("Format updated.", "success")
        return redirect(url_for("admin.admin_edit", book_id=fmt.book_id))
    return render_form(f"Edit {fmt.format_type} format", FORMAT_FIELDS,
                       initial_values(FORMAT_FIELDS, fmt),
                       url_for("admin.format_edit", format_id=fmt.id),
                       url_for("admin.admin_edit", book_id=fmt.book_id))


@admin_bp.route("/formats/<int:format_id>/delete", methods=["POST"])
def format_delete(format_id):
    fmt = db.get_or_404(BookFormat, format_id)
    book_id = fmt.book_id
    db.session.delete(fmt)
    db.session.commit()
    flash("Format deleted.", "success")
    return redirect(url_for("admin.admin_edit", book_id=book_id))


# --- Audiobook chapters ---
@admin_bp.route("/formats/<int:format_id>/chapters", methods=["GET", "POST"])
def chapters(format_id):
    fmt = db.get_or_404(BookFormat, format_id)
    if fmt.format_type != "audiobook":
        abort(404)
    if request.method == "POST":
        values, errors = parse_form(CHAPTER_FIELDS, request.form)
        if not errors and values["chapter_number"] < 1:
            errors.append("Chapter number must be positive.")
        if errors:
            flash(" ".join(errors), "error")
            return redirect(url_for("admin.chapters", format_id=fmt.id))
        fmt.chapters.append(AudiobookChapter(**values))
        if commit_or_flash(f"Chapter {values['chapter_number']} already exists."):
            flash("Chapter added.", "success")
        return redirect(url_for("admin.chapters", format_id=fmt.id))
    return render_template("admin_chapters.html", fmt=fmt, chapters=fmt.chapters, fields=CHAPTER_FIELDS,
                           values=initial_values(CHAPTER_FIELDS))


@admin_bp.route("/chapters/<int:chapter_id>/edit", methods=["GET", "POST"])
def chapter_edit(chapter_id):
    ch = db.get_or_404(AudiobookChapter, chapter_id)
    if request.method == "POST":
        values, errors = parse_form(CHAPTER_FIELDS, request.form)
        if not errors and values["chapter_number"] < 1:
            errors.append("Chapter number must be positive.")
        if errors:
            flash(" ".join(errors), "error")
            return redirect(url_for("admin.chapter_edit", chapter_id=ch.id))
        for key, val in values.items():
            setattr(ch, key, val)
        if commit_or_flash(f"Chapter {values['chapter_number']} already exists."):
            flash("Chapter updated.", "success")
        return redirect(url_for("admin.chapters", format_id=ch.format_id))
    return render_form(f"Edit chapter {ch.chapter_number}", CHAPTER_FIELDS,
                       initial_values(CHAPTER_FIELDS, ch),
                       url_for("admin.chapter_edit", chapter_id=ch.id),
                       url_for("admin.chapters", format_id=ch.format_id))


@admin_bp.route("/chapters/<int:chapter_id>/delete", methods=["POST"])
def chapter_delete(chapter_id):
    ch = db.get_or_404(AudiobookChapter, chapter_id)
    format_id = ch.format_id
    db.session.delete(ch)
    db.session.commit()
    flash("Chapter deleted.", "success")
    return redirect(url_for("admin.chapters", format_id=format_id))


# --- Orders ---
@admin_bp.route("/orders/")
def order_list():
    status = request.args.get("status", "all")
    if status != "all" and status not in ORDER_STATUSES:
        abort(404)
    return render_template("admin_orders.html", orders=orders_by_status(status), status=status,
                           statuses=ORDER_STATUSES)


@admin_bp.route("/orders/<int:order_id>")
def order_detail(order_id):
    order = db.get_or_404(Order, order_id)
    return render_template("admin_order.html", order=order, actions=ORDER_ACTIONS,
                           statuses=ORDER_STATUSES, payment_statuses=PAYMENT_STATUSES)


def _posted_version():
    try:
        return int(request.form.get("version", ""))
    except ValueError:
        abort(400)


@admin_bp.route("/orders/<int:order_id>/status", methods=["POST"])
def order_status(order_id):
    db.get_or_404(Order, order_id)
    version = _posted_version()
    try:
        if "action" in request.form:
            apply_action(order_id, version, request.form["action"])
        else:
            set_status(order_id, version, request.form.get("order_status", ""),
                       request.form.get("payment_status") or None)
    except StaleOrderError:
        flash("This order was changed by someone else. Review it and try again.", "error")
    except InvalidStatusError as exc:
        flash(str(exc), "error")
    else:
        flash("Order updated.", "success")
    return redirect(url_for("admin.order_detail", order_id=order_id))


@admin_bp.route("/orders/<int:order_id>/notes", methods=["POST"])
def order_notes(order_id):
    db.get_or_404(Order, order_id)
    try:
        set_notes(order_id, _posted_version(), request.form.get("admin_notes", ""))
    except StaleOrderError:
        flash("This order was changed by someone else. Review it and try again.", "error")
    else:
        flash("Notes saved.", "success")
    return redirect(url_for("admin.order_detail", order_id=order_id))


# --- Comments ---
@admin_bp.route("/comments/")
def comment_list():
    comments = BlogComment.query.order_by(BlogComment.created_at.desc(), BlogComment.id.desc()).all()
    return render_template("admin_comments.html", comments=comments)


@admin_bp.route("/comments/<int:comment_id>/toggle", methods=["POST"])
def comment_toggle(comment_id):
    c = db.get_or_404(BlogComment, comment_id)
    c.is_approved = not c.is_approved
    db.session.commit()
    log.info("comment_moderated", comment_id=c.id, approved=c.is_approved)
    flash("Comment approved." if c.is_approved else "Comment hidden.", "success")
    return redirect(url_for("admin.comment_list"))


@admin_bp.route("/comments/<int:comment_id>/delete", methods=["POST"])
def comment_delete(comment_id):
    c = db.get_or_404(BlogComment, comment_id)
    db.session.delete(c)
    db.session.commit()
    flash("Comment deleted.", "success")
    return redirect(url_for("admin.comment_list"))


# --- Site settings & menus ---
@admin_bp.route("/settings", methods=["GET", "POST"])
def site_settings():
    settings = db.session.get(SiteSettings, 1)
    if settings is None:
        settings = SiteSettings(id=1)
        db.session.add(settings)
    if request.method == "POST":
        values, errors = parse_form(SETTINGS_FIELDS, request.form)
        if errors:
            flash(" ".join(errors), "error")
            return redirect(url_for("admin.site_settings"))
        for key, val in values.items():
            setattr(settings, key, val)
        db.session.commit()
        flash("Settings saved.", "success")
        return redirect(url_for("admin.site_settings"))
    return render_form("Site settings", SETTINGS_FIELDS, initial_values(SETTINGS_FIELDS, settings),
                       url_for("admin.site_settings"), url_for("admin.admin"))


@admin_bp.route("/menus", methods=["GET", "POST"])
def menus():
    items = MenuSetting.query.order_by(MenuSetting.order_index).all()
    if request.method == "POST":
        for m in items:
            label = request.form.get(f"label-{m.id}", "").strip()
            if label:
                m.label = label
            try:
                m.order_index = int(request.form.get(f"order-{m.id}", m.order_index))
            except ValueError:
                flash(f"Invalid position for {m.menu_key}.", "error")
                db.session.rollback()
                return redirect(url_for("admin.menus"))
            m.is_visible = f"visible-{m.id}" in request.form
        db.session.commit()
        flash("Menu saved.", "success")
        return redirect(url_for("admin.menus"))
    return render_template("admin_menus.html", menus=items)


# --- Generic content tables ---
def content_resource(name):
    res = CONTENT.get(name)
    if res is None:
        abort(404)
    return res


@admin_bp.route("/content/<name>/")
def content_list(name):
    res = content_resource(name)
    rows = res.model.query.order_by(getattr(res.model, res.order_by)).all()
    return render_template("admin_content.html", name=name, res=res, rows=rows)


def _save_content(res, name, obj, values):
    if res.slug_from:
        values["slug"] = values.get("slug") or slugify(values[res.slug_from])
    for key, val in values.items():
        setattr(obj, key, val)
    db.session.add(obj)
    if not commit_or_flash(f"That {res.title.lower()} entry already exists."):
        return False
    log.info("content_saved", table=name, id=obj.id)
    flash("Saved.", "success")
    return True


@admin_bp.route("/content/<name>/new", methods=["GET", "POST"])
def content_new(name):
    res = content_resource(name)
    if request.method == "POST":
        values, errors = parse_form(res.fields, request.form)
        if errors:
            flash(" ".join(errors), "error")
            return redirect(url_for("admin.content_new", name=name))
        if not _save_content(res, name, res.model(), values):
            return redirect(url_for("admin.content_new", name=name))
        return redirect(url_for("admin.content_list", name=name))
    return render_form(f"New: {res.title}", res.fields, initial_values(res.fields),
                       url_for("admin.content_new", name=name), url_for("admin.content_list", name=name))


@admin_bp.route("/content/<name>/<int:item_id>/edit", methods=["GET", "POST"])
def content_edit(name, item_id):
    res = content_resource(name)
    obj = db.get_or_404(res.model, item_id)
    if request.method == "POST":
        values, errors = parse_form(res.fields, request.form)
        if errors:
            flash(" ".join(errors), "error")
            return redirect(url_for("admin.content_edit", name=name, item_id=item_id))
        if not _save_content(res, name, obj, values):
            return redirect(url_for("admin.content_edit", name=name, item_id=item_id))
        return redirect(url_for("admin.content_list", name=name))
    return render_form(f"Edit: {res.title}", res.fields, initial_values(res.fields, obj),
                       url_for("admin.content_edit", name=name, item_id=item_id),
                       url_for("admin.content_list", name=name))


@admin_bp.route("/content/<name>/<int:item_id>/delete", methods=["POST"])
def content_delete(name, item_id):
    res = content_resource(name)
    obj = db.get_or_404(res.model, item_id)
    db.session.delete(obj)
    db.session.commit()
    flash("Deleted.", "success")
    return redirect(url_for("admin.content_list", name=name))


# --- Backups ---
def json_download(data, prefix):
    filename = f"{prefix}-{date.today().isoformat()}.json"
    return Response(
        backup.dump(data),
        mimetype="application/json",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


@admin_bp.route("/backup")
def backup_page():
    return render_template("admin_backup.html")


@admin_bp.route("/backup/books.json")
def backup_books():
    return json_download(backup.export_books(), "books-backup")


@admin_bp.route("/backup/settings.json")
def backup_settings():
    return json_download(backup.export_site_settings(), "site-settings-backup")


@admin_bp.route("/backup/import/<kind>", methods=["POST"])
def backup_import(kind):
    upload = request.files.get("file")
    if upload is None or not upload.filename:
        flash("Choose a backup file first.", "error")
        return redirect(url_for("admin.backup_page"))
    try:
        data = backup.parse_upload(upload)
        if kind == "books":
            count = backup.import_books(data)
            flash(f"Successfully imported {count} books!", "success")
        elif kind == "settings":
            backup.import_site_settings(data)
            flash("Site settings imported successfully!", "success")
        else:
            abort(404)
    except backup.BackupError as exc:
        flash(str(exc), "error")
    return redirect(url_for("admin.backup_page"))
