# backup.py
"""JSON export/import of the catalog and of site settings + carousel."""
from datetime import date, datetime
from decimal import Decimal
import json

import structlog
from sqlalchemy.exc import SQLAlchemyError

from core import db, Book, BookFormat, AudiobookChapter, SiteSettings, HeroSlide, slugify
from pricing import to_price

log = structlog.get_logger()

SKIP_COLUMNS = {"id", "book_id", "created_at", "updated_at"}


class BackupError(Exception):
    pass


def _plain(value):
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    return value


def row_to_dict(obj, skip=()):
    return {
        col.name: _plain(getattr(obj, col.name))
        for col in obj.__table__.columns
        if col.name not in skip
    }


def _columns(model, data, skip=SKIP_COLUMNS):
    """Keep only known, writable columns from an imported record."""
    names = {col.name for col in model.__table__.columns} - set(skip)
    return {k: v for k, v in data.items() if k in names}


def _format_values(data):
    values = _columns(BookFormat, data)
    if values.get("price") is not None:
        values["price"] = to_price(values["price"])
    return values


def _merge_chapters(fmt, chapters):
    """Upsert chapters by number; chapters missing from the file are kept."""
    by_number = {c.chapter_number: c for c in fmt.chapters}
    for data in chapters:
        if not isinstance(data, dict):
            continue
        values = _columns(AudiobookChapter, data, skip=SKIP_COLUMNS | {"format_id"})
        chapter = by_number.get(values.get("chapter_number"))
        if chapter is None:
            chapter = AudiobookChapter(**values)
            fmt.chapters.append(chapter)
            by_number[chapter.chapter_number] = chapter
        else:
            for key, val in values.items():
                setattr(chapter, key, val)


def _merge_formats(bk, formats):
    """Update formats matched on (format_type, file_url) in place and add the rest."""
    existing = {(f.format_type, f.file_url): f for f in bk.formats}
    for data in formats:
        if not isinstance(data, dict):
            continue
        values = _format_values(data)
        key = (values.get("format_type"), values.get("file_url"))
        fmt = existing.get(key)
        if fmt is None:
            fmt = BookFormat(**values)
            bk.formats.append(fmt)
            existing[key] = fmt
        else:
            for name, val in values.items():
                setattr(fmt, name, val)
        _merge_chapters(fmt, data.get("chapters") or [])


def export_books():
    books = Book.query.order_by(Book.title).all()
    out = []
    for bk in books:
        item = row_to_dict(bk)
        item["formats"] = []
        for f in bk.formats:
            fmt = row_to_dict(f, skip={"book_id"})
            fmt["chapters"] = [row_to_dict(c, skip={"id", "format_id"}) for c in f.chapters]
            item["formats"].append(fmt)
        out.append(item)
    return out


def import_books(records):
    """Insert or update books matched on SKU, merging their formats and chapters.

    Nothing already in the catalog is deleted by an import.
    """
    if not isinstance(records, list):
        raise BackupError("Expected a list of books.")
    count = 0
    try:
        for rec in records:
            if not isinstance(rec, dict) or not rec.get("title") or not rec.get("author"):
                raise BackupError("Every book needs a title and an author.")
            formats = rec.get("formats") or []
            values = _columns(Book, rec)
            values.setdefault("slug", slugify(rec["title"]))
            sku = values.get("sku")
            bk = Book.query.filter_by(sku=sku).first() if sku else None
            if bk is None:
                bk = Book(**values)
                db.session.add(bk)
            else:
                for key, val in values.items():
                    setattr(bk, key, val)
            _merge_formats(bk, formats)
            count += 1
        db.session.commit()
    except (SQLAlchemyError, TypeError, ValueError) as exc:
        db.session.rollback()
        log.error("book_import_failed", error=str(exc))
        raise BackupError(f"Import failed: {exc}") from exc
    except BackupError:
        db.session.rollback()
        raise
    log.info("books_imported", count=count)
    return count


def export_site_settings():
    return {
        "settings": [row_to_dict(s) for s in SiteSettings.query.all()],
        "carousel": [row_to_dict(c, skip={"id"}) for c in HeroSlide.query.order_by(HeroSlide.order_index)],
    }


def import_site_settings(data):
    if not isinstance(data, dict):
        raise BackupError("Expected an object with settings and carousel.")
    try:
        for rec in data.get("settings") or []:
            settings = db.session.get(SiteSettings, rec.get("id", 1)) or SiteSettings(id=rec.get("id", 1))
            for key, val in _columns(SiteSettings, rec, skip={"id"}).items():
                setattr(settings, key, val)
            db.session.add(settings)
        carousel = data.get("carousel") or []
        if carousel:
            HeroSlide.query.delete()
            for rec in carousel:
                db.session.add(HeroSlide(**_columns(HeroSlide, rec)))
        db.session.commit()
    except (SQLAlchemyError, TypeError, AttributeError) as exc:
        db.session.rollback()
        log.error("settings_import_failed", error=str(exc))
        raise BackupError(f"Import failed: {exc}") from exc
    log.info("site_settings_imported", carousel=len(carousel))


def parse_upload(file_storage):
    try:
        return json.load(file_storage.stream)
    except (ValueError, UnicodeDecodeError) as exc:
        raise BackupError("The file is not valid JSON.") from exc


def dump(data):
    return json.dumps(data, indent=2, ensure_ascii=False)
