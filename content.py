# content.py
"""Translations, menus, page text and other site content used by templates."""
from flask import session, g
from markdown_it import MarkdownIt
from markupsafe import Markup

from core import (
    UiTranslation, Genre, MenuSetting, HeroSlide, PageContent,
    LANGUAGES, FONT_SIZES,
)
from store import load_site_settings


def current_language():
    lang = session.get("language", "en")
    return lang if lang in LANGUAGES else "en"


def current_font_size():
    size = session.get("font_size", "medium")
    return size if size in FONT_SIZES else "medium"


def translation_table():
    # One query per request; templates call t() many times.
    if "translations" not in g:
        g.translations = {row.key: row for row in UiTranslation.query.all()}
    return g.translations


def translate(key, language, table):
    """Text for ``key`` in ``language``; unknown keys render as the key itself."""
    row = table.get(key)
    if row is None:
        return key
    if language == "ta":
        return row.tamil or row.english
    return row.english


def translate_genre(name_en, language):
    if language == "en" or not name_en:
        return name_en
    genre = Genre.query.filter_by(name_en=name_en).first()
    return genre.name_ta if genre and genre.name_ta else name_en


def visible_menus():
    return (
        MenuSetting.query.filter_by(is_visible=True)
        .order_by(MenuSetting.order_index)
        .all()
    )


def active_slides():
    return HeroSlide.query.filter_by(is_active=True).order_by(HeroSlide.order_index).all()


def page_content(page_key):
    return PageContent.query.filter_by(page_key=page_key).first()


# CommonMark plus tables and strikethrough; raw HTML in bodies is escaped.
_markdown = MarkdownIt("js-default")


def render_content(text):
    """Render a markdown page or blog body to HTML."""
    if not text:
        return Markup("")
    return Markup(_markdown.render(text))


def register_template_helpers(app):
    app.add_template_filter(render_content, "render_content")

    @app.template_filter("money")
    def money(value):
        return f"Rs.{value:.2f}"

    @app.context_processor
    def inject_site():
        lang = current_language()
        return {
            "t": lambda key: translate(key, lang, translation_table()),
            "translate_genre": lambda name: translate_genre(name, lang),
            "language": lang,
            "font_size": current_font_size(),
            "menus": visible_menus(),
            "site": load_site_settings(),
        }
