from __future__ import annotations

import math
import re
import unicodedata
from datetime import datetime
from typing import TYPE_CHECKING, Any

from sqlalchemy import or_, update

from app.fooddash.audit import record_event
from app.fooddash.utils import clean_str, iso, parse_bool, parse_int

if TYPE_CHECKING:
    from sqlalchemy.orm import Session

    from app.fooddash.models import User
    from app.fooddash.modules.blog.models import BlogArticle, BlogCategory

ARTICLE_STATUSES = ("draft", "published", "archived")
LANGUAGES = ("fr", "en")
WORDS_PER_MINUTE = 200
_NON_SLUG = re.compile(r"[^a-z0-9]+")
_WORD = re.compile(r"\S+")


def slugify(text: str) -> str:
    """'Crème brûlée à Brazzaville!' -> 'creme-brulee-a-brazzaville'."""
    normalized = unicodedata.normalize("NFKD", text or "").encode("ascii", "ignore").decode("ascii")
    return _NON_SLUG.sub("-", normalized.lower()).strip("-")


def unique_slug(s: "Session", model, text: str, *, exclude_id: int | None = None) -> str:
    base = slugify(text) or "article"
    q = s.query(model.slug).filter(or_(model.slug == base, model.slug.like(f"{base}-%")))
    if exclude_id is not None:
        q = q.filter(model.id != exclude_id)
    taken = {row[0] for row in q.all()}
    if base not in taken:
        return base
    n = 2
    while f"{base}-{n}" in taken:
        n += 1
    return f"{base}-{n}"


def reading_time(content: str | None) -> int:
    words = len(_WORD.findall(content or ""))
    return max(1, math.ceil(words / WORDS_PER_MINUTE))


def _parse_tags(raw: Any) -> list[str]:
    if raw is None:
        return []
    if isinstance(raw, str):
        raw = raw.split(",")
    if not isinstance(raw, list):
        raise ValueError("tags must be a list or a comma-separated string.")
    out: list[str] = []
    for t in raw:
        tag = clean_str(t)
        if tag and tag.lower() not in (x.lower() for x in out):
            out.append(tag)
    return out


# ---------- Categories ----------
def save_category(s: "Session", payload: dict, user: "User", category: "BlogCategory | None" = None) -> "BlogCategory":
    from app.fooddash.modules.blog.models import BlogCategory

    creating = category is None
    name = clean_str(payload.get("name")) if (creating or "name" in payload) else category.name
    if not name:
        raise ValueError("Name is required.")
    if creating:
        category = BlogCategory(name=name, slug=unique_slug(s, BlogCategory, name))
        s.add(category)
    elif name != category.name:
        category.name = name
        category.slug = unique_slug(s, BlogCategory, name, exclude_id=category.id)
    if "description" in payload:
        category.description = clean_str(payload.get("description"))
    if "display_order" in payload:
        category.display_order = parse_int(payload.get("display_order"), field="display_order") or 0
    if "is_active" in payload:
        category.is_active = parse_bool(payload.get("is_active"), default=True)
    category.updated_at = datetime.utcnow()
    s.flush()
    record_event(
        s,
        actor=user,
        action="blog.category.create" if creating else "blog.category.update",
        entity_type="blog_category",
        entity_id=str(category.id),
        metadata={"name": category.name, "slug": category.slug},
    )
    return category


# ---------- Articles ----------
def save_article(s: "Session", payload: dict, user: "User", article: "BlogArticle | None" = None) -> "BlogArticle":
    """
    Create or partially update an article. Status changes go through
    publish/unpublish. Every field is validated before the article is touched,
    so a rejected save leaves nothing behind in the session.
    """
    from app.fooddash.modules.blog.models import BlogArticle, BlogCategory

    creating = article is None
    title = clean_str(payload.get("title")) if (creating or "title" in payload) else article.title
    if not title:
        raise ValueError("Title is required.")

    fields: dict[str, Any] = {"title": title}
    if creating or "content" in payload:
        fields["content"] = payload.get("content") or ""
        fields["reading_time_minutes"] = reading_time(fields["content"])
    for field in ("excerpt", "meta_title", "meta_description", "cover_image_key"):
        if field in payload:
            fields[field] = clean_str(payload.get(field))
    if "language" in payload or creating:
        language = (clean_str(payload.get("language")) or "fr").lower()
        if language not in LANGUAGES:
            raise ValueError(f"Invalid language. Must be one of: {', '.join(LANGUAGES)}")
        fields["language"] = language
    if "tags" in payload or creating:
        fields["tags"] = _parse_tags(payload.get("tags"))
    if "category_id" in payload:
        category_id = parse_int(payload.get("category_id"), field="category_id")
        if category_id is not None and not s.get(BlogCategory, category_id):
            raise ValueError("Unknown category.")
        fields["category_id"] = category_id

    if creating or "slug" in payload or title != article.title:
        requested = clean_str(payload.get("slug")) or title
        fields["slug"] = unique_slug(s, BlogArticle, requested, exclude_id=None if creating else article.id)

    if creating:
        article = BlogArticle(author_id=user.id, status="draft")
        s.add(article)
    for key, value in fields.items():
        setattr(article, key, value)
    article.updated_at = datetime.utcnow()
    s.flush()
    record_event(
        s,
        actor=user,
        action="blog.article.create" if creating else "blog.article.update",
        entity_type="blog_article",
        entity_id=str(article.id),
        metadata={"slug": article.slug, "status": article.status},
    )
    return article


def set_article_status(s: "Session", article: "BlogArticle", status: str, user: "User") -> "BlogArticle":
    if status not in ARTICLE_STATUSES:
        raise ValueError(f"Invalid status. Must be one of: {', '.join(ARTICLE_STATUSES)}")
    if status == "published" and not (article.content or "").strip():
        raise ValueError("Cannot publish an article without content.")
    old = article.status
    article.status = status
    if status == "published" and article.published_at is None:
        article.published_at = datetime.utcnow()
    article.updated_at = datetime.utcnow()
    record_event(
        s,
        actor=user,
        action=f"blog.article.{'publish' if status == 'published' else 'status'}",
        entity_type="blog_article",
        entity_id=str(article.id),
        metadata={"from": old, "to": status},
    )
    s.flush()
    return article


def delete_article(s: "Session", article: "BlogArticle", user: "User") -> None:
    record_event(
        s,
        actor=user,
        action="blog.article.delete",
        entity_type="blog_article",
        entity_id=str(article.id),
        metadata={"slug": article.slug, "title": article.title},
    )
    s.delete(article)
    s.flush()


def published_articles(
    s: "Session",
    *,
    category_slug: str | None = None,
    tag: str | None = None,
    search: str | None = None,
    language: str | None = None,
) -> list["BlogArticle"]:
    from app.fooddash.modules.blog.models import BlogArticle, BlogCategory

    q = s.query(BlogArticle).filter(BlogArticle.status == "published")
    if category_slug:
        q = q.join(BlogCategory, BlogCategory.id == BlogArticle.category_id).filter(BlogCategory.slug == category_slug)
    if language:
        q = q.filter(BlogArticle.language == language)
    if search:
        like = f"%{search}%"
        q = q.filter(or_(BlogArticle.title.ilike(like), BlogArticle.excerpt.ilike(like), BlogArticle.content.ilike(like)))
    rows = q.order_by(BlogArticle.published_at.desc(), BlogArticle.id.desc()).all()
    if tag:
        wanted = tag.strip().lower()
        rows = [a for a in rows if wanted in (t.lower() for t in (a.tags or []))]
    return rows


def register_view(s: "Session", article: "BlogArticle") -> None:
    from app.fooddash.modules.blog.models import BlogArticle

    s.execute(update(BlogArticle).where(BlogArticle.id == article.id).values(view_count=BlogArticle.view_count + 1))
    s.refresh(article)


def serialize_category(c: "BlogCategory") -> dict[str, Any]:
    return {
        "id": c.id,
        "name": c.name,
        "slug": c.slug,
        "description": c.description,
        "display_order": c.display_order,
        "is_active": bool(c.is_active),
    }


def serialize_article(a: "BlogArticle", *, include_content: bool = True) -> dict[str, Any]:
    data = {
        "id": a.id,
        "title": a.title,
        "slug": a.slug,
        "excerpt": a.excerpt,
        "cover_image_key": a.cover_image_key,
        "category": serialize_category(a.category) if a.category else None,
        "tags": list(a.tags or []),
        "language": a.language,
        "status": a.status,
        "meta_title": a.meta_title,
        "meta_description": a.meta_description,
        "author": a.author.full_name if a.author else None,
        "reading_time_minutes": a.reading_time_minutes,
        "view_count": a.view_count,
        "published_at": iso(a.published_at),
        "updated_at": iso(a.updated_at),
    }
    if include_content:
        data["content"] = a.content
    return data
