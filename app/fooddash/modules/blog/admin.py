from __future__ import annotations

import mimetypes

from flask import Blueprint, abort, current_app, request, send_file

from app.fooddash.audit import record_event
from app.fooddash.db import db_session
from app.fooddash.modules.blog.ai_assistant import ai_client_from_config
from app.fooddash.modules.blog.models import BlogArticle, BlogCategory
from app.fooddash.modules.blog.service import (
    ARTICLE_STATUSES,
    delete_article,
    published_articles,
    register_view,
    save_article,
    save_category,
    serialize_article,
    serialize_category,
    set_article_status,
)
from app.fooddash.rbac import current_user, require_permission
from app.fooddash.storage import storage_from_config, store_upload
from app.fooddash.utils import page_args, request_payload

bp = Blueprint("blog", __name__)

IMAGE_TYPES = ("image/jpeg", "image/png", "image/webp", "image/gif")
MAX_IMAGE_BYTES = 5 * 1024 * 1024


# ---------- Public ----------
@bp.get("/blog/categories")
def blog_categories():
    s = db_session()
    rows = (
        s.query(BlogCategory)
        .filter(BlogCategory.is_active.is_(True))
        .order_by(BlogCategory.display_order.asc(), BlogCategory.name.asc())
        .all()
    )
    return {"categories": [serialize_category(c) for c in rows]}


@bp.get("/blog/articles")
def blog_articles():
    s = db_session()
    page, per_page = page_args()
    rows = published_articles(
        s,
        category_slug=(request.args.get("category") or "").strip() or None,
        tag=(request.args.get("tag") or "").strip() or None,
        search=(request.args.get("q") or "").strip() or None,
        language=(request.args.get("language") or "").strip() or None,
    )
    start = (page - 1) * per_page
    return {
        "articles": [serialize_article(a, include_content=False) for a in rows[start : start + per_page]],
        "total": len(rows),
        "page": page,
        "per_page": per_page,
    }


@bp.get("/blog/articles/<slug>")
def blog_article_read(slug: str):
    s = db_session()
    a = s.query(BlogArticle).filter(BlogArticle.slug == slug, BlogArticle.status == "published").one_or_none()
    if not a:
        abort(404)
    register_view(s, a)
    s.commit()
    return {"article": serialize_article(a)}


@bp.get("/blog/media/<path:key>")
def blog_media(key: str):
    if not key.startswith("blog/"):
        abort(404)
    storage = storage_from_config(current_app.config)
    if not storage.exists(key):
        abort(404)
    return send_file(
        storage.open(key),
        mimetype=mimetypes.guess_type(key)[0] or "application/octet-stream",
        as_attachment=False,
        download_name=key.rsplit("/", 1)[-1],
        max_age=3600,
    )


# ---------- Admin ----------
@bp.get("/admin/blog/articles")
@require_permission("blog.manage")
def admin_articles_list():
    s = db_session()
    page, per_page = page_args()
    q = s.query(BlogArticle)
    status = (request.args.get("status") or "").strip()
    if status:
        if status not in ARTICLE_STATUSES:
            raise ValueError(f"Invalid status. Must be one of: {', '.join(ARTICLE_STATUSES)}")
        q = q.filter(BlogArticle.status == status)
    search = (request.args.get("q") or "").strip()
    if search:
        q = q.filter(BlogArticle.title.ilike(f"%{search}%"))
    total = q.count()
    rows = q.order_by(BlogArticle.updated_at.desc()).offset((page - 1) * per_page).limit(per_page).all()
    return {
        "articles": [serialize_article(a, include_content=False) for a in rows],
        "total": total,
        "page": page,
        "per_page": per_page,
    }


def _article(article_id: int) -> BlogArticle:
    a = db_session().get(BlogArticle, article_id)
    if not a:
        abort(404)
    return a


@bp.get("/admin/blog/articles/<int:article_id>")
@require_permission("blog.manage")
def admin_article_detail(article_id: int):
    return {"article": serialize_article(_article(article_id))}


@bp.post("/admin/blog/articles")
@require_permission("blog.manage")
def admin_article_create():
    s = db_session()
    a = save_article(s, request_payload(), current_user())
    s.commit()
    return {"article": serialize_article(a)}, 201


@bp.patch("/admin/blog/articles/<int:article_id>")
@require_permission("blog.manage")
def admin_article_update(article_id: int):
    s = db_session()
    a = save_article(s, request_payload(), current_user(), _article(article_id))
    s.commit()
    return {"article": serialize_article(a)}


@bp.delete("/admin/blog/articles/<int:article_id>")
@require_permission("blog.manage")
def admin_article_delete(article_id: int):
    s = db_session()
    delete_article(s, _article(article_id), current_user())
    s.commit()
    return {"ok": True}


@bp.post("/admin/blog/articles/<int:article_id>/publish")
@require_permission("blog.manage")
def admin_article_publish(article_id: int):
    s = db_session()
    a = set_article_status(s, _article(article_id), "published", current_user())
    s.commit()
    return {"article": serialize_article(a)}


@bp.post("/admin/blog/articles/<int:article_id>/unpublish")
@require_permission("blog.manage")
def admin_article_unpublish(article_id: int):
    s = db_session()
    target = (request_payload().get("status") or "draft").strip()
    if target not in ("draft", "archived"):
        raise ValueError("status must be draft or archived.")
    a = set_article_status(s, _article(article_id), target, current_user())
    s.commit()
    return {"article": serialize_article(a)}


@bp.post("/admin/blog/images")
@require_permission("blog.manage")
def admin_blog_image_upload():
    storage = storage_from_config(current_app.config)
    doc = store_upload(
        storage,
        request.files.get("file"),
        "blog",
        max_bytes=MAX_IMAGE_BYTES,
        allowed_types=IMAGE_TYPES,
        default_name="image.jpg",
    )
    return {"image": doc}, 201


@bp.post("/admin/blog/ai")
@require_permission("blog.manage")
def admin_blog_ai():
    payload = request_payload()
    client = ai_client_from_config(current_app.config)
    result = client.run(
        (payload.get("action") or "").strip(),
        content=payload.get("content"),
        title=payload.get("title"),
        language=payload.get("language"),
    )
    return {"result": result}


@bp.get("/admin/blog/categories")
@require_permission("blog.manage")
def admin_categories_list():
    s = db_session()
    rows = s.query(BlogCategory).order_by(BlogCategory.display_order.asc(), BlogCategory.name.asc()).all()
    return {"categories": [serialize_category(c) for c in rows]}


@bp.post("/admin/blog/categories")
@require_permission("blog.manage")
def admin_category_create():
    s = db_session()
    c = save_category(s, request_payload(), current_user())
    s.commit()
    return {"category": serialize_category(c)}, 201


@bp.patch("/admin/blog/categories/<int:category_id>")
@require_permission("blog.manage")
def admin_category_update(category_id: int):
    s = db_session()
    c = s.get(BlogCategory, category_id)
    if not c:
        abort(404)
    save_category(s, request_payload(), current_user(), c)
    s.commit()
    return {"category": serialize_category(c)}


@bp.delete("/admin/blog/categories/<int:category_id>")
@require_permission("blog.manage")
def admin_category_delete(category_id: int):
    s = db_session()
    c = s.get(BlogCategory, category_id)
    if not c:
        abort(404)
    record_event(s, actor=current_user(), action="blog.category.delete", entity_type="blog_category", entity_id=str(c.id))
    s.query(BlogArticle).filter(BlogArticle.category_id == c.id).update({BlogArticle.category_id: None})
    s.delete(c)
    s.commit()
    return {"ok": True}
