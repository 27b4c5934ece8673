import pytest

from app.fooddash.modules.blog.models import BlogArticle
from app.fooddash.modules.blog.service import (
    published_articles,
    reading_time,
    save_article,
    set_article_status,
    slugify,
    unique_slug,
)
from tests.conftest import login


def test_slugify():
    assert slugify("Crème brûlée à Brazzaville!") == "creme-brulee-a-brazzaville"
    assert slugify("  --Top 10   plats--  ") == "top-10-plats"
    assert slugify("") == ""


def test_reading_time():
    assert reading_time(None) == 1
    assert reading_time("mot " * 200) == 1
    assert reading_time("mot " * 201) == 2
    assert reading_time("mot " * 1000) == 5


def test_unique_slug_appends_counter(world, db):
    admin = world["admin"]
    first = save_article(db, {"title": "Le saka-saka", "content": "x"}, admin)
    second = save_article(db, {"title": "Le Saka saka", "content": "y"}, admin)
    third = save_article(db, {"title": "le saka-saka", "content": "z"}, admin)
    assert (first.slug, second.slug, third.slug) == ("le-saka-saka", "le-saka-saka-2", "le-saka-saka-3")
    # Re-saving an article keeps its own slug.
    assert unique_slug(db, BlogArticle, "Le saka-saka", exclude_id=first.id) == "le-saka-saka"


def test_save_article_validates(world, db):
    with pytest.raises(ValueError, match="Title"):
        save_article(db, {"title": "  "}, world["admin"])
    with pytest.raises(ValueError, match="language"):
        save_article(db, {"title": "Hello", "language": "de"}, world["admin"])
    with pytest.raises(ValueError, match="category"):
        save_article(db, {"title": "Hello", "category_id": 9999}, world["admin"])
    db.flush()
    assert db.query(BlogArticle).count() == 0

    a = save_article(db, {"title": "Hello", "tags": "Poisson, poisson,  Grillades ", "content": "mot " * 450}, world["admin"])
    assert a.status == "draft"
    assert a.tags == ["Poisson", "Grillades"]
    assert a.reading_time_minutes == 3


def test_publish_requires_content_and_stamps_once(world, db):
    a = save_article(db, {"title": "Vide"}, world["admin"])
    with pytest.raises(ValueError, match="without content"):
        set_article_status(db, a, "published", world["admin"])
    with pytest.raises(ValueError, match="Invalid status"):
        set_article_status(db, a, "live", world["admin"])

    save_article(db, {"content": "Enfin du contenu."}, world["admin"], a)
    set_article_status(db, a, "published", world["admin"])
    first_published = a.published_at
    assert first_published is not None

    set_article_status(db, a, "draft", world["admin"])
    set_article_status(db, a, "published", world["admin"])
    assert a.published_at == first_published


def test_published_articles_filters(world, db):
    admin = world["admin"]
    fish = save_article(db, {"title": "Poisson braisé", "content": "Le meilleur poisson", "tags": ["Poisson"]}, admin)
    stew = save_article(db, {"title": "Moambe", "content": "Sauce graine", "tags": ["Sauce"], "language": "en"}, admin)
    save_article(db, {"title": "Brouillon", "content": "pas encore"}, admin)
    set_article_status(db, fish, "published", admin)
    set_article_status(db, stew, "published", admin)
    db.flush()

    assert {a.id for a in published_articles(db)} == {fish.id, stew.id}
    assert [a.id for a in published_articles(db, tag="poisson")] == [fish.id]
    assert [a.id for a in published_articles(db, language="en")] == [stew.id]
    assert [a.id for a in published_articles(db, search="graine")] == [stew.id]


def test_blog_endpoints(world, client, db):
    h = {"X-CSRF-Token": login(client, "admin@example.com")}
    r = client.post("/api/admin/blog/articles", json={"title": "Où manger à Pointe-Noire", "content": "Bonnes adresses."}, headers=h)
    assert r.status_code == 201
    article = r.json["article"]
    assert article["slug"] == "ou-manger-a-pointe-noire"

    assert client.get(f"/api/blog/articles/{article['slug']}").status_code == 404
    r = client.post(f"/api/admin/blog/articles/{article['id']}/publish", headers=h)
    assert r.status_code == 200
    assert r.json["article"]["status"] == "published"

    client.post("/api/auth/logout", headers=h)
    r = client.get(f"/api/blog/articles/{article['slug']}")
    assert r.status_code == 200
    assert r.json["article"]["view_count"] == 1
    assert client.get("/api/blog/articles").json["total"] == 1


def test_rejected_update_leaves_article_untouched(world, db):
    a = save_article(db, {"title": "Maboké de poisson", "content": "x"}, world["admin"])
    with pytest.raises(ValueError, match="language"):
        save_article(db, {"title": "Autre titre", "content": "y", "language": "de"}, world["admin"], a)
    assert (a.title, a.content, a.slug) == ("Maboké de poisson", "x", "maboke-de-poisson")
