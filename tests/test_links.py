"""
Tests for category paths, post/attachment URL parts and absolute URL building
"""

from datetime import datetime
from types import SimpleNamespace

import pytest

from errors import CategoryNotFound, ExcessiveDepth, InvalidUrlGeneration
from links import (
    attachment_url,
    category_url,
    ensure_absolute,
    find_category_by_id,
    parse_attachment_guid,
    post_url,
    post_url_values,
    resolve_category_path,
)
from models import Attachment, Category, Post, db


def _chain(*slugs):
    """Categories root-first; returns (leaf, lookup)."""
    by_id = {}
    parent_id = None
    for i, slug in enumerate(slugs, start=1):
        by_id[i] = SimpleNamespace(id=i, slug=slug, parent_id=parent_id)
        parent_id = i
    return by_id[len(slugs)], by_id.__getitem__


class TestResolveCategoryPath:
    def test_root_first(self):
        leaf, lookup = _chain("a", "b", "c")
        assert resolve_category_path(leaf, lookup) == ["a", "b", "c"]

    def test_root_only(self):
        leaf, lookup = _chain("solo")
        assert resolve_category_path(leaf, lookup) == ["solo"]

    def test_ten_levels_is_fine(self):
        slugs = [f"c{i}" for i in range(10)]
        leaf, lookup = _chain(*slugs)
        assert resolve_category_path(leaf, lookup) == slugs

    def test_eleven_levels_is_too_deep(self):
        leaf, lookup = _chain(*[f"c{i}" for i in range(11)])
        with pytest.raises(ExcessiveDepth):
            resolve_category_path(leaf, lookup)

    def test_eleven_ancestors_is_too_deep(self):
        leaf, lookup = _chain(*[f"c{i}" for i in range(12)])
        with pytest.raises(ExcessiveDepth):
            resolve_category_path(leaf, lookup)

    def test_custom_depth_limit(self):
        leaf, lookup = _chain("a", "b", "c")
        with pytest.raises(ExcessiveDepth):
            resolve_category_path(leaf, lookup, depth_limit=2)

    def test_cycle_stops_with_excessive_depth(self):
        a = SimpleNamespace(id=1, slug="a", parent_id=2)
        b = SimpleNamespace(id=2, slug="b", parent_id=1)
        lookup = {1: a, 2: b}.__getitem__
        with pytest.raises(ExcessiveDepth):
            resolve_category_path(a, lookup)

    def test_lookup_errors_propagate(self):
        leaf = SimpleNamespace(id=5, slug="orphan", parent_id=99)

        def lookup(category_id):
            raise CategoryNotFound(category_id)

        with pytest.raises(CategoryNotFound):
            resolve_category_path(leaf, lookup)


class TestParseAttachmentGuid:
    def test_valid_guid(self):
        assert parse_attachment_guid("/uploads/2024/03/photo.jpg") == {
            "year": "2024", "month": "03", "filename": "photo.jpg",
        }

    def test_dashes_and_underscores(self):
        parts = parse_attachment_guid("/uploads/2023/12/annual_report-v2.pdf")
        assert parts["filename"] == "annual_report-v2.pdf"

    @pytest.mark.parametrize("guid", [
        "/bad/path",
        "/uploads/24/03/photo.jpg",
        "/uploads/2024/3/photo.jpg",
        "/uploads/2024/03/sub/photo.jpg",
        "/uploads/2024/03/photo one.jpg",
        "uploads/2024/03/photo.jpg",
        "",
        None,
    ])
    def test_invalid_guid(self, guid):
        assert parse_attachment_guid(guid) is None


def test_post_url_values_are_zero_padded():
    post = SimpleNamespace(created=datetime(2023, 1, 5, 14, 30), slug="hello")
    assert post_url_values(post) == {
        "year": "2023", "month": "01", "day": "05", "slug": "hello",
    }


class TestEnsureAbsolute:
    def test_absolute(self):
        assert ensure_absolute("https://example.com/a") == "https://example.com/a"

    @pytest.mark.parametrize("link", ["/category/a", "example.com/a", "", None])
    def test_relative_is_fatal(self, link):
        with pytest.raises(InvalidUrlGeneration):
            ensure_absolute(link)


class TestUrlBuilders:
    def test_category_url(self, app):
        with app.test_request_context("/"):
            root = Category(name="A", slug="a")
            mid = Category(name="B", slug="b", parent=root)
            leaf = Category(name="C", slug="c", parent=mid)
            db.session.add_all([root, mid, leaf])
            db.session.commit()

            assert category_url(leaf) == "http://localhost/category/a/b/c"
            assert category_url(root) == "http://localhost/category/a"

    def test_find_category_by_id_raises(self, app):
        with app.app_context():
            with pytest.raises(CategoryNotFound):
                find_category_by_id(12345)

    def test_post_url(self, app):
        with app.test_request_context("/"):
            post = Post(title="Hello", slug="hello", content="x", created=datetime(2023, 1, 5))
            assert post_url(post) == "http://localhost/post/2023/01/05/hello"

    def test_attachment_url(self, app):
        with app.test_request_context("/"):
            good = Attachment(guid="/uploads/2024/03/photo.jpg")
            bad = Attachment(guid="/somewhere/else.jpg")
            assert attachment_url(good) == "http://localhost/uploads/2024/03/photo.jpg"
            assert attachment_url(bad) is None
