"""
Tests for the back office: user management and the CMS screens
"""

import io
import os

import pytest

from conftest import ADMIN_EMAIL
from errors import StorageError
from models import Attachment, Category, Post, PostStatus, Tag, User, db
from roles import Role
from storage import LocalStorage


@pytest.fixture
def as_admin(client, login):
    login(ADMIN_EMAIL)
    return client


@pytest.fixture
def as_supervisor(client, login, make_user):
    make_user("sup@example.com", role=Role.SUPERVISOR)
    login("sup@example.com")
    return client


def _category(app, name, slug, parent_id=None):
    with app.app_context():
        category = Category(name=name, slug=slug, parent_id=parent_id)
        db.session.add(category)
        db.session.commit()
        return category.id


class TestAccess:
    def test_anonymous_is_sent_to_login(self, client):
        resp = client.get("/admin/categories")
        assert resp.status_code == 302
        assert "/account/login" in resp.headers["Location"]

    def test_company_users_cannot_use_the_cms(self, client, login, make_user):
        make_user("co@example.com")
        login("co@example.com")
        assert client.get("/admin/").status_code == 200
        assert client.get("/admin/categories").status_code == 403
        assert client.get("/admin/users").status_code == 403

    def test_supervisor_can_use_the_cms(self, as_supervisor):
        assert as_supervisor.get("/admin/posts").status_code == 200


class TestUsers:
    def test_supervisor_only_sees_company_users(self, app, as_supervisor, make_user):
        make_user("co@example.com")
        make_user("other-sup@example.com", role=Role.SUPERVISOR)
        html = as_supervisor.get("/admin/users").get_data(as_text=True)
        assert "co@example.com" in html
        assert "other-sup@example.com" not in html
        assert ADMIN_EMAIL not in html.split("<table>")[1]

    def test_supervisor_cannot_touch_admin(self, app, as_supervisor):
        with app.app_context():
            admin_id = User.query.filter_by(email=ADMIN_EMAIL).one().id
        resp = as_supervisor.post(f"/admin/users/{admin_id}/approve", data={"approved": "0"})
        assert resp.status_code == 403

    def test_supervisor_cannot_promote_to_supervisor(self, as_supervisor, make_user):
        user_id = make_user("co@example.com")
        resp = as_supervisor.post(f"/admin/users/{user_id}/role", data={"role": "Supervisor"})
        assert resp.status_code == 403

    def test_admin_promotes_company_user(self, app, as_admin, make_user):
        user_id = make_user("co@example.com")
        resp = as_admin.post(f"/admin/users/{user_id}/role", data={"role": "Supervisor"})
        assert resp.status_code == 302
        with app.app_context():
            assert db.session.get(User, user_id).primary_role == "Supervisor"

    def test_nobody_can_hand_out_admin(self, as_admin, make_user):
        user_id = make_user("co@example.com")
        resp = as_admin.post(f"/admin/users/{user_id}/role", data={"role": "Administrator"})
        assert resp.status_code == 403

    def test_approve_user(self, app, as_supervisor, make_user):
        user_id = make_user("co@example.com", approved=False)
        resp = as_supervisor.post(f"/admin/users/{user_id}/approve", data={"approved": "1"})
        assert resp.status_code == 302
        with app.app_context():
            assert db.session.get(User, user_id).approved


class TestCategories:
    def test_create_with_parent(self, app, as_admin):
        parent_id = _category(app, "News", "news")
        resp = as_admin.post("/admin/categories/new", data={
            "name": "Press Releases", "slug": "", "parent_id": str(parent_id),
        })
        assert resp.status_code == 302
        with app.app_context():
            child = Category.query.filter_by(slug="press-releases").one()
            assert child.parent_id == parent_id

    def test_duplicate_slug(self, app, as_admin):
        _category(app, "News", "news")
        resp = as_admin.post("/admin/categories/new", data={"name": "News", "slug": "news"})
        assert resp.status_code == 400

    def test_cannot_nest_under_descendant(self, app, as_admin):
        root_id = _category(app, "A", "a")
        child_id = _category(app, "B", "b", root_id)
        resp = as_admin.post(f"/admin/categories/{root_id}/edit", data={
            "name": "A", "slug": "a", "parent_id": str(child_id),
        })
        assert resp.status_code == 400
        with app.app_context():
            assert db.session.get(Category, root_id).parent_id is None

    def test_cannot_delete_category_in_use(self, app, as_admin):
        root_id = _category(app, "A", "a")
        _category(app, "B", "b", root_id)
        as_admin.post(f"/admin/categories/{root_id}/delete")
        with app.app_context():
            assert db.session.get(Category, root_id) is not None

    def test_delete_unused_category(self, app, as_admin):
        category_id = _category(app, "A", "a")
        as_admin.post(f"/admin/categories/{category_id}/delete")
        with app.app_context():
            assert db.session.get(Category, category_id) is None

    def test_list_shows_full_category_urls(self, app, as_admin):
        root_id = _category(app, "A", "a")
        _category(app, "B", "b", root_id)
        html = as_admin.get("/admin/categories").get_data(as_text=True)
        assert "http://localhost/category/a/b" in html


class TestPosts:
    def test_create_published_post(self, app, as_admin):
        category_id = _category(app, "News", "news")
        resp = as_admin.post("/admin/posts/new", data={
            "title": "Hello World",
            "content": "<p>Hi</p>",
            "status": "published",
            "category_ids": [str(category_id)],
            "tags": "Events, events, HR",
        })
        assert resp.status_code == 302
        with app.app_context():
            post = Post.query.filter_by(slug="hello-world").one()
            assert post.status == PostStatus.PUBLISHED
            assert post.published is not None
            assert [c.slug for c in post.categories] == ["news"]
            assert sorted(t.slug for t in post.tags) == ["events", "hr"]
            assert Tag.query.filter_by(slug="events").one().count == 1
            assert post.created_by.email == ADMIN_EMAIL

    def test_missing_content(self, as_admin):
        resp = as_admin.post("/admin/posts/new", data={"title": "Empty", "status": "draft"})
        assert resp.status_code == 400
        assert 'value="Empty"' in resp.get_data(as_text=True)

    def test_edit_and_soft_delete(self, app, as_admin):
        as_admin.post("/admin/posts/new", data={
            "title": "Draft", "content": "x", "status": "draft", "tags": "misc",
        })
        with app.app_context():
            post_id = Post.query.filter_by(slug="draft").one().id

        resp = as_admin.post(f"/admin/posts/{post_id}/edit", data={
            "title": "Draft", "slug": "draft", "content": "y", "status": "published", "tags": "misc",
        })
        assert resp.status_code == 302
        with app.app_context():
            post = db.session.get(Post, post_id)
            assert post.modified is not None
            assert Tag.query.filter_by(slug="misc").one().count == 1

        as_admin.post(f"/admin/posts/{post_id}/delete")
        with app.app_context():
            assert db.session.get(Post, post_id).status == PostStatus.DELETED
            assert Tag.query.filter_by(slug="misc").one().count == 0
        assert as_admin.get(f"/admin/posts/{post_id}/edit").status_code == 404


class TestAttachments:
    def test_upload_and_delete(self, app, as_admin):
        resp = as_admin.post(
            "/admin/attachments/upload",
            data={"files": [(io.BytesIO(b"%PDF-1.4"), "report.pdf")], "description": "Report"},
            content_type="multipart/form-data",
        )
        assert resp.status_code == 302
        with app.app_context():
            attachment = Attachment.query.one()
            assert attachment.guid.startswith("/uploads/")
            assert attachment.guid.endswith("/report.pdf")
            assert attachment.mime_type == "application/pdf"
            attachment_id = attachment.id

        as_admin.post(f"/admin/attachments/{attachment_id}/delete")
        with app.app_context():
            assert Attachment.query.count() == 0

    def test_rejects_unknown_extension(self, app, as_admin):
        as_admin.post(
            "/admin/attachments/upload",
            data={"files": [(io.BytesIO(b"MZ"), "tool.exe")]},
            content_type="multipart/form-data",
        )
        with app.app_context():
            assert Attachment.query.count() == 0

    def test_delete_removes_stored_file(self, app, as_admin):
        as_admin.post(
            "/admin/attachments/upload",
            data={"files": [(io.BytesIO(b"%PDF-1.4"), "report.pdf")]},
            content_type="multipart/form-data",
        )
        with app.app_context():
            attachment = Attachment.query.one()
            attachment_id = attachment.id
            path = os.path.join(app.config["UPLOAD_FOLDER"], attachment.container, attachment.file)
        assert os.path.isfile(path)

        as_admin.post(f"/admin/attachments/{attachment_id}/delete")
        assert not os.path.exists(path)

    def test_failed_batch_leaves_nothing_behind(self, app, as_admin, monkeypatch):
        saved = []
        save_file = LocalStorage.save_file

        def failing_second_save(storage, name, container, data, mime_type=None):
            saved.append(name)
            if len(saved) == 2:
                raise StorageError("disk full")
            return save_file(storage, name, container, data, mime_type)

        monkeypatch.setattr(LocalStorage, "save_file", failing_second_save)
        with pytest.raises(StorageError):
            as_admin.post(
                "/admin/attachments/upload",
                data={"files": [
                    (io.BytesIO(b"%PDF-1.4 one"), "one.pdf"),
                    (io.BytesIO(b"%PDF-1.4 two"), "two.pdf"),
                ]},
                content_type="multipart/form-data",
            )

        with app.app_context():
            assert Attachment.query.count() == 0
        left = [f for _, _, files in os.walk(app.config["UPLOAD_FOLDER"]) for f in files]
        assert left == []
