from flask import Blueprint, abort, current_app, redirect, render_template, request, url_for
from flask_login import current_user

from attachments import serve_attachment
from links import post_url_values, resolve_category_path
from models import Attachment, Category, Post, PostStatus, Tag
from roles import is_admin

bp = Blueprint("site", __name__)


def published_posts():
    return Post.query.filter(Post.status == PostStatus.PUBLISHED).order_by(
        Post.fixed.desc(), Post.published.desc(), Post.created.desc()
    )


def _paginate(query):
    return query.paginate(
        page=request.args.get("page", 1, type=int),
        per_page=current_app.config["PAGE_SIZE"],
        error_out=False,
    )


@bp.route("/")
def index():
    roots = Category.query.filter(Category.parent_id.is_(None)).order_by(Category.name).all()
    return render_template("index.html", posts=_paginate(published_posts()), categories=roots)


@bp.route("/category/<path:category_path>")
def category(category_path):
    slugs = [s for s in category_path.split("/") if s]
    if not slugs:
        abort(404)
    leaf = Category.query.filter_by(slug=slugs[-1]).first_or_404()

    canonical = resolve_category_path(
        leaf, depth_limit=current_app.config["CATEGORY_DEPTH_LIMIT"]
    )
    if canonical != slugs:
        return redirect(url_for("site.category", category_path="/".join(canonical)), 301)

    posts = published_posts().filter(Post.categories.any(Category.id == leaf.id))
    return render_template(
        "category.html", category=leaf, path=canonical, posts=_paginate(posts)
    )


@bp.route("/post/<year>/<month>/<day>/<slug>")
def post(year, month, day, slug):
    item = Post.query.filter_by(slug=slug).first_or_404()
    if item.status == PostStatus.DELETED:
        abort(404)
    if not item.is_published and not is_admin(current_user):
        abort(404)

    values = post_url_values(item)
    if (values["year"], values["month"], values["day"]) != (year, month, day):
        abort(404)
    return render_template("post.html", post=item)


@bp.route("/tag/<slug>")
def tag(slug):
    item = Tag.query.filter_by(slug=slug).first_or_404()
    posts = published_posts().filter(Post.tags.any(Tag.id == item.id))
    return render_template("tag.html", tag=item, posts=_paginate(posts))


# Files addressed by their guid: /uploads/<year>/<month>/<filename>
@bp.route("/uploads/<year>/<month>/<filename>")
def upload(year, month, filename):
    guid = f"/uploads/{year}/{month}/{filename}"
    attachment = Attachment.query.filter_by(guid=guid).first_or_404()
    return serve_attachment(attachment)
