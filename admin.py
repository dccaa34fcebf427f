import re
import unicodedata
from datetime import datetime

from flask import (
    Blueprint, current_app, render_template, request, redirect, url_for, flash, abort
)
from flask_login import current_user, login_required

from auth import set_user_role
from models import (
    SLUG_PATTERN, Attachment, Category, Post, PostStatus, Tag, User, db
)
from roles import Role, admin_required, can_manage, is_admin, subordinated_roles_for_user
from storage import allowed_file, get_storage, store_upload

bp = Blueprint("admin", __name__, url_prefix="/admin")

SLUG_RE = re.compile(SLUG_PATTERN)


def slugify(text):
    """'Café Ñandú 2024' -> 'cafe-nandu-2024'"""
    text = unicodedata.normalize("NFKD", text or "").encode("ascii", "ignore").decode("ascii")
    text = re.sub(r"[^A-Za-z0-9]+", "-", text).strip("-")
    return text.lower()


def _slug_errors(model, slug, current_id=None):
    if not slug or not SLUG_RE.match(slug):
        return ["Only letters, number and dashes allowed in the slug."]
    existing = model.query.filter_by(slug=slug).first()
    if existing is not None and existing.id != current_id:
        return [f"The slug '{slug}' is already in use."]
    return []


def _flash_all(errors):
    for error in errors:
        flash(error, "danger")


def _optional_int(value):
    try:
        return int(value) if value not in (None, "") else None
    except ValueError:
        abort(400)


@bp.route("/")
@login_required
def dashboard():
    counts = {}
    if is_admin(current_user):
        counts = {
            "posts": Post.query.filter(Post.status != PostStatus.DELETED).count(),
            "categories": Category.query.count(),
            "tags": Tag.query.count(),
            "attachments": Attachment.query.count(),
            "pending_users": User.query.filter_by(approved=False).count(),
        }
    return render_template("admin/dashboard.html", counts=counts)


# ===== Users =====
@bp.route("/users")
@admin_required
def users():
    manageable = [u for u in User.query.order_by(User.last_access.desc()).all()
                  if can_manage(current_user, u)]
    return render_template(
        "admin/users.html",
        users=manageable,
        assignable_roles=subordinated_roles_for_user(current_user),
    )


def _manageable_user_or_abort(user_id):
    user = db.get_or_404(User, user_id)
    if not can_manage(current_user, user):
        current_app.logger.warning(
            "%s tried to manage %s without permission", current_user.email, user.email
        )
        abort(403)
    return user


@bp.route("/users/<int:user_id>/approve", methods=["POST"])
@admin_required
def approve_user(user_id):
    user = _manageable_user_or_abort(user_id)
    user.approved = request.form.get("approved", "1") == "1"
    db.session.commit()
    current_app.logger.info(
        "%s set approved=%s for %s", current_user.email, user.approved, user.email
    )
    flash(f"{user.full_name} {'approved' if user.approved else 'disapproved'}.", "success")
    return redirect(url_for("admin.users"))


@bp.route("/users/<int:user_id>/role", methods=["POST"])
@admin_required
def change_role(user_id):
    user = _manageable_user_or_abort(user_id)
    role = Role.from_name(request.form.get("role"))
    # Only roles below our own can be handed out
    if role is None or role not in subordinated_roles_for_user(current_user):
        abort(403)
    set_user_role(user, role)
    db.session.commit()
    current_app.logger.info("%s gave role %s to %s", current_user.email, role, user.email)
    flash(f"{user.full_name} is now {role}.", "success")
    return redirect(url_for("admin.users"))


# ===== Categories =====
@bp.route("/categories")
@admin_required
def categories():
    items = Category.query.order_by(Category.name).all()
    return render_template("admin/categories.html", categories=items)


def _descendant_ids(category):
    ids = set()
    pending = list(category.children)
    while pending:
        child = pending.pop()
        if child.id not in ids:
            ids.add(child.id)
            pending.extend(child.children)
    return ids


def _save_category(category):
    form = request.form
    name = form.get("name", "").strip()
    slug = form.get("slug", "").strip() or slugify(name)
    parent_id = _optional_int(form.get("parent_id"))

    errors = [] if name else ["The 'Name' field is required."]
    errors += _slug_errors(Category, slug, category.id)
    if parent_id is not None:
        parent = db.session.get(Category, parent_id)
        if parent is None:
            errors.append("The parent category does not exist.")
        elif category.id is not None and (
            parent_id == category.id or parent_id in _descendant_ids(category)
        ):
            errors.append("A category cannot be nested under itself.")
    if errors:
        _flash_all(errors)
        return False

    category.name = name
    category.slug = slug
    category.description = form.get("description", "").strip() or None
    category.parent_id = parent_id
    return True


@bp.route("/categories/new", methods=["GET", "POST"])
@admin_required
def category_new():
    category = Category()
    if request.method == "POST":
        if _save_category(category):
            db.session.add(category)
            db.session.commit()
            flash("Category created!", "success")
            return redirect(url_for("admin.categories"))
        return render_template("admin/category_form.html", category=category,
                               parents=Category.query.order_by(Category.name).all()), 400
    return render_template("admin/category_form.html", category=category,
                           parents=Category.query.order_by(Category.name).all())


@bp.route("/categories/<int:category_id>/edit", methods=["GET", "POST"])
@admin_required
def category_edit(category_id):
    category = db.get_or_404(Category, category_id)
    parents = Category.query.filter(Category.id != category.id).order_by(Category.name).all()
    if request.method == "POST":
        if _save_category(category):
            db.session.commit()
            flash("Category updated!", "success")
            return redirect(url_for("admin.categories"))
        db.session.rollback()
        return render_template("admin/category_form.html", category=category, parents=parents), 400
    return render_template("admin/category_form.html", category=category, parents=parents)


@bp.route("/categories/<int:category_id>/delete", methods=["POST"])
@admin_required
def category_delete(category_id):
    category = db.get_or_404(Category, category_id)
    if category.children or category.posts:
        flash("The category is still in use and cannot be deleted.", "warning")
        return redirect(url_for("admin.categories"))
    db.session.delete(category)
    db.session.commit()
    flash("Category deleted.", "info")
    return redirect(url_for("admin.categories"))


# ===== Tags =====
@bp.route("/tags")
@admin_required
def tags():
    return render_template("admin/tags.html", tags=Tag.query.order_by(Tag.name).all())


@bp.route("/tags/new", methods=["GET", "POST"])
@bp.route("/tags/<int:tag_id>/edit", methods=["GET", "POST"])
@admin_required
def tag_form(tag_id=None):
    tag = db.get_or_404(Tag, tag_id) if tag_id is not None else Tag()
    if request.method == "POST":
        name = request.form.get("name", "").strip()
        slug = request.form.get("slug", "").strip() or slugify(name)
        errors = [] if name else ["The 'Name' field is required."]
        errors += _slug_errors(Tag, slug, tag.id)
        if errors:
            _flash_all(errors)
            return render_template("admin/tag_form.html", tag=tag), 400
        tag.name = name
        tag.slug = slug
        if tag.id is None:
            db.session.add(tag)
        db.session.commit()
        flash("Tag saved!", "success")
        return redirect(url_for("admin.tags"))
    return render_template("admin/tag_form.html", tag=tag)


@bp.route("/tags/<int:tag_id>/delete", methods=["POST"])
@admin_required
def tag_delete(tag_id):
    tag = db.get_or_404(Tag, tag_id)
    db.session.delete(tag)
    db.session.commit()
    flash("Tag deleted.", "info")
    return redirect(url_for("admin.tags"))


def _tags_from_names(raw):
    result = []
    for name in (n.strip() for n in (raw or "").split(",")):
        if not name:
            continue
        slug = slugify(name)
        tag = Tag.query.filter_by(slug=slug).first()
        if tag is None:
            tag = Tag(name=name, slug=slug)
            db.session.add(tag)
        if tag not in result:
            result.append(tag)
    return result


def _refresh_tag_counts(tags):
    for tag in tags:
        tag.count = sum(1 for p in tag.posts if p.status == PostStatus.PUBLISHED)


# ===== Posts =====
@bp.route("/posts")
@admin_required
def posts():
    items = (Post.query.filter(Post.status != PostStatus.DELETED)
             .order_by(Post.created.desc()).all())
    return render_template("admin/posts.html", posts=items)


def _post_form_context(post):
    return {
        "post": post,
        "categories": Category.query.order_by(Category.name).all(),
        "images": Attachment.query.filter(Attachment.mime_type.like("image/%"))
                                  .order_by(Attachment.created.desc()).all(),
        "statuses": [PostStatus.PUBLISHED, PostStatus.DRAFT],
    }


def _save_post(post):
    form = request.form
    title = form.get("title", "").strip()
    content = form.get("content", "").strip()
    slug = form.get("slug", "").strip() or slugify(title)
    try:
        status = PostStatus(form.get("status", PostStatus.DRAFT.value))
    except ValueError:
        abort(400)

    errors = [] if (title and content) else ["Please fill all required fields."]
    errors += _slug_errors(Post, slug, post.id)

    category_ids = [_optional_int(x) for x in form.getlist("category_ids")]
    categories = Category.query.filter(Category.id.in_(category_ids)).all() if category_ids else []
    if len(categories) != len(set(category_ids)):
        errors.append("Unknown category.")

    featured_id = _optional_int(form.get("featured_image_id"))
    featured = db.session.get(Attachment, featured_id) if featured_id else None
    if featured_id and (featured is None or not featured.is_image):
        errors.append("The featured image must be an image attachment.")

    if errors:
        _flash_all(errors)
        return False

    old_tags = list(post.tags)
    now = datetime.utcnow()
    post.title = title
    post.summary = form.get("summary", "").strip() or None
    post.content = content
    post.slug = slug
    post.fixed = form.get("fixed") == "on"
    post.categories = categories
    post.tags = _tags_from_names(form.get("tags"))
    post.featured_image = featured
    if status == PostStatus.PUBLISHED and post.published is None:
        post.published = now
    post.status = status
    if post.id is None:
        post.created = now
        post.created_by = current_user._get_current_object()
    else:
        post.modified = now
        post.modified_by = current_user._get_current_object()
    db.session.add(post)
    db.session.flush()
    _refresh_tag_counts(set(old_tags) | set(post.tags))
    return True


@bp.route("/posts/new", methods=["GET", "POST"])
@admin_required
def post_new():
    post = Post()
    if request.method == "POST":
        if _save_post(post):
            db.session.commit()
            flash("Post created!", "success")
            return redirect(url_for("admin.posts"))
        db.session.rollback()
        # Show the form again with what was typed
        post = Post(
            title=request.form.get("title", "").strip(),
            slug=request.form.get("slug", "").strip(),
            summary=request.form.get("summary", "").strip() or None,
            content=request.form.get("content", "").strip(),
            fixed=request.form.get("fixed") == "on",
        )
        return render_template("admin/post_form.html", **_post_form_context(post)), 400
    return render_template("admin/post_form.html", **_post_form_context(post))


@bp.route("/posts/<int:post_id>/edit", methods=["GET", "POST"])
@admin_required
def post_edit(post_id):
    post = db.get_or_404(Post, post_id)
    if post.status == PostStatus.DELETED:
        abort(404)
    if request.method == "POST":
        if _save_post(post):
            db.session.commit()
            flash("Post updated!", "success")
            return redirect(url_for("admin.posts"))
        db.session.rollback()
        return render_template("admin/post_form.html", **_post_form_context(post)), 400
    return render_template("admin/post_form.html", **_post_form_context(post))


@bp.route("/posts/<int:post_id>/delete", methods=["POST"])
@admin_required
def post_delete(post_id):
    post = db.get_or_404(Post, post_id)
    post.status = PostStatus.DELETED
    post.modified = datetime.utcnow()
    post.modified_by = current_user._get_current_object()
    _refresh_tag_counts(post.tags)
    db.session.commit()
    flash("Post deleted.", "info")
    return redirect(url_for("admin.posts"))


# ===== Attachments =====
@bp.route("/attachments")
@admin_required
def attachments():
    items = Attachment.query.order_by(Attachment.created.desc()).all()
    return render_template("admin/attachments.html", attachments=items)


@bp.route("/attachments/upload", methods=["POST"])
@admin_required
def attachment_upload():
    files = [f for f in request.files.getlist("files") if f and f.filename]
    if not files:
        flash("Please choose a file to upload.", "warning")
        return redirect(url_for("admin.attachments"))

    allowed = current_app.config["ALLOWED_EXTENSIONS"]
    description = request.form.get("description", "").strip() or None
    saved = []
    try:
        for f in files:
            if not allowed_file(f.filename, allowed):
                flash(f"Unsupported file type: {f.filename}", "danger")
                continue
            attachment = store_upload(f, user=current_user._get_current_object(),
                                      description=description)
            saved.append((attachment.location, attachment.file, attachment.container))
            db.session.add(attachment)
        db.session.commit()
    except Exception:
        db.session.rollback()
        # Nothing of a failed batch may stay behind in storage
        for location, name, container in saved:
            get_storage(location).delete_file(name, container)
        current_app.logger.exception("Upload failed, removed %d stored file(s)", len(saved))
        raise
    if saved:
        flash(f"{len(saved)} file(s) uploaded!", "success")
    return redirect(url_for("admin.attachments"))


@bp.route("/attachments/<int:attachment_id>/delete", methods=["POST"])
@admin_required
def attachment_delete(attachment_id):
    attachment = db.get_or_404(Attachment, attachment_id)
    in_use = attachment.posts or Post.query.filter_by(featured_image_id=attachment.id).count()
    if in_use:
        flash("The file is used by a post and cannot be deleted.", "warning")
        return redirect(url_for("admin.attachments"))

    guid = attachment.guid
    storage = get_storage(attachment.location)
    files = [(attachment.file, attachment.container)]
    if attachment.thumb_file and attachment.thumb_container:
        files.append((attachment.thumb_file, attachment.thumb_container))
    db.session.delete(attachment)
    db.session.commit()
    # Bytes go only once the row is gone
    for name, container in files:
        storage.delete_file(name, container)
    current_app.logger.info("%s deleted attachment %s", current_user.email, guid)
    flash("File deleted.", "info")
    return redirect(url_for("admin.attachments"))
