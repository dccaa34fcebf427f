import enum
from datetime import datetime

from flask_login import UserMixin
from flask_sqlalchemy import SQLAlchemy
from werkzeug.security import check_password_hash, generate_password_hash

db = SQLAlchemy()

# Attachment guids encode the public path: /uploads/<year>/<month>/<file>
GUID_PATTERN = r"^/uploads/(\d{4})/(\d{2})/([\w\-.]+)$"
SLUG_PATTERN = r"^[A-Za-z0-9-]+$"


class PostStatus(enum.Enum):
    PUBLISHED = "published"
    DRAFT = "draft"
    DELETED = "deleted"


class FileLocation(enum.Enum):
    LOCAL = "local"
    CLOUD = "cloud"


user_roles = db.Table(
    "user_roles",
    db.Column("user_id", db.Integer, db.ForeignKey("user.id"), primary_key=True),
    db.Column("role_id", db.Integer, db.ForeignKey("role.id"), primary_key=True),
)

post_categories = db.Table(
    "post_categories",
    db.Column("post_id", db.Integer, db.ForeignKey("post.id"), primary_key=True),
    db.Column("category_id", db.Integer, db.ForeignKey("category.id"), primary_key=True),
)

post_tags = db.Table(
    "post_tags",
    db.Column("post_id", db.Integer, db.ForeignKey("post.id"), primary_key=True),
    db.Column("tag_id", db.Integer, db.ForeignKey("tag.id"), primary_key=True),
)

post_attachments = db.Table(
    "post_attachments",
    db.Column("post_id", db.Integer, db.ForeignKey("post.id"), primary_key=True),
    db.Column("attachment_id", db.Integer, db.ForeignKey("attachment.id"), primary_key=True),
)


class RoleRecord(db.Model):
    __tablename__ = "role"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(64), unique=True, nullable=False)

    def __repr__(self):
        return f"<RoleRecord {self.name}>"


class User(UserMixin, db.Model):
    id = db.Column(db.Integer, primary_key=True)
    email = db.Column(db.String(256), unique=True, nullable=False)
    password_hash = db.Column(db.String(256))
    firstname = db.Column(db.String(80), nullable=False)
    lastname = db.Column(db.String(80), nullable=False)
    company = db.Column(db.String(80), nullable=False)
    accept_terms_of_service = db.Column(db.Boolean, default=False, nullable=False)
    language = db.Column(db.String(16), default="es-MX", nullable=False)
    last_access = db.Column(db.DateTime)
    approved = db.Column(db.Boolean, default=False, nullable=False)
    email_confirmed = db.Column(db.Boolean, default=False, nullable=False)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    # Ordered by role id so the first one is stable (the "primary" role)
    roles = db.relationship("RoleRecord", secondary=user_roles, order_by="RoleRecord.id", lazy="selectin")

    def set_password(self, password):
        self.password_hash = generate_password_hash(password)

    def check_password(self, password):
        if not self.password_hash:
            return False
        return check_password_hash(self.password_hash, password)

    @property
    def full_name(self):
        return f"{self.firstname or ''} {self.lastname or ''}".strip()

    @property
    def primary_role(self):
        return self.roles[0].name if self.roles else None

    @property
    def is_active(self):
        # Flask-Login refuses to log in inactive users
        return bool(self.email_confirmed and self.approved)

    def __repr__(self):
        return f"<User {self.email}>"


class Category(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(200), nullable=False)
    description = db.Column(db.String(300))
    slug = db.Column(db.String(200), unique=True, nullable=False)
    parent_id = db.Column(db.Integer, db.ForeignKey("category.id"))

    children = db.relationship(
        "Category", backref=db.backref("parent", remote_side=[id]), order_by="Category.name"
    )

    def __repr__(self):
        return f"<Category {self.slug}>"


class Tag(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(200), nullable=False)
    slug = db.Column(db.String(200), unique=True, nullable=False)
    count = db.Column(db.Integer, default=0, nullable=False)
    parent_id = db.Column(db.Integer, db.ForeignKey("tag.id"))

    parent = db.relationship("Tag", remote_side=[id])

    def __repr__(self):
        return f"<Tag {self.slug}>"


class Attachment(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    file = db.Column(db.String(256), nullable=False)   # path or blob name inside the container
    guid = db.Column(db.String(200), unique=True, nullable=False)
    description = db.Column(db.String(300))
    container = db.Column(db.String(63), nullable=False)
    thumb_file = db.Column(db.String(256))
    thumb_container = db.Column(db.String(63))
    location = db.Column(db.Enum(FileLocation), nullable=False, default=FileLocation.LOCAL)
    original_filename = db.Column(db.String(256), nullable=False)
    mime_type = db.Column(db.String(125), nullable=False)
    created = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)
    created_by_id = db.Column(db.Integer, db.ForeignKey("user.id"))

    created_by = db.relationship("User")

    @property
    def is_image(self):
        return (self.mime_type or "").startswith("image/")

    def __repr__(self):
        return f"<Attachment {self.guid}>"


class Post(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    title = db.Column(db.String(200), nullable=False)
    summary = db.Column(db.String(300))
    content = db.Column(db.Text, nullable=False)
    slug = db.Column(db.String(200), unique=True, nullable=False)
    created = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)
    published = db.Column(db.DateTime)
    modified = db.Column(db.DateTime)
    status = db.Column(db.Enum(PostStatus), nullable=False, default=PostStatus.DRAFT)
    fixed = db.Column(db.Boolean, default=False, nullable=False)
    created_by_id = db.Column(db.Integer, db.ForeignKey("user.id"))
    modified_by_id = db.Column(db.Integer, db.ForeignKey("user.id"))
    featured_image_id = db.Column(db.Integer, db.ForeignKey("attachment.id"))

    created_by = db.relationship("User", foreign_keys=[created_by_id])
    modified_by = db.relationship("User", foreign_keys=[modified_by_id])
    featured_image = db.relationship("Attachment", foreign_keys=[featured_image_id])
    categories = db.relationship("Category", secondary=post_categories, backref="posts")
    tags = db.relationship("Tag", secondary=post_tags, backref="posts")
    attachments = db.relationship("Attachment", secondary=post_attachments, backref="posts")

    @property
    def is_published(self):
        return self.status == PostStatus.PUBLISHED

    def __repr__(self):
        return f"<Post {self.slug}>"
