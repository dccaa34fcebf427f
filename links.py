"""
Public URLs for categories, posts and attachments.

Category URLs carry the whole ancestor chain (/category/root/child/leaf),
post URLs are date partitioned (/post/2023/01/05/slug) and attachment URLs
are decoded from the attachment guid (/uploads/2024/03/photo.jpg).
"""

import re
from urllib.parse import urlsplit

from flask import current_app, url_for

from errors import CategoryNotFound, ExcessiveDepth, InvalidUrlGeneration
from models import GUID_PATTERN, Category, db

GUID_RE = re.compile(GUID_PATTERN)

DEFAULT_DEPTH_LIMIT = 10


def find_category_by_id(category_id):
    category = db.session.get(Category, category_id)
    if category is None:
        raise CategoryNotFound(category_id)
    return category


def resolve_category_path(leaf, find_category=find_category_by_id, depth_limit=DEFAULT_DEPTH_LIMIT):
    """
    Slugs from the root of `leaf`'s tree down to `leaf` itself.

    Parents are fetched one at a time through `find_category`. A chain with
    more than `depth_limit` categories (leaf included) raises ExcessiveDepth,
    which also stops the walk on cyclic data.
    """
    slugs = [leaf.slug]
    category = leaf
    while category.parent_id is not None:
        if len(slugs) >= depth_limit:
            raise ExcessiveDepth(leaf.id, depth_limit)
        category = find_category(category.parent_id)
        slugs.append(category.slug)
    slugs.reverse()
    return slugs


def parse_attachment_guid(guid):
    """Split `/uploads/<year>/<month>/<filename>` into its parts, or None."""
    if not guid:
        return None
    match = GUID_RE.match(guid)
    if match is None:
        return None
    year, month, filename = match.groups()
    return {"year": year, "month": month, "filename": filename}


def build_attachment_guid(year, month, filename):
    return f"/uploads/{int(year):04d}/{int(month):02d}/{filename}"


def post_url_values(post):
    created = post.created
    return {
        "year": f"{created.year:04d}",
        "month": f"{created.month:02d}",
        "day": f"{created.day:02d}",
        "slug": post.slug,
    }


def ensure_absolute(link):
    parts = urlsplit(link or "")
    if not parts.scheme or not parts.netloc:
        raise InvalidUrlGeneration(link)
    return link


def category_url(category):
    depth_limit = current_app.config.get("CATEGORY_DEPTH_LIMIT", DEFAULT_DEPTH_LIMIT)
    path = resolve_category_path(category, depth_limit=depth_limit)
    link = url_for("site.category", category_path="/".join(path), _external=True)
    return ensure_absolute(link)


def post_url(post):
    link = url_for("site.post", _external=True, **post_url_values(post))
    return ensure_absolute(link)


def attachment_url(attachment):
    """Absolute URL of an attachment, or None when its guid is not a valid upload path."""
    parts = parse_attachment_guid(attachment.guid)
    if parts is None:
        return None
    link = url_for("site.upload", _external=True, **parts)
    return ensure_absolute(link)
