"""
Attachment storage: local disk or an S3 bucket.

Both backends address a file by (container, name). Locally the container is a
directory under UPLOAD_FOLDER; in S3 it is the key prefix inside the bucket.
"""

import logging
import mimetypes
import os
from datetime import datetime

import boto3
from botocore.exceptions import ClientError
from flask import current_app
from werkzeug.utils import secure_filename

from errors import StorageError
from links import build_attachment_guid
from models import Attachment, FileLocation

logger = logging.getLogger(__name__)

DEFAULT_MIME_TYPE = "application/octet-stream"


def guess_mime_type(filename):
    mime, _ = mimetypes.guess_type(filename)
    return mime or DEFAULT_MIME_TYPE


def allowed_file(filename, allowed_extensions):
    return "." in filename and filename.rsplit(".", 1)[1].lower() in allowed_extensions


class LocalStorage:
    def __init__(self, root):
        self.root = os.path.abspath(root)

    def _path(self, name, container):
        path = os.path.abspath(os.path.join(self.root, container, name))
        # Never leave the storage root
        if os.path.commonpath([path, self.root]) != self.root:
            raise StorageError(f"Invalid file path: {container}/{name}")
        return path

    def exists(self, name, container):
        return os.path.isfile(self._path(name, container))

    def get_file(self, name, container):
        path = self._path(name, container)
        if not os.path.isfile(path):
            logger.warning("Local file not found: %s", path)
            return None
        with open(path, "rb") as fh:
            data = fh.read()
        return data, guess_mime_type(name)

    def save_file(self, name, container, data, mime_type=None):
        path = self._path(name, container)
        os.makedirs(os.path.dirname(path), exist_ok=True)
        with open(path, "wb") as fh:
            fh.write(data)

    def delete_file(self, name, container):
        path = self._path(name, container)
        if os.path.isfile(path):
            os.remove(path)


class S3Storage:
    def __init__(self, bucket, client=None, region=None, endpoint_url=None):
        if not bucket:
            raise StorageError("S3 bucket is required for cloud storage")
        self.bucket = bucket
        self.client = client or boto3.client(
            "s3", region_name=region or None, endpoint_url=endpoint_url or None
        )

    @staticmethod
    def _key(name, container):
        return f"{container}/{name}"

    def exists(self, name, container):
        try:
            self.client.head_object(Bucket=self.bucket, Key=self._key(name, container))
        except ClientError as exc:
            if self._is_missing(exc):
                return False
            raise StorageError(f"S3 head_object failed for {name}") from exc
        return True

    def get_file(self, name, container):
        key = self._key(name, container)
        try:
            resp = self.client.get_object(Bucket=self.bucket, Key=key)
        except ClientError as exc:
            if self._is_missing(exc):
                logger.warning("S3 object not found: %s", key)
                return None
            logger.exception("S3 get_object failed for %s", key)
            raise StorageError(f"S3 get_object failed for {key}") from exc
        body = resp["Body"]
        try:
            data = body.read()
        finally:
            body.close()
        return data, resp.get("ContentType") or guess_mime_type(name)

    def save_file(self, name, container, data, mime_type=None):
        key = self._key(name, container)
        try:
            self.client.put_object(
                Bucket=self.bucket,
                Key=key,
                Body=data,
                ContentType=mime_type or guess_mime_type(name),
            )
        except ClientError as exc:
            logger.exception("S3 put_object failed for %s", key)
            raise StorageError(f"S3 put_object failed for {key}") from exc

    def delete_file(self, name, container):
        key = self._key(name, container)
        try:
            self.client.delete_object(Bucket=self.bucket, Key=key)
        except ClientError as exc:
            raise StorageError(f"S3 delete_object failed for {key}") from exc

    @staticmethod
    def _is_missing(exc):
        code = str((exc.response.get("Error") or {}).get("Code") or "")
        return code in {"NoSuchKey", "404", "NotFound"}


def init_storage(app):
    """Register the storage backends on the app (cloud only when a bucket is configured)."""
    backends = {FileLocation.LOCAL: LocalStorage(app.config["UPLOAD_FOLDER"])}
    if app.config.get("S3_BUCKET"):
        backends[FileLocation.CLOUD] = S3Storage(
            app.config["S3_BUCKET"],
            region=app.config.get("AWS_REGION"),
            endpoint_url=app.config.get("S3_ENDPOINT_URL"),
        )
    app.extensions["storage"] = backends


def get_storage(location):
    backends = current_app.extensions["storage"]
    try:
        return backends[location]
    except KeyError:
        raise StorageError(f"No storage configured for location '{location.value}'") from None


def default_location():
    return FileLocation(current_app.config.get("STORAGE_LOCATION", "local"))


def unique_name(storage, container, folder, filename):
    name, ext = os.path.splitext(filename)
    final = filename
    i = 1
    while storage.exists(f"{folder}/{final}", container):
        final = f"{name}-{i}{ext}"
        i += 1
    return final


def store_upload(upload, user=None, description=None, now=None):
    """
    Save a werkzeug FileStorage and return an unsaved Attachment for it.

    The file lands in <container>/<YYYY>/<MM>/<name>, and the guid mirrors
    that as /uploads/<YYYY>/<MM>/<name>.
    """
    filename = secure_filename(upload.filename or "")
    if not filename:
        raise ValueError("A file name is required")

    now = now or datetime.utcnow()
    location = default_location()
    storage = get_storage(location)
    container = current_app.config["ATTACHMENTS_CONTAINER"]
    folder = f"{now.year:04d}/{now.month:02d}"

    final = unique_name(storage, container, folder, filename)
    mime_type = upload.mimetype or guess_mime_type(final)
    if mime_type == DEFAULT_MIME_TYPE:
        mime_type = guess_mime_type(final)

    storage.save_file(f"{folder}/{final}", container, upload.read(), mime_type)
    logger.info("Stored upload %s/%s/%s (%s)", container, folder, final, location.value)

    return Attachment(
        file=f"{folder}/{final}",
        guid=build_attachment_guid(now.year, now.month, final),
        description=description,
        container=container,
        location=location,
        original_filename=upload.filename,
        mime_type=mime_type,
        created=now,
        created_by=user,
    )
