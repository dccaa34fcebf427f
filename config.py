import os
from dotenv import load_dotenv

BASE_DIR = os.path.abspath(os.path.dirname(__file__))

load_dotenv(os.path.join(BASE_DIR, ".env"))


def env_bool(name, default=False):
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


class Config:
    SECRET_KEY = os.getenv("SECRET_KEY", "dev-secret")

    # Use DATABASE_URL from environment; fall back to a local SQLite file
    SQLALCHEMY_DATABASE_URI = os.getenv(
        "DATABASE_URL", "sqlite:///" + os.path.join(BASE_DIR, "site.db")
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    UPLOAD_FOLDER = os.getenv("UPLOAD_FOLDER", os.path.join(BASE_DIR, "storage"))
    MAX_CONTENT_LENGTH = 100 * 1024 * 1024  # 100 MB
    ALLOWED_EXTENSIONS = {
        "png", "jpg", "jpeg", "gif", "webp", "svg",
        "pdf", "doc", "docx", "xls", "xlsx", "ppt", "pptx", "txt", "zip",
        "mp4", "webm",
    }

    # 'local' keeps files under UPLOAD_FOLDER, 'cloud' sends them to S3
    STORAGE_LOCATION = os.getenv("STORAGE_LOCATION", "local")
    ATTACHMENTS_CONTAINER = "attachments"
    S3_BUCKET = os.getenv("S3_BUCKET", "")
    AWS_REGION = os.getenv("AWS_REGION")
    S3_ENDPOINT_URL = os.getenv("S3_ENDPOINT_URL")

    # New accounts are approved right away unless an admin review is wanted
    AUTO_APPROVE_USERS = env_bool("AUTO_APPROVE_USERS", True)
    EMAIL_TOKEN_MAX_AGE = int(os.getenv("EMAIL_TOKEN_MAX_AGE", 3 * 24 * 3600))
    MIN_PASSWORD_LENGTH = 8
    MAIL_SENDER = None

    CATEGORY_DEPTH_LIMIT = int(os.getenv("CATEGORY_DEPTH_LIMIT", 10))
    PAGE_SIZE = 9

    SUPERADMIN_EMAIL = os.getenv("SUPERADMIN_EMAIL", "")
    SUPERADMIN_PASSWORD = os.getenv("SUPERADMIN_PASSWORD", "")
    SUPERADMIN_FIRSTNAME = os.getenv("SUPERADMIN_FIRSTNAME", "Super")
    SUPERADMIN_LASTNAME = os.getenv("SUPERADMIN_LASTNAME", "Admin")
    SUPERADMIN_COMPANY = os.getenv("SUPERADMIN_COMPANY", "Institute")

    LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
