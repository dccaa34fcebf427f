import pytest

from app import create_app
from auth import create_user
from models import db
from roles import Role

ADMIN_EMAIL = "admin@example.com"
PASSWORD = "s3cret-pass"


@pytest.fixture
def app(tmp_path):
    app = create_app({
        "TESTING": True,
        "SECRET_KEY": "test-secret",
        "SQLALCHEMY_DATABASE_URI": "sqlite://",
        "UPLOAD_FOLDER": str(tmp_path / "storage"),
        "STORAGE_LOCATION": "local",
        "S3_BUCKET": "",
        "SUPERADMIN_EMAIL": ADMIN_EMAIL,
        "SUPERADMIN_PASSWORD": PASSWORD,
        "AUTO_APPROVE_USERS": True,
    })
    yield app
    with app.app_context():
        db.session.remove()
        db.drop_all()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def make_user(app):
    """Create a confirmed, approved user and return its id."""
    def _make(email, role=Role.COMPANY, approved=True, confirmed=True):
        with app.app_context():
            user = create_user(
                email, PASSWORD, "Test", email.split("@")[0], "ACME",
                role=role, email_confirmed=confirmed, approved=approved,
            )
            db.session.commit()
            return user.id
    return _make


@pytest.fixture
def login(client):
    def _login(email, password=PASSWORD):
        return client.post("/account/login", data={"email": email, "password": password})
    return _login
