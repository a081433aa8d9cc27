"""
Shared pytest fixtures for the Build Tracker test suite.

Provides:
    - app: Flask application (session-scoped, uploads in a temp dir)
    - _setup_db: Database table creation/teardown (session-scoped)
    - session: Per-test DB cleanup w/ rollback + recreate (autouse)
    - mailgun: MagicMock HTTP session behind the Mailgun gateway (autouse)
    - client: Flask test client (function-scoped)
    - make_user / auth_headers: account + bearer-token helpers
    - admin, staff, client_user (+ *_headers)
    - perth_run: "Perth Run #7" with Design(0) / Carve(1) / Finish(2)
"""

from unittest.mock import MagicMock

import pytest

from buildtrack import create_app
from buildtrack.integrations.mailgun_gateway import mailgun_gateway
from buildtrack.models import db as _db
from buildtrack.services import run_service, user_service
from buildtrack.services.jwt_service import generate_access_token

TEST_PASSWORD = "correct-horse-battery"


# ── App & DB fixtures ────────────────────────────────────────────────────


@pytest.fixture(scope="session")
def app(tmp_path_factory):
    """Create the Flask application once per test session."""
    application = create_app("testing")
    application.config["UPLOAD_FOLDER"] = str(tmp_path_factory.mktemp("uploads"))
    return application


@pytest.fixture(scope="session")
def _setup_db(app):
    """Create all tables at session start, drop at end."""
    with app.app_context():
        _db.create_all()
    yield
    with app.app_context():
        _db.drop_all()


@pytest.fixture(autouse=True)
def session(app, _setup_db):
    """Per-test: open app context, rollback after test, recreate tables."""
    with app.app_context():
        yield
        _db.session.rollback()
        _db.drop_all()
        _db.create_all()


@pytest.fixture(autouse=True)
def mailgun():
    """Replace the gateway's requests.Session; ``mailgun.post`` records every send."""
    response = MagicMock()
    response.ok = True
    response.status_code = 200
    response.json.return_value = {"id": "<test@mg.test.local>", "message": "Queued. Thank you."}
    fake = MagicMock()
    fake.post.return_value = response
    previous = mailgun_gateway._session
    mailgun_gateway._session = fake
    yield fake
    mailgun_gateway._session = previous


@pytest.fixture()
def client(app):
    """Flask test client."""
    return app.test_client()


# ── Accounts ─────────────────────────────────────────────────────────────


@pytest.fixture()
def make_user():
    def _make(role="client", email=None, name=None, password=TEST_PASSWORD):
        email = email or f"{role}-{_make.counter}@example.com"
        _make.counter += 1
        user = user_service.create_user(email, password=password, display_name=name, role=role)
        _db.session.commit()
        return user
    _make.counter = 1
    return _make


def auth_headers(user):
    return {"Authorization": f"Bearer {generate_access_token(user.uid, user.role)}"}


@pytest.fixture()
def admin(make_user):
    return make_user("admin", "admin@example.com", "Alex Admin")


@pytest.fixture()
def staff(make_user):
    return make_user("staff", "staff@example.com", "Sam Staff")


@pytest.fixture()
def client_user(make_user):
    return make_user("client", "jo@example.com", "Jo Client")


@pytest.fixture()
def admin_headers(admin):
    return auth_headers(admin)


@pytest.fixture()
def staff_headers(staff):
    return auth_headers(staff)


@pytest.fixture()
def client_headers(client_user):
    return auth_headers(client_user)


# ── Domain fixtures ──────────────────────────────────────────────────────


@pytest.fixture()
def perth_run(staff):
    run = run_service.create_run({
        "name": "Perth Run #7",
        "factory": "Perth",
        "stages": [
            {"label": "Design", "client_status_label": "Designing"},
            {"label": "Carve", "client_status_label": "Carving"},
            {"label": "Finish", "client_status_label": "Finishing"},
        ],
    }, actor=staff)
    _db.session.commit()
    return run


def stage_by_label(run, label):
    return next(s for s in run_service.list_stages(run.id) if s.label == label)
