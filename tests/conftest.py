import pytest

from app import create_app
from db import ensure_schema


@pytest.fixture
def make_app(tmp_path):
    """Build an app on a throwaway SQLite file and submissions file."""

    def _make(provision=True, **overrides):
        config = {
            "TESTING": True,
            "DATABASE_URL": f"sqlite:///{tmp_path / 'forms.db'}",
            "FORM_SUBMISSIONS_FILE": str(tmp_path / "form-submissions.json"),
            "ADMIN_API_TOKEN": "admin-secret",
            "RATELIMIT_ENABLED": False,
        }
        config.update(overrides)
        app = create_app(config)
        if provision:
            ensure_schema(app)
        return app

    return _make


@pytest.fixture
def app(make_app):
    return make_app()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def brochure_payload():
    return {
        "form_type": "brochure",
        "first_name": "Asha",
        "email": "a@x.com",
        "phone": "9876543210",
        "consent": True,
    }
