import pytest

from shelfmark import create_app
from shelfmark.config import TestConfig
from shelfmark.extensions import db
from shelfmark.models import create_user


@pytest.fixture
def app():
    app = create_app(TestConfig)
    with app.app_context():
        db.drop_all()
        db.create_all()
    yield app


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def app_ctx(app):
    with app.app_context():
        yield app
        db.session.remove()


@pytest.fixture
def user(app_ctx):
    user = create_user("alice", "secret")
    db.session.commit()
    return user
