import pytest

from app import create_app
from config import TestConfig
from models import db
from biometric.actors import Actor


@pytest.fixture
def app():
    app = create_app(TestConfig)
    with app.app_context():
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture
def admin():
    return Actor(1, permissions=("*",))


@pytest.fixture
def viewer():
    return Actor(2, permissions=())
