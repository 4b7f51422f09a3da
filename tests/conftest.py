import os
import sys

import pytest

sys.path.append(os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))
os.environ['FLASK_ENV'] = 'testing'

from werkzeug.security import generate_password_hash

from app import app as flask_app
from extensions import db
from models import User, Document

SAMPLE_NOTES = (
    "Photosynthesis is the process by which green plants convert light energy into chemical energy. "
    "It takes place in the chloroplasts and produces glucose and oxygen from carbon dioxide and water."
)


@pytest.fixture
def app(tmp_path):
    flask_app.config['UPLOAD_FOLDER'] = str(tmp_path)
    with flask_app.app_context():
        db.create_all()
        yield flask_app
        db.session.remove()
        db.drop_all()


@pytest.fixture
def client(app):
    return app.test_client()


def make_user(email='student@example.com', password='secret123', **kwargs):
    user = User(email=email, password_hash=generate_password_hash(password), name='Test Student', **kwargs)
    db.session.add(user)
    db.session.commit()
    return user


def make_document(user, notes=SAMPLE_NOTES, status='ready', title='Biology notes', **kwargs):
    doc = Document(user_id=user.id, title=title, file_name=f"{title}.txt", file_type='text/plain',
                   notes=notes, status=status, processing_progress=100 if status == 'ready' else 0, **kwargs)
    db.session.add(doc)
    db.session.commit()
    return doc


def login(client, user):
    with client.session_transaction() as sess:
        sess['user_id'] = user.id


@pytest.fixture
def user(app):
    return make_user()


@pytest.fixture
def other_user(app):
    return make_user(email='other@example.com')


@pytest.fixture
def auth_client(client, user):
    login(client, user)
    return client


def refreshed(model, pk):
    """Reload a row after a request has committed changes to it."""
    db.session.expire_all()
    return db.session.get(model, pk)
