import os, tempfile

# Must be set before the app module is imported: the engine is built at import.
_db_dir : str = tempfile.mkdtemp(prefix='engblog-tests-')
os.environ['DATABASE_URL'] = f'sqlite:///{os.path.join(_db_dir, "test.db")}'
os.environ['SECRET_KEY'] = 'test-secret'
os.environ['BLOG_STORAGE_KEY'] = 'blog-posts'

import pytest

from app import app as blog_app
from models import db
from store import PostStore


@pytest.fixture
def app():
    blog_app.config.update(TESTING=True)
    with blog_app.app_context():
        db.drop_all()
        db.create_all()
        yield blog_app
        db.session.remove()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def store(app):
    return PostStore(app.config['BLOG_STORAGE_KEY'])
