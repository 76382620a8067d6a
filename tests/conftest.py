"""Pytest fixtures: a fresh application and SQLite store per test."""

import pytest

from myblog import create_app
from myblog.datastore import DataStore
from myblog.search import PostSearchEngine


@pytest.fixture
def app(tmp_path):
    app = create_app(
        {
            "TESTING": True,
            "BLOG_DATA_DIR": str(tmp_path / "data"),
            "MAX_IMAGE_BYTES": 64,
        }
    )
    yield app
    app.extensions["datastore"].close()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def datastore(app) -> DataStore:
    return app.extensions["datastore"]


@pytest.fixture
def engine(app) -> PostSearchEngine:
    return app.extensions["post_search"]


@pytest.fixture
def java_spring_store(datastore: DataStore) -> DataStore:
    """Posts 1..3: "Java Tutorial" [Java], "Spring Guide" [Spring], "Java Advanced" [Java]."""
    datastore.create_post("Java Tutorial", "Content", ["Java"])
    datastore.create_post("Spring Guide", "Content", ["Spring"])
    datastore.create_post("Java Advanced", "Content", ["Java"])
    return datastore
