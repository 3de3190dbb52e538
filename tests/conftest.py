import os

# app.py builds a module-level app on import; keep it off the real database
os.environ.setdefault("SQLALCHEMY_DATABASE_URI", "sqlite://")
os.environ.setdefault("ASSET_BACKEND", "sql")
os.environ.setdefault("FLASK_SECRET_KEY", "test-secret")

import itertools

import pytest

from app import create_app
from extensions import db
from services.assets.history import MonotonicClock
from services.assets.sql_store import SqlAssetRepository


@pytest.fixture
def clock():
    ticks = itertools.count(1_700_000_000_000, 1000)
    return MonotonicClock(source=lambda: next(ticks))


@pytest.fixture
def app(clock):
    repo = SqlAssetRepository(clock=clock)
    app = create_app({"TESTING": True, "SQLALCHEMY_DATABASE_URI": "sqlite://"}, repository=repo)
    with app.app_context():
        db.create_all()
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture
def client(app, monkeypatch):
    monkeypatch.delenv("PORTAL_USERNAME", raising=False)
    monkeypatch.delenv("PORTAL_PASSWORD", raising=False)
    client = app.test_client()
    resp = client.post("/login", json={"username": "tester", "password": "x"})
    assert resp.status_code == 200
    return client
