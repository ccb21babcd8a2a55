"""
Shared fixtures for task ledger tests.

Each test gets its own temporary SQLite file so tests never see each other's
rows, plus services bound to that store.
"""

import os
import sys

import pytest
from fastapi.testclient import TestClient

sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", "..", "src"))

from task_ledger.api import create_app
from task_ledger.config import LedgerSettings
from task_ledger.database import LedgerDatabase
from task_ledger.documents import DocumentService
from task_ledger.projects import ProjectService
from task_ledger.tasks import TaskService

ORG = "org-test"
USER = "user-test"


@pytest.fixture
def db_path(tmp_path):
    return str(tmp_path / "ledger.db")


@pytest.fixture
def db(db_path):
    database = LedgerDatabase(db_path)
    yield database
    database.close()


@pytest.fixture
def projects(db):
    return ProjectService(db)


@pytest.fixture
def tasks(db):
    return TaskService(db)


@pytest.fixture
def documents(db):
    return DocumentService(db)


@pytest.fixture
def project(projects):
    return projects.create_project(ORG, USER, name="Auth Service")


@pytest.fixture
def client(db, db_path):
    settings = LedgerSettings(database_path=db_path, page_size=2, max_page_size=5)
    app = create_app(database=db, settings=settings)
    return TestClient(app)


@pytest.fixture
def headers():
    return {"X-Organization-Id": ORG, "X-User-Id": USER}
