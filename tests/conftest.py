"""Shared fixtures for Task Master tests."""

import copy
import json
from pathlib import Path

import pytest

from taskmaster.models import TaskCollection


SAMPLE_DOCUMENT = {
    "tasks": [
        {
            "id": 1,
            "title": "Project setup",
            "description": "Initialize repository and tooling",
            "status": "done",
            "priority": "high",
            "dependencies": [],
            "keywords": ["setup", "config", "tooling"],
            "flowNames": ["Onboarding"],
            "relevantTasks": [],
        },
        {
            "id": 2,
            "title": "User authentication",
            "description": "Login with email and password",
            "details": "Use bcrypt for password storage",
            "status": "pending",
            "priority": "high",
            "dependencies": [1],
            "keywords": ["auth", "login", "security"],
            "flowNames": ["User Login"],
            "relevantTasks": [3],
            "subtasks": [
                {
                    "id": 1,
                    "title": "Password hashing",
                    "description": "Hash passwords",
                    "status": "done",
                    "dependencies": [],
                },
                {
                    "id": 2,
                    "title": "Login endpoint",
                    "description": "POST /login",
                    "status": "pending",
                    "dependencies": ["2.1"],
                },
            ],
        },
        {
            "id": 3,
            "title": "Session management",
            "description": "Issue and refresh session tokens",
            "status": "pending",
            "priority": "medium",
            "dependencies": [2],
            "keywords": ["session", "auth", "tokens"],
            "flowNames": ["User Login"],
            "relevantTasks": [2],
        },
        {
            "id": 4,
            "title": "Dashboard UI",
            "description": "Charts for account activity",
            "status": "pending",
            "priority": "low",
            "dependencies": [],
            "keywords": ["dashboard", "ui", "charts"],
            "flowNames": ["Reporting"],
            "relevantTasks": [5],
        },
        {
            "id": 5,
            "title": "Payment processing",
            "description": "Charge cards through the payment gateway",
            "status": "blocked",
            "priority": "high",
            "dependencies": [1],
            "keywords": ["payments", "billing", "gateway"],
            "flowNames": ["Checkout"],
            "relevantTasks": [],
        },
    ],
    "metadata": {"projectName": "Sample", "version": 3},
}


@pytest.fixture(autouse=True)
def clean_environment(monkeypatch):
    """Keep Task Master environment variables from leaking into tests."""
    for name in ("TASKMASTER_PROJECT_ROOT", "TASKMASTER_STORAGE_DIR"):
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def sample_document():
    """A fresh copy of the sample task document."""
    return copy.deepcopy(SAMPLE_DOCUMENT)


@pytest.fixture
def collection(sample_document):
    """The sample document parsed into a TaskCollection."""
    return TaskCollection.from_dict(sample_document)


def write_tasks(root: Path, document) -> Path:
    """Write ``document`` as the tasks file of a project rooted at ``root``."""
    path = root / ".taskmaster" / "tasks" / "tasks.json"
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(document, indent=2), encoding="utf-8")
    return path


def read_tasks(root: Path):
    path = root / ".taskmaster" / "tasks" / "tasks.json"
    return json.loads(path.read_text(encoding="utf-8"))


@pytest.fixture
def project_root(tmp_path, sample_document):
    """A project directory whose tasks file holds the sample document."""
    write_tasks(tmp_path, sample_document)
    return tmp_path
