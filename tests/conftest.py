"""Shared test fixtures and helpers for brainstore tests."""

import logging
import tempfile
from pathlib import Path

import pytest

from brainstore.config import Settings
from brainstore.runtime import Runtime


# --- Fixtures ---


@pytest.fixture
def temp_root():
    """Provide a temporary brain store root.

    Yields a Path to a temporary directory that's cleaned up after the test.
    """
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def settings(temp_root):
    return Settings(root=temp_root, lock_timeout=5.0)


@pytest.fixture
def runtime(settings):
    """Provide a freshly booted runtime (system + default brain created)."""
    return Runtime.boot(settings)


@pytest.fixture
def repo(runtime):
    return runtime.repository


@pytest.fixture
def recorded(runtime):
    """Names of every event emitted on the runtime's bus, in order."""
    names = []
    runtime.events.subscribe("brain.*", lambda event: names.append(event.name))
    return names


@pytest.fixture
def demo_repo(repo):
    """Repository with project 'demo' holding a small hierarchy.

    demo/
      article          v1, v2 (active)
      characters       v1
      characters/heroes/aria   v1
      characters/heroes/bran   v1
    """
    repo.create_project("demo", title="Demo", description="Test project")
    repo.save_entity("demo", "article", {"title": "A"})
    repo.save_entity("demo", "article", {"title": "B"})
    repo.save_entity("demo", "characters", {"kind": "folder"})
    repo.save_entity("demo", "characters/heroes/aria", {"name": "Aria"})
    repo.save_entity("demo", "characters/heroes/bran", {"name": "Bran"})
    return repo


@pytest.fixture(autouse=True)
def restore_root_logging():
    """configure_logging replaces root handlers; put pytest's back afterwards."""
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    yield
    for handler in root.handlers:
        if handler not in handlers:
            handler.close()
    root.handlers[:] = handlers
    root.setLevel(level)
