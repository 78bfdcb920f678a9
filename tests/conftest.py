"""
Shared test fixtures and configuration.
"""

import textwrap
from pathlib import Path

import pytest

from provisioner.backends.mock import MockBackend
from provisioner.core.reliability.retry import RetryPolicy

CHAIN_YAML = textwrap.dedent("""\
    name: chain
    backend: mock
    services:
      a:
        endpoint: http://localhost:1000
        install:
          unit:
            exec_start: /bin/a
        health:
          process: a
      b:
        depends_on: [a]
        install:
          unit:
            exec_start: /bin/b
        health:
          process: b
      c:
        depends_on: [b]
        install:
          unit:
            exec_start: /bin/c
        health:
          process: c
""")


@pytest.fixture
def tmp_state_dir(tmp_path: Path) -> Path:
    """Return a temporary directory for engine state."""
    state_dir = tmp_path / "state"
    state_dir.mkdir()
    return state_dir


@pytest.fixture
def write_set(tmp_path: Path):
    """Write a descriptor set YAML and return its path."""

    def _write(content: str, name: str = "stack.yml") -> Path:
        path = tmp_path / name
        path.write_text(textwrap.dedent(content))
        return path

    return _write


@pytest.fixture
def chain_file(write_set) -> Path:
    """a ← b ← c, all with process health checks."""
    return write_set(CHAIN_YAML, "chain.yml")


@pytest.fixture
def mock_backend() -> MockBackend:
    return MockBackend()


@pytest.fixture
def fast_policy() -> RetryPolicy:
    """Three attempts, no waiting."""
    return RetryPolicy.immediate(max_attempts=3)
