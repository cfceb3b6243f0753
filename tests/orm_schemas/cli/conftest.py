"""Shared fixtures for CLI tests."""

from pathlib import Path

import pytest
from typer.testing import CliRunner


@pytest.fixture
def cli_runner() -> CliRunner:
    """Return a Typer CliRunner for testing commands."""
    return CliRunner()


@pytest.fixture
def schemas_dir(tmp_path: Path) -> Path:
    """A schemas directory with User and Post, Post belonging to User."""
    directory = tmp_path / "schemas"
    directory.mkdir()
    (directory / "User.py").write_text('attributes = {"name": {"type": "string", "allow_null": False}}\n')
    (directory / "Post.py").write_text(
        'attributes = {"title": "string"}\nassociations = {"one_to_many": ["User"]}\n'
    )
    (directory / "_helpers.py").write_text("raise RuntimeError('never imported')\n")
    return directory


@pytest.fixture
def config_file(tmp_path: Path, schemas_dir: Path) -> Path:
    """A YAML registry configuration on a file-backed SQLite database."""
    path = tmp_path / "registry.yaml"
    path.write_text(
        f"schemas_dir: {schemas_dir}\n"
        f"retry_timeout_ms: 10\n"
        f"orm:\n"
        f"  url: sqlite+aiosqlite:///{tmp_path / 'app.db'}\n"
    )
    return path
