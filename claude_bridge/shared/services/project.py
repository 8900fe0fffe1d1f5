"""Project identity for backend transcript directories.

The backend stores each project's transcripts under
``<claude_home>/projects/<PROJECT_KEY>/``, where the key is the absolute
project path with every non-alphanumeric character replaced by ``-``.
Example: /home/user/my_app -> -home-user-my-app
"""
from __future__ import annotations

import re
from pathlib import Path

_KEY_UNSAFE = re.compile(r"[^A-Za-z0-9-]")


def get_project_key(project_path: str | Path) -> str:
    """Map an absolute project path to its transcript directory name."""
    resolved = Path(project_path).expanduser().resolve()
    return _KEY_UNSAFE.sub("-", str(resolved))


def candidate_project_keys(project_path: str | Path) -> list[str]:
    """Keys to try, newest convention first.

    Older backend builds only replaced ``/`` and dropped the leading dash.
    """
    key = get_project_key(project_path)
    legacy = str(Path(project_path).expanduser().resolve()).replace("/", "-").lstrip("-")
    keys = [key]
    for extra in (key.lstrip("-"), legacy):
        if extra and extra not in keys:
            keys.append(extra)
    return keys


def project_dir_from_key(key: str) -> str:
    """Best-effort inverse of ``get_project_key`` (``-`` back to ``/``)."""
    return key.replace("-", "/")


def get_projects_root(claude_home: str | Path) -> Path:
    return Path(claude_home).expanduser() / "projects"
