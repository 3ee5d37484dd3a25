"""
Centralised path helpers for Cowork.

* ``base_path()``  – project root (directory containing ``config/``).
* ``config_path()`` – default ``config/rules.yaml``.
* ``logs_dir()``   – ``logs/<subdir>`` (created lazily).
"""

import os
from pathlib import Path
from typing import Optional


def base_path() -> str:
    """Return the project root (directory containing ``config/``).

    Resolution order:
    1. ``COWORK_ROOT`` environment variable (normalised).
    2. Walk up from *this* file (up to 6 levels) looking for ``config/``.
    3. Current working directory as last resort.
    """
    env = os.environ.get("COWORK_ROOT")
    if env:
        return os.path.normpath(env)

    cur = Path(__file__).resolve().parent
    for _ in range(6):
        if (cur / "config").is_dir():
            return str(cur)
        cur = cur.parent

    return os.getcwd()


def config_path(filename: str = "rules.yaml") -> str:
    return os.path.join(base_path(), "config", filename)


def logs_dir(subdir: str = "", root: Optional[str] = None) -> str:
    """Return (and ensure existence of) ``logs/<subdir>``."""
    base = root or os.path.join(base_path(), "logs")
    d = os.path.join(base, subdir) if subdir else base
    os.makedirs(d, exist_ok=True)
    return d
