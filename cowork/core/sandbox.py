"""
Workspace containment for every path the executor touches.
"""

import logging
import os

from cowork.core.errors import OutOfBoundsError

logger = logging.getLogger(__name__)


def _normalize(path: str) -> str:
    return os.path.normpath(os.path.abspath(path))


def is_within(base: str, target: str) -> bool:
    """True if ``target`` is ``base`` or nested under it (lexical check)."""
    base_norm = _normalize(base)
    target_norm = _normalize(target)
    if target_norm == base_norm:
        return True
    prefix = base_norm if base_norm.endswith(os.sep) else base_norm + os.sep
    return target_norm.startswith(prefix)


def resolve(base: str, relative: str) -> str:
    """
    Resolve ``relative`` against the workspace ``base`` and return the
    absolute path. Absolute inputs are accepted only when they already sit
    inside the workspace.

    The symlink-resolved location must also stay inside the
    (symlink-resolved) workspace. realpath resolves the existing prefix of
    a path that does not exist yet, so a new file under a linked directory
    is caught too.

    Raises:
        OutOfBoundsError: the path escapes the workspace.
    """
    if relative is None:
        raise OutOfBoundsError("<none>", base)
    raw = str(relative)
    base_norm = _normalize(base)
    candidate = os.path.normpath(os.path.join(base_norm, raw))

    if not is_within(base_norm, candidate):
        logger.error("BLOCKED: %s resolves outside workspace %s", raw, base_norm)
        raise OutOfBoundsError(raw, base_norm)

    real_base = os.path.realpath(base_norm)
    real_target = os.path.realpath(candidate)
    if not is_within(real_base, real_target):
        logger.error("BLOCKED: %s links outside workspace %s", raw, base_norm)
        raise OutOfBoundsError(raw, base_norm)

    return candidate
