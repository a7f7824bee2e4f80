"""Repo-wide test fixtures.

Snapshots and restores TaskHub environment variables between tests so a
module that sets one cannot leak it into the next.
"""

from __future__ import annotations

import os

import pytest

_SENSITIVE_ENV_VARS = [
    "TASKHUB_ENV",
    "TASKHUB_BIND",
    "TASKHUB_PORT",
    "TASKHUB_ALLOW_NONLOCAL",
    "TASKHUB_ENABLE_DOCS",
    "TASKHUB_TOKEN_SECRET",
    "TASKHUB_TOKEN_TTL_SECONDS",
    "TASKHUB_STORE_PERSIST",
    "TASKHUB_STORE_PATH",
    "TASKHUB_DATA_DIR",
    "TASKHUB_CONFLICT_RETRIES",
    "TASKHUB_LOG_FORMAT",
]


@pytest.fixture(autouse=True)
def _restore_env():
    """Snapshot TaskHub env vars before each test and restore after."""
    snapshot = {}
    for var in _SENSITIVE_ENV_VARS:
        val = os.environ.get(var)
        if val is not None:
            snapshot[var] = val

    yield

    for var in _SENSITIVE_ENV_VARS:
        if var in snapshot:
            os.environ[var] = snapshot[var]
        else:
            os.environ.pop(var, None)
