"""Centralized server settings for the TaskHub API.

Reads TASKHUB_* environment variables with sensible defaults. Never
exposes the token secret in repr or serialization.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Any, Dict, Optional

from taskhub_v1.core.security.tokens import DEFAULT_TTL_SECONDS


def _bool_env(key: str, default: bool) -> bool:
    """Parse a 0/1 env var to bool."""
    val = os.environ.get(key)
    if val is None:
        return default
    return val.strip() in ("1", "true", "yes", "True", "TRUE")


def _int_env(key: str, default: int) -> int:
    """Parse an int env var with fallback."""
    val = os.environ.get(key)
    if val is None:
        return default
    try:
        return int(val)
    except ValueError:
        return default


@dataclass(frozen=True)
class Settings:
    """Immutable server configuration. Safe to log, the secret is masked."""

    # ── Core ───────────────────────────────────────────────────────
    env: str = "dev"
    bind: str = "127.0.0.1"
    port: int = 8080
    allow_nonlocal: bool = False
    enable_docs: bool = True

    # ── Identity ───────────────────────────────────────────────────
    token_secret: str = ""
    token_ttl_seconds: int = DEFAULT_TTL_SECONDS

    # ── Persistence ────────────────────────────────────────────────
    store_persist: bool = False
    store_path: str = ""
    data_dir: str = "/data"

    # ── Concurrency ────────────────────────────────────────────────
    conflict_retries: int = 3

    # ── Logging ────────────────────────────────────────────────────
    log_format: str = "text"

    @property
    def resolved_store_path(self) -> Optional[str]:
        """JSONL event log location, or None when persistence is off."""
        if not self.store_persist:
            return None
        if self.store_path:
            return self.store_path
        return str(Path(self.data_dir) / "taskhub_store.jsonl")

    def __repr__(self) -> str:
        return (
            f"Settings(env={self.env!r}, bind={self.bind!r}, port={self.port}, "
            f"allow_nonlocal={self.allow_nonlocal}, enable_docs={self.enable_docs}, "
            f"token_secret={'***' if self.token_secret else ''!r}, "
            f"store_persist={self.store_persist}, data_dir={self.data_dir!r}, "
            f"conflict_retries={self.conflict_retries}, log_format={self.log_format!r})"
        )

    def to_dict(self) -> Dict[str, Any]:
        """JSON-safe dict with the token secret masked."""
        return {
            "env": self.env,
            "bind": self.bind,
            "port": self.port,
            "allow_nonlocal": self.allow_nonlocal,
            "enable_docs": self.enable_docs,
            "token_secret": "configured" if self.token_secret else "not set",
            "token_ttl_seconds": self.token_ttl_seconds,
            "store_persist": self.store_persist,
            "store_path": self.store_path or "not set",
            "data_dir": self.data_dir,
            "conflict_retries": self.conflict_retries,
            "log_format": self.log_format,
        }


def load_settings(
    bind: Optional[str] = None,
    port: Optional[int] = None,
    allow_nonlocal: Optional[bool] = None,
    **overrides: Any,
) -> Settings:
    """Load settings from environment with optional overrides.

    Args:
        bind: Override bind host
        port: Override port
        allow_nonlocal: Override nonlocal binding check
        **overrides: Additional field overrides

    Returns:
        Settings instance
    """
    env = overrides.get("env", os.environ.get("TASKHUB_ENV", "dev"))
    values: Dict[str, Any] = {
        "env": env,
        "bind": os.environ.get("TASKHUB_BIND", "127.0.0.1"),
        "port": _int_env("TASKHUB_PORT", 8080),
        "allow_nonlocal": _bool_env("TASKHUB_ALLOW_NONLOCAL", False),
        "enable_docs": _bool_env("TASKHUB_ENABLE_DOCS", env != "prod"),
        "token_secret": os.environ.get("TASKHUB_TOKEN_SECRET", ""),
        "token_ttl_seconds": _int_env("TASKHUB_TOKEN_TTL_SECONDS", DEFAULT_TTL_SECONDS),
        "store_persist": _bool_env("TASKHUB_STORE_PERSIST", False),
        "store_path": os.environ.get("TASKHUB_STORE_PATH", ""),
        "data_dir": os.environ.get("TASKHUB_DATA_DIR", "/data"),
        "conflict_retries": _int_env("TASKHUB_CONFLICT_RETRIES", 3),
        "log_format": os.environ.get("TASKHUB_LOG_FORMAT", "text"),
    }

    if bind is not None:
        values["bind"] = bind
    if port is not None:
        values["port"] = port
    if allow_nonlocal is not None:
        values["allow_nonlocal"] = allow_nonlocal

    known = {f.name for f in fields(Settings)}
    unknown = set(overrides) - known
    if unknown:
        raise TypeError(f"Unknown settings: {sorted(unknown)}")
    values.update(overrides)

    return Settings(**values)


def validate_host(host: str, allow_nonlocal: bool) -> None:
    """Refuse to bind to non-localhost unless explicitly allowed."""
    local_hosts = {"127.0.0.1", "localhost", "::1"}
    if host not in local_hosts and not allow_nonlocal:
        raise ValueError(
            f"Refusing to bind to non-local host '{host}'. "
            f"Pass --allow-nonlocal to override this safety check."
        )


def print_startup_warnings(settings: Settings) -> None:
    """Print warnings about potentially unsafe settings."""
    warnings = []

    if not settings.token_secret:
        warnings.append("No token secret configured; every /v1 request will be rejected.")

    if settings.allow_nonlocal:
        warnings.append(
            "Non-local binding enabled; ensure you have proper firewall rules."
        )

    if not settings.store_persist:
        warnings.append("Store persistence is off; data is lost on restart.")

    if warnings:
        import typer

        typer.secho("\nWarnings:", fg="yellow")
        for w in warnings:
            typer.secho(f"  • {w}", fg="yellow")
        typer.echo()
