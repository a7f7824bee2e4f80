"""Signed actor tokens with HMAC-SHA256 signatures.

Token format:  tht_<base64url(JSON)>.<hex HMAC-SHA256>

The payload carries ``sub`` (actor id), ``role`` (global role) and
``exp`` (unix seconds). A verified token is the only way the HTTP layer
learns who the actor is.
"""

from __future__ import annotations

import base64
import binascii
import hashlib
import hmac
import json
import time
from typing import Any, Dict, Optional, Union

from taskhub_v1.core.errors import AuthenticationRequired, InvalidRoleError
from taskhub_v1.core.teams.models import Actor
from taskhub_v1.core.teams.roles import GlobalRole, parse_global_role

TOKEN_PREFIX = "tht_"
DEFAULT_TTL_SECONDS = 24 * 3600


def create_token(secret: str, payload: Dict[str, Any]) -> str:
    """Create an HMAC-signed actor token.

    Args:
        secret: HMAC signing secret (TASKHUB_TOKEN_SECRET).
        payload: dict with keys ``sub``, ``role`` and ``exp``.

    Returns:
        Token string ``tht_<b64payload>.<hex_signature>``.
    """
    json_bytes = json.dumps(payload, separators=(",", ":"), sort_keys=True).encode()
    b64_payload = base64.urlsafe_b64encode(json_bytes).decode().rstrip("=")
    sig = hmac.new(secret.encode(), json_bytes, hashlib.sha256).hexdigest()
    return f"{TOKEN_PREFIX}{b64_payload}.{sig}"


def issue_token(
    secret: str,
    actor_id: str,
    role: Union[str, GlobalRole] = GlobalRole.EMPLOYEE,
    ttl_seconds: int = DEFAULT_TTL_SECONDS,
    now: Optional[float] = None,
) -> str:
    role = parse_global_role(role)
    issued = time.time() if now is None else now
    return create_token(secret, {"sub": actor_id, "role": role.value, "exp": issued + ttl_seconds})


def verify_token(secret: str, token: str) -> Actor:
    """Verify a token and return the actor it names.

    Raises:
        ValueError: on invalid format, bad signature, unknown role or expiry.
    """
    if not token.startswith(TOKEN_PREFIX):
        raise ValueError("Invalid token prefix")

    body = token[len(TOKEN_PREFIX):]
    parts = body.split(".", 1)
    if len(parts) != 2:
        raise ValueError("Invalid token format")

    b64_part, sig_part = parts
    padding = 4 - (len(b64_part) % 4)
    if padding != 4:
        b64_part += "=" * padding

    try:
        json_bytes = base64.urlsafe_b64decode(b64_part)
    except (binascii.Error, ValueError):
        raise ValueError("Invalid base64 payload") from None

    expected_sig = hmac.new(secret.encode(), json_bytes, hashlib.sha256).hexdigest()
    if not hmac.compare_digest(sig_part, expected_sig):
        raise ValueError("Invalid token signature")

    data = json.loads(json_bytes)
    if time.time() > data.get("exp", 0):
        raise ValueError("Token expired")

    sub = data.get("sub")
    if not sub:
        raise ValueError("Token has no subject")
    try:
        role = parse_global_role(data.get("role", GlobalRole.EMPLOYEE.value))
    except InvalidRoleError as exc:
        raise ValueError(str(exc)) from None
    return Actor(id=sub, global_role=role)


def is_actor_token(token_str: str) -> bool:
    return token_str.startswith(TOKEN_PREFIX)


class TokenIdentityProvider:
    """Resolves the current actor from an ``Authorization: Bearer`` header."""

    def __init__(self, secret: str) -> None:
        self._secret = secret

    def current_actor(self, authorization: Optional[str]) -> Actor:
        if not authorization:
            raise AuthenticationRequired("Missing Authorization header")
        scheme, _, token = authorization.partition(" ")
        if scheme.lower() != "bearer" or not token.strip():
            raise AuthenticationRequired("Authorization header must be 'Bearer <token>'")
        token = token.strip()
        if not is_actor_token(token):
            raise AuthenticationRequired(f"Unsupported token type, expected '{TOKEN_PREFIX}...'")
        try:
            return verify_token(self._secret, token)
        except ValueError as exc:
            raise AuthenticationRequired(f"Invalid token: {exc}") from None
