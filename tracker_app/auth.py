"""
Bearer-token identity for the tracker API.

The tracker trusts tokens minted elsewhere: it checks the RS256 signature
against ``JWT_PUBLIC_KEY`` and reads the acting user from the claims. Views
wrapped in ``require_auth`` find that user on ``flask.g``.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from functools import wraps
from typing import Any

import jwt
from flask import Response, current_app, g, jsonify, request

TOKEN_ALGORITHMS = ["RS256"]
REQUIRED_CLAIMS = ["user_id", "username", "iat", "exp"]


@dataclass(frozen=True)
class Identity:
    """The acting user named by a verified token."""

    user_id: str
    username: str

    @classmethod
    def from_claims(cls, claims: dict[str, Any]) -> Identity | None:
        user_id = claims.get("user_id")
        username = claims.get("username")
        if not isinstance(user_id, str) or not user_id.strip():
            return None
        if not isinstance(username, str) or not username.strip():
            return None
        return cls(user_id=user_id, username=username)


def verify_token(
    token: str,
    public_key: str,
    algorithms: list[str] | None = None,
) -> dict[str, Any] | None:
    """
    Decode ``token`` and return its claims, or ``None`` when it is unusable.

    A token is unusable when the signature, ``exp`` or ``iat`` check fails
    (with ``JWT_CLOCK_SKEW_SECONDS`` of leeway), a required claim is absent,
    or the identity claims are not non-empty strings.
    """
    leeway = int(current_app.config.get("JWT_CLOCK_SKEW_SECONDS", 30))
    try:
        claims = jwt.decode(
            token,
            public_key,
            algorithms=algorithms or TOKEN_ALGORITHMS,
            options={"require": REQUIRED_CLAIMS},
            leeway=leeway,
        )
    except jwt.InvalidTokenError:
        return None
    return claims if Identity.from_claims(claims) is not None else None


def _bearer_token() -> str | None:
    scheme, _, token = request.headers.get("Authorization", "").partition(" ")
    if scheme != "Bearer":
        return None
    return token.strip() or None


def require_auth(view_func: Callable[..., tuple[Response, int] | Response]):
    """
    Reject the request with ``401`` unless it carries a valid bearer token.

    On success the caller is available as ``g.identity``, with the
    ``g.user_id`` / ``g.username`` shortcuts used by the route handlers.
    """

    @wraps(view_func)
    def wrapper(*args, **kwargs):
        token = _bearer_token()
        if token is None:
            return jsonify({"error": "Missing or invalid Authorization header"}), 401

        claims = verify_token(token, current_app.config["JWT_PUBLIC_KEY"])
        if claims is None:
            return jsonify({"error": "Invalid or expired token"}), 401

        g.identity = Identity.from_claims(claims)
        g.user_id = g.identity.user_id
        g.username = g.identity.username
        return view_func(*args, **kwargs)

    return wrapper
