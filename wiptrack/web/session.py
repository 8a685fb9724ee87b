"""
Signed session cookie.

The cookie carries the GitHub OAuth token and identity:
    base64url(json) "." base64url(hmac_sha256(secret, json_part))
Anything missing, malformed or badly signed reads as "no session".
"""

from __future__ import annotations

import base64
import hashlib
import hmac
import json
from dataclasses import dataclass


@dataclass
class Session:
    """Authenticated identity for one request."""

    access_token: str
    user_id: str
    username: str


def _b64encode(raw: bytes) -> str:
    return base64.urlsafe_b64encode(raw).rstrip(b"=").decode("ascii")


def _b64decode(text: str) -> bytes:
    return base64.urlsafe_b64decode(text + "=" * (-len(text) % 4))


def _sign(payload: str, secret: str) -> str:
    digest = hmac.new(secret.encode("utf-8"), payload.encode("ascii"), hashlib.sha256).digest()
    return _b64encode(digest)


def encode_session(session: Session, secret: str) -> str:
    if not secret:
        raise ValueError("Session secret is not configured")
    body = json.dumps(
        {"accessToken": session.access_token, "userId": session.user_id, "username": session.username},
        separators=(",", ":"),
    )
    payload = _b64encode(body.encode("utf-8"))
    return f"{payload}.{_sign(payload, secret)}"


def decode_session(value: str | None, secret: str) -> Session | None:
    if not value or not secret or "." not in value:
        return None
    payload, signature = value.rsplit(".", 1)
    try:
        expected = _sign(payload, secret)
    except UnicodeEncodeError:
        return None
    if not hmac.compare_digest(signature.encode("utf-8"), expected.encode("ascii")):
        return None
    try:
        data = json.loads(_b64decode(payload))
    except ValueError:
        return None
    if not isinstance(data, dict):
        return None

    token = data.get("accessToken")
    user_id = data.get("userId")
    if not token or not user_id:
        return None
    return Session(access_token=str(token), user_id=str(user_id), username=str(data.get("username", "")))
