"""Simple bearer-token auth for the topology editor."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Literal

from fastapi import Header, HTTPException, Request

from clabtopo import config


@dataclass
class EditorIdentity:
    role: Literal["editor"] = "editor"


def _parse_bearer(authorization: str | None) -> str | None:
    if not authorization:
        return None
    parts = authorization.split()
    if len(parts) == 2 and parts[0].lower() == "bearer":
        return parts[1]
    return None


def require_editor(
    request: Request,
    authorization: str | None = Header(default=None),
) -> EditorIdentity:
    token = _parse_bearer(authorization)

    if not token:
        token = request.query_params.get("token")

    if not token:
        raise HTTPException(401, "Authorization header or token query parameter required")
    if token != config.EDITOR_TOKEN:
        raise HTTPException(401, "Invalid token")
    return EditorIdentity()
