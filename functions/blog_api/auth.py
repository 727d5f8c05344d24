"""
Shared-secret bearer check for mutating routes.
"""

from __future__ import annotations

import hmac

from fastapi import Depends, Header, HTTPException, status

from blog_api.config import Settings, get_settings


def is_authorized(authorization: str | None, editor_password: str | None) -> bool:
    # With no secret configured nothing is authorized.
    if not editor_password or not authorization:
        return False
    expected = f"Bearer {editor_password}"
    return hmac.compare_digest(authorization.encode("utf-8"), expected.encode("utf-8"))


def require_editor(
    authorization: str | None = Header(default=None),
    settings: Settings = Depends(get_settings),
) -> None:
    if not is_authorized(authorization, settings.editor_password):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED, detail="Unauthorized"
        )
