from __future__ import annotations

import base64
import hashlib
import hmac
import logging
import os
from typing import Optional, Tuple

from fastapi import Depends, HTTPException, Request, status

from .config import settings
from .dependencies import get_storage
from .models import User
from .storage import Storage

logger = logging.getLogger(__name__)


def generate_token_value() -> str:
    raw = os.urandom(32)
    return base64.urlsafe_b64encode(raw).decode("utf-8").rstrip("=")


def token_hash(token: str) -> str:
    digest = hmac.new(settings.token_secret.encode(), msg=token.encode(), digestmod=hashlib.sha256)
    return digest.hexdigest()


def issue_token(storage: Storage, user: User) -> Tuple[str, str]:
    """Store a new token for ``user`` and return ``(token_value, token_hash)``.

    Only the hash is persisted; the value cannot be recovered later.
    """
    token_value = generate_token_value()
    hashed = token_hash(token_value)
    storage.add_token(user.id, hashed)
    return token_value, hashed


def _bearer_token(request: Request) -> Optional[str]:
    header = request.headers.get("Authorization", "")
    scheme, _, value = header.partition(" ")
    if scheme.lower() != "bearer" or not value.strip():
        return None
    return value.strip()


def resolve_user(storage: Storage, token_value: Optional[str]) -> Optional[User]:
    if not token_value:
        return None
    return storage.get_user_by_token_hash(token_hash(token_value))


def get_current_user(request: Request, storage: Storage = Depends(get_storage)) -> User:
    user = resolve_user(storage, _bearer_token(request))
    if user is None:
        logger.debug("Rejected request to %s without valid token", request.url.path)
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Authentication required",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return user
