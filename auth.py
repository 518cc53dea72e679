"""Bearer token verification. Tokens carry the user's ``id`` and ``role``."""
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional

import jwt
from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from config import Settings, get_settings
from errors import Unauthorized

logger = logging.getLogger(__name__)

bearer_scheme = HTTPBearer(auto_error=False)


@dataclass(frozen=True)
class CurrentUser:
    id: str
    role: str

    @property
    def is_admin(self) -> bool:
        return self.role == "admin"


def create_token(user_id: str, role: str, settings: Settings, expires_in: Optional[timedelta] = None) -> str:
    payload = {"id": str(user_id), "role": role}
    if expires_in is not None:
        payload["exp"] = datetime.now(timezone.utc) + expires_in
    return jwt.encode(payload, settings.jwt_secret, algorithm=settings.jwt_algorithm)


def decode_token(token: str, settings: Settings) -> CurrentUser:
    try:
        payload = jwt.decode(token, settings.jwt_secret, algorithms=[settings.jwt_algorithm])
    except jwt.PyJWTError as e:
        logger.info("JWT verify error: %s", e)
        raise Unauthorized("Invalid token")
    user_id = payload.get("id")
    if not user_id:
        raise Unauthorized("Invalid token")
    return CurrentUser(id=str(user_id), role=payload.get("role") or "customer")


def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
    settings: Settings = Depends(get_settings),
) -> CurrentUser:
    if credentials is None or credentials.scheme.lower() != "bearer":
        raise Unauthorized("Missing or invalid Authorization header")
    return decode_token(credentials.credentials, settings)
