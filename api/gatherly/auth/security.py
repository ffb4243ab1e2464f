from datetime import datetime, timedelta, timezone
from typing import Any

import jwt
from fastapi import HTTPException

from gatherly.config import ACCESS_TOKEN_TTL_MINUTES, JWT_SECRET

ALGORITHM = "HS256"


def create_access_token(user_id: str, ttl_minutes: int | None = None, extra_claims: dict[str, Any] | None = None) -> str:
    if not JWT_SECRET:
        raise HTTPException(status_code=500, detail="JWT secret not configured")
    now = datetime.now(timezone.utc)
    exp = now + timedelta(minutes=ttl_minutes or ACCESS_TOKEN_TTL_MINUTES)
    payload: dict[str, Any] = {
        **(extra_claims or {}),
        "sub": user_id,
        "iat": int(now.timestamp()),
        "exp": int(exp.timestamp()),
    }
    return jwt.encode(payload, JWT_SECRET, algorithm=ALGORITHM)


def decode_access_token(token: str) -> dict[str, Any]:
    if not JWT_SECRET:
        raise HTTPException(status_code=500, detail="JWT secret not configured")
    try:
        payload = jwt.decode(token, JWT_SECRET, algorithms=[ALGORITHM])
        if not isinstance(payload, dict):
            raise HTTPException(status_code=401, detail="Invalid token")
        return payload
    except jwt.ExpiredSignatureError as exc:
        raise HTTPException(status_code=401, detail="Token expired") from exc
    except jwt.PyJWTError as exc:
        raise HTTPException(status_code=401, detail="Invalid token") from exc
