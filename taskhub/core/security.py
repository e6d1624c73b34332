from datetime import datetime, timedelta, timezone
from typing import Iterable

from jose import jwt

from taskhub.core.config import settings

ALGORITHM = "HS256"


def create_access_token(
    user_id: int,
    permissions: Iterable[str] = (),
    expires_delta: timedelta | None = None,
) -> str:
    """Sign a bearer token for ``user_id``.

    ``permissions`` become the ``permissions`` claim: grants that hold in every
    project, e.g. ``view_work_packages`` for auditors.
    """
    now = datetime.now(timezone.utc)
    ttl = expires_delta if expires_delta is not None else timedelta(minutes=settings.JWT_TTL_MINUTES)
    claims = {"sub": str(user_id), "iat": int(now.timestamp()), "exp": int((now + ttl).timestamp())}
    granted = sorted(set(permissions))
    if granted:
        claims["permissions"] = granted
    return jwt.encode(claims, settings.JWT_SECRET, algorithm=ALGORITHM)


def decode_access_token(token: str) -> dict:
    # Raises JWTError (ExpiredSignatureError included) for anything unusable.
    return jwt.decode(token, settings.JWT_SECRET, algorithms=[ALGORITHM])
