from fastapi import Depends, HTTPException
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from jose import JWTError
from sqlalchemy.orm import Session
from taskhub.core.config import settings
from taskhub.core.security import decode_access_token
from taskhub.db.session import get_db
from taskhub.services.authorization import AuthorizationContext, build_authorization_context
from taskhub.services.query_fields import FieldRegistry, load_field_registry

bearer = HTTPBearer(auto_error=False)

def get_token_claims(creds: HTTPAuthorizationCredentials | None = Depends(bearer)) -> dict | None:
    if not creds:
        if settings.ANONYMOUS_ACCESS_ENABLED:
            return None
        raise HTTPException(status_code=401, detail="Missing bearer token")
    try:
        return decode_access_token(creds.credentials)
    except JWTError:
        raise HTTPException(status_code=401, detail="Invalid token")

def get_authorization_context(
    claims: dict | None = Depends(get_token_claims),
    db: Session = Depends(get_db),
) -> AuthorizationContext | None:
    # None is passed on so the engine reports the missing identity itself.
    return build_authorization_context(db, claims)

def get_field_registry(db: Session = Depends(get_db)) -> FieldRegistry:
    return load_field_registry(db)
