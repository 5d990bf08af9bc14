"""Authentication helpers and FastAPI security dependencies.

Identity is issued by an external provider as a signed JWT whose `sub`
claim is the user id. This module only verifies such tokens and turns
them into an explicit `SessionContext` that handlers receive as a
dependency; nothing here keeps per-user state between requests.

`get_current_session` rejects anonymous callers, `get_optional_session`
lets them through with `None` (respondents may take quizzes without an
account).
"""

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional

from fastapi import HTTPException, Security
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
import jwt

from .config import settings

bearer_scheme = HTTPBearer()
optional_bearer_scheme = HTTPBearer(auto_error=False)


@dataclass(frozen=True)
class SessionContext:
    """The authenticated caller of a request."""
    user_id: str
    email: Optional[str] = None
    name: Optional[str] = None


def decode_token(token: str):
    """Decode and verify a JWT token.

    Returns the decoded payload on success or raises an HTTPException
    with status 401 on failure.
    """
    kwargs = {"algorithms": [settings.JWT_ALGORITHM]}
    if settings.JWT_AUDIENCE:
        kwargs["audience"] = settings.JWT_AUDIENCE
    else:
        kwargs["options"] = {"verify_aud": False}
    try:
        return jwt.decode(token, settings.JWT_SECRET, **kwargs)
    except jwt.ExpiredSignatureError:
        raise HTTPException(status_code=401, detail='token expired')
    except jwt.InvalidTokenError:
        raise HTTPException(status_code=401, detail='invalid token')


def create_access_token(user_id: str, email: Optional[str] = None, name: Optional[str] = None,
                        expires_in: timedelta = timedelta(hours=1)) -> str:
    """Sign a token the way the identity provider does.

    Used by local tooling and the test-suite; production tokens come
    from the provider and share the same secret.
    """
    payload = {"sub": user_id, "exp": int((datetime.now(timezone.utc) + expires_in).timestamp())}
    if email:
        payload["email"] = email
    if name:
        payload["name"] = name
    if settings.JWT_AUDIENCE:
        payload["aud"] = settings.JWT_AUDIENCE
    return jwt.encode(payload, settings.JWT_SECRET, algorithm=settings.JWT_ALGORITHM)


def _session_from_token(token: str) -> SessionContext:
    payload = decode_token(token)
    user_id = payload.get('sub')
    if not user_id:
        raise HTTPException(status_code=401, detail='invalid token payload')
    return SessionContext(user_id=str(user_id), email=payload.get('email'), name=payload.get('name'))


def get_current_session(credentials: HTTPAuthorizationCredentials = Security(bearer_scheme)) -> SessionContext:
    """FastAPI dependency returning the caller's session; 401/403 when absent or invalid."""
    return _session_from_token(credentials.credentials)


def get_optional_session(
    credentials: Optional[HTTPAuthorizationCredentials] = Security(optional_bearer_scheme),
) -> Optional[SessionContext]:
    """Like `get_current_session` but anonymous callers get `None`.

    A token that is present but invalid is still rejected.
    """
    if credentials is None:
        return None
    return _session_from_token(credentials.credentials)
