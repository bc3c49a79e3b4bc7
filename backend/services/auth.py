from datetime import datetime, timedelta

from fastapi import Depends, HTTPException
from fastapi.security import OAuth2PasswordBearer
from jose import JWTError, jwt

from shared.utils import config

SECRET_KEY = config.get("secret_key", "supersecret")
ALGORITHM = "HS256"

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/token")
# Optional auth scheme that allows anonymous sessions
oauth2_scheme_optional = OAuth2PasswordBearer(tokenUrl="/token", auto_error=False)


def create_access_token(user_id: str, expires_minutes: int | None = None) -> str:
    """Create JWT access token whose subject is the user id."""
    claims: dict[str, object] = {"sub": user_id}
    if expires_minutes:
        claims["exp"] = datetime.utcnow() + timedelta(minutes=expires_minutes)
    return jwt.encode(claims, SECRET_KEY, algorithm=ALGORITHM)


def decode_user_id(token: str) -> str:
    """Return the subject of a bearer token or raise 401."""
    try:
        payload = jwt.decode(token, SECRET_KEY, algorithms=[ALGORITHM])
    except JWTError as e:
        raise HTTPException(status_code=401, detail="Invalid token") from e
    user_id = payload.get("sub")
    if not isinstance(user_id, str) or not user_id:
        raise HTTPException(status_code=401, detail="Invalid token")
    return user_id


async def get_current_user_id(token: str = Depends(oauth2_scheme)) -> str:
    return decode_user_id(token)


async def get_optional_user_id(token: str | None = Depends(oauth2_scheme_optional)) -> str | None:
    """User id for authenticated requests, None for anonymous ones."""
    if not token:
        return None
    return decode_user_id(token)


def verify_cron_secret(authorization: str | None) -> None:
    """Check the shared secret guarding the scheduling trigger, when one is configured."""
    secret = config.get("cron_secret")
    if not secret:
        return
    if authorization != f"Bearer {secret}":
        raise HTTPException(status_code=401, detail="Unauthorized")
