"""JWT token helpers. Tokens carry the caller's ``company_id``."""

from datetime import datetime, timedelta, timezone

from jose import JWTError, jwt

from contractor_platform.app.config import get_settings

settings = get_settings()


def create_access_token(company_id: str, subject: str) -> str:
    expire = datetime.now(timezone.utc) + timedelta(minutes=settings.jwt_expiration_minutes)
    payload = {"sub": subject, "company_id": company_id, "exp": expire}
    return jwt.encode(payload, settings.jwt_secret_key, algorithm=settings.jwt_algorithm)


def decode_token(token: str) -> dict | None:
    try:
        return jwt.decode(token, settings.jwt_secret_key, algorithms=[settings.jwt_algorithm])
    except JWTError:
        return None
