from typing import Optional

from jose import jwt, JWTError

from app.config import get_settings

settings = get_settings()


class InvalidToken(Exception):
    pass


def decode_token(token: str, token_type: str = "access") -> dict:
    """Decode a JWT issued by the auth service and verify its type."""
    try:
        payload = jwt.decode(token, settings.JWT_SECRET, algorithms=[settings.JWT_ALGORITHM])
    except JWTError as exc:
        raise InvalidToken("Invalid or expired token") from exc
    if payload.get("type", token_type) != token_type:
        raise InvalidToken(f"Invalid token type. Expected {token_type}")
    return payload


def user_id_from_token(token: Optional[str]) -> Optional[str]:
    """Subject of a valid access token; raises InvalidToken when it is not usable."""
    if not token:
        return None
    if token.startswith("Bearer "):
        token = token[len("Bearer "):]
    sub = decode_token(token).get("sub")
    if not sub:
        raise InvalidToken("No user ID in token")
    return str(sub)
