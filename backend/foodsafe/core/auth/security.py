from jose import JWTError, jwt

from foodsafe.settings import get_settings

settings = get_settings()


def decode_access_token(token: str) -> dict:
    """Verify a bearer token issued by the auth provider and return its claims."""
    options = {"verify_aud": settings.JWT_AUDIENCE is not None}
    payload = jwt.decode(
        token,
        settings.JWT_SECRET,
        algorithms=[settings.JWT_ALGORITHM],
        audience=settings.JWT_AUDIENCE,
        options=options,
    )
    if not payload.get("sub"):
        raise JWTError("Token has no subject")
    return payload
