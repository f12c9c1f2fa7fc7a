"""Access tokens and password hashing for SalesDesk principals."""
import os
import time
from typing import Optional

import jwt
from passlib.context import CryptContext

# pbkdf2_sha256 first; bcrypt is only kept so older hashes still verify
pwd_context = CryptContext(schemes=["pbkdf2_sha256", "bcrypt"], deprecated="auto")

SECRET = os.getenv("JWT_SECRET", "dev-secret")
ALGORITHM = "HS256"
ISSUER = "salesdesk"
TOKEN_TYPE = "access"
TOKEN_TTL = int(os.getenv("TOKEN_TTL_SECONDS", str(60 * 60 * 8)))  # one working day


def create_access_token(principal_id: int, role: str, expires_delta: Optional[int] = None) -> str:
    # role is a display hint for clients; privileged calls re-read it from the store
    now = int(time.time())
    payload = {
        "iss": ISSUER,
        "sub": str(principal_id),
        "typ": TOKEN_TYPE,
        "role": role,
        "iat": now,
        "exp": now + (expires_delta or TOKEN_TTL),
    }
    return jwt.encode(payload, SECRET, algorithm=ALGORITHM)


def decode_access_token(token: str) -> dict:
    """Claims of a SalesDesk access token.

    Raises jwt.PyJWTError for tampered, expired or foreign tokens.
    """
    payload = jwt.decode(
        token, SECRET, algorithms=[ALGORITHM], issuer=ISSUER,
        options={"require": ["iss", "sub", "exp"]},
    )
    if payload.get("typ") != TOKEN_TYPE:
        raise jwt.InvalidTokenError("not an access token")
    return payload


def principal_id_from_token(token: str) -> int:
    """Raises jwt.PyJWTError or ValueError when the token names no principal."""
    return int(decode_access_token(token)["sub"])


def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(plain: str, hashed: str) -> bool:
    return pwd_context.verify(plain, hashed)
