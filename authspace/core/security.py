import hashlib
import secrets
from datetime import UTC, datetime, timedelta
from typing import Any

import jwt
from argon2 import PasswordHasher
from argon2.exceptions import InvalidHashError, VerificationError

from authspace.core.config import get_settings

ph = PasswordHasher(time_cost=3, memory_cost=64 * 1024, parallelism=2)

# Verified against when the identifier is unknown so both failure paths pay for one hash.
DUMMY_HASH = ph.hash(secrets.token_urlsafe(16))

SESSION_TOKEN_BYTES = 16


def generate_raw_token(nbytes: int = 32) -> str:
    return secrets.token_urlsafe(nbytes)


def hash_token(raw_token: str) -> str:
    return hashlib.sha256(raw_token.encode("utf-8")).hexdigest()


def hash_password(plain: str) -> str:
    return ph.hash(plain)


def verify_password(plain: str, hashed: str | None) -> bool:
    if not hashed:
        _verify_dummy(plain)
        return False
    try:
        return ph.verify(hashed, plain)
    except (VerificationError, InvalidHashError):
        return False


def _verify_dummy(plain: str) -> None:
    try:
        ph.verify(DUMMY_HASH, plain)
    except VerificationError:
        pass


class InvalidToken(Exception):
    """The out-of-band token is malformed, tampered with or expired."""


class TokenSigner:
    """Signs short payloads into opaque bearer strings for mailed links.

    The secret never leaves this object; the engine only ever sees the
    resulting strings and the payloads recovered from them.
    """

    def __init__(self, secret: str, algorithm: str = "HS256") -> None:
        self._secret = secret
        self._algorithm = algorithm

    def sign(self, payload: dict[str, Any], ttl: timedelta) -> str:
        now = datetime.now(UTC)
        claims = {
            **payload,
            "iat": int(now.timestamp()),
            "exp": int((now + ttl).timestamp()),
            "nonce": secrets.token_hex(8),
        }
        return jwt.encode(claims, self._secret, algorithm=self._algorithm)

    def verify(self, token: str | None) -> dict[str, Any]:
        if not token:
            raise InvalidToken("missing token")
        try:
            return jwt.decode(token, self._secret, algorithms=[self._algorithm])
        except jwt.InvalidTokenError as exc:
            raise InvalidToken(str(exc)) from exc


def get_token_signer() -> TokenSigner:
    settings = get_settings()
    return TokenSigner(settings.secret, settings.jwt_algo)
