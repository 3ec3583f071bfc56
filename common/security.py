import time, jwt, bcrypt
from typing import Optional
from common.error_handling import BusinessLogicError, ErrorCodes

ALGO = "HS256"


class Unauthorized(BusinessLogicError):
    """Credentials or token rejected."""
    code = ErrorCodes.UNAUTHORIZED


class MalformedToken(Unauthorized):
    pass


class TokenExpired(Unauthorized):
    pass


class InvalidSignature(Unauthorized):
    pass


class TokenAuthenticator:
    """Stateless signed tokens carrying a user id and an absolute expiry.

    The secret is the trust anchor of the whole service: it is handed over once
    at startup and never changes for the lifetime of the instance. There is no
    revocation, a token stays valid until its embedded expiry.
    """

    def __init__(self, secret: bytes, ttl_seconds: int = 72 * 3600, issuer: str = "loyalty"):
        if not secret:
            raise ValueError("token secret must not be empty")
        self._secret = secret
        self.ttl_seconds = ttl_seconds
        self.issuer = issuer

    def issue(self, user_id: int, now: Optional[int] = None) -> str:
        now = int(time.time()) if now is None else now
        payload = {
            "iss": self.issuer,
            "sub": str(user_id),
            "iat": now,
            "exp": now + self.ttl_seconds,
        }
        return jwt.encode(payload, self._secret, algorithm=ALGO)

    def verify(self, token: str) -> int:
        # expiry is checked before the signature
        try:
            unverified = jwt.decode(token, options={"verify_signature": False, "verify_exp": False})
        except jwt.DecodeError as e:
            raise MalformedToken(f"cannot decode token: {e}") from e
        exp = unverified.get("exp")
        if not isinstance(exp, int):
            raise MalformedToken("token carries no expiry")
        if int(time.time()) >= exp:
            raise TokenExpired("token expired")

        try:
            claims = jwt.decode(
                token,
                self._secret,
                algorithms=[ALGO],
                issuer=self.issuer,
                options={"require": ["exp", "iat", "iss", "sub"]},
            )
        except jwt.ExpiredSignatureError as e:
            raise TokenExpired("token expired") from e
        except jwt.InvalidSignatureError as e:
            raise InvalidSignature("token signature mismatch") from e
        except jwt.InvalidTokenError as e:
            raise MalformedToken(str(e)) from e

        try:
            return int(claims["sub"])
        except ValueError as e:
            raise MalformedToken("subject is not a user id") from e


def hash_password(password: str) -> str:
    return bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt()).decode("ascii")


def check_password(password: str, hashed: str) -> bool:
    try:
        return bcrypt.checkpw(password.encode("utf-8"), hashed.encode("ascii"))
    except ValueError:
        return False
