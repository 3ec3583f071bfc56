import time

import jwt
import pytest

from common.security import (
    InvalidSignature, MalformedToken, TokenAuthenticator, TokenExpired, Unauthorized,
    check_password, hash_password,
)

SECRET = b"unit-test-secret"


@pytest.fixture
def auth():
    return TokenAuthenticator(SECRET, ttl_seconds=72 * 3600, issuer="loyalty-test")


class TestTokens:

    @pytest.mark.parametrize("user_id", [0, 1, 42, 2**31 - 1, 10**12])
    def test_verify_returns_issued_user(self, auth, user_id):
        assert auth.verify(auth.issue(user_id)) == user_id

    def test_token_is_printable(self, auth):
        assert auth.issue(7).isprintable()

    def test_expired_token_is_rejected(self, auth):
        issued_at = int(time.time()) - 73 * 3600
        token = auth.issue(5, now=issued_at)
        with pytest.raises(TokenExpired):
            auth.verify(token)

    def test_expired_token_is_rejected_before_signature_check(self, auth):
        payload = {"iss": "loyalty-test", "sub": "5", "iat": 1, "exp": 2}
        forged = jwt.encode(payload, b"other-secret", algorithm="HS256")
        with pytest.raises(TokenExpired):
            auth.verify(forged)

    def test_token_expires_at_its_expiry_second(self, auth, monkeypatch):
        expiry = 2_000_000_000
        payload = {"iss": "loyalty-test", "sub": "5", "iat": expiry - 60, "exp": expiry}
        forged = jwt.encode(payload, b"other-secret", algorithm="HS256")
        monkeypatch.setattr(time, "time", lambda: float(expiry))
        with pytest.raises(TokenExpired):
            auth.verify(forged)

    def test_foreign_secret_fails_signature(self, auth):
        other = TokenAuthenticator(b"other-secret", issuer="loyalty-test")
        with pytest.raises(InvalidSignature):
            auth.verify(other.issue(5))

    def test_tampered_payload_fails_signature(self, auth):
        header, _, signature = auth.issue(5).split(".")
        now = int(time.time())
        forged_payload = jwt.encode(
            {"iss": "loyalty-test", "sub": "6", "iat": now, "exp": now + 60}, b"x", algorithm="HS256"
        ).split(".")[1]
        with pytest.raises(InvalidSignature):
            auth.verify(f"{header}.{forged_payload}.{signature}")

    @pytest.mark.parametrize("token", ["", "garbage", "a.b.c", "deadbeef" * 8])
    def test_malformed_tokens(self, auth, token):
        with pytest.raises(MalformedToken):
            auth.verify(token)

    def test_failures_are_unauthorized(self):
        for exc in (MalformedToken, TokenExpired, InvalidSignature):
            assert issubclass(exc, Unauthorized)

    def test_empty_secret_refused(self):
        with pytest.raises(ValueError):
            TokenAuthenticator(b"")


class TestPasswords:

    def test_hash_and_check(self):
        hashed = hash_password("secret")
        assert hashed != "secret"
        assert check_password("secret", hashed)
        assert not check_password("Secret", hashed)

    def test_garbage_hash_does_not_match(self):
        assert not check_password("secret", "not-a-bcrypt-hash")
