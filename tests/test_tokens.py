"""Unit tests for auth/tokens.py -- JWT codec and opaque token helpers.

Covers:
- encode/decode round trip with the {sub, email, type, jti, iat, exp} claim shape
- every decode failure maps to a distinct TokenVerificationError reason
- generate_secure_token() entropy/format and hash_token() determinism
"""

from datetime import datetime, timedelta, timezone

import pytest
from jose import jwt

from auth.tokens import ACCESS, REFRESH, TokenCodec, TokenVerificationError, generate_secure_token, hash_token

_SECRET = "unit-test-secret-0123456789abcdef0123456789"


@pytest.fixture
def codec():
    return TokenCodec(_SECRET)


def _reason(codec: TokenCodec, token: str, expected_type: str = ACCESS) -> str:
    with pytest.raises(TokenVerificationError) as exc_info:
        codec.decode(token, expected_type)
    return exc_info.value.reason


# ---------------------------------------------------------------------------
# TestEncodeDecode
# ---------------------------------------------------------------------------


class TestEncodeDecode:
    def test_round_trip_preserves_claims(self, codec):
        issued = codec.encode("user-1", "a@example.com", ACCESS, 900)
        claims = codec.decode(issued.token, ACCESS)
        assert claims.sub == "user-1"
        assert claims.email == "a@example.com"
        assert claims.type == ACCESS
        assert claims.jti == issued.jti

    def test_expiry_matches_requested_lifetime(self, codec):
        issued = codec.encode("user-1", "a@example.com", REFRESH, 3600)
        claims = codec.decode(issued.token, REFRESH)
        assert (claims.exp - claims.iat) == timedelta(seconds=3600)

    def test_every_token_gets_a_fresh_jti(self, codec):
        a = codec.encode("user-1", "a@example.com", REFRESH, 60)
        b = codec.encode("user-1", "a@example.com", REFRESH, 60)
        assert a.jti != b.jti
        assert a.token != b.token

    def test_payload_contains_exactly_the_documented_claims(self, codec):
        issued = codec.encode("user-1", "a@example.com", ACCESS, 60)
        payload = jwt.get_unverified_claims(issued.token)
        assert set(payload) == {"sub", "email", "type", "jti", "iat", "exp"}


# ---------------------------------------------------------------------------
# TestDecodeFailures
# ---------------------------------------------------------------------------


class TestDecodeFailures:
    def test_expired(self, codec):
        issued = codec.encode("user-1", "a@example.com", ACCESS, -10)
        assert _reason(codec, issued.token) == "expired"

    def test_wrong_secret(self, codec):
        other = TokenCodec("another-secret-0123456789abcdef0123456789")
        issued = other.encode("user-1", "a@example.com", ACCESS, 60)
        assert _reason(codec, issued.token) == "bad_signature"

    def test_wrong_type(self, codec):
        issued = codec.encode("user-1", "a@example.com", ACCESS, 60)
        assert _reason(codec, issued.token, expected_type=REFRESH) == "wrong_type"

    def test_missing_claims(self, codec):
        token = jwt.encode(
            {"sub": "user-1", "type": ACCESS, "exp": datetime.now(timezone.utc) + timedelta(minutes=5)},
            _SECRET,
            algorithm="HS256",
        )
        assert _reason(codec, token) == "invalid_claims"

    @pytest.mark.parametrize("garbage", ["", "not.a.jwt", "abc", "a.b"])
    def test_garbage_is_malformed(self, codec, garbage):
        assert _reason(codec, garbage) in ("malformed", "bad_signature")

    def test_tampered_payload_rejected(self, codec):
        issued = codec.encode("user-1", "a@example.com", ACCESS, 60)
        header, _, signature = issued.token.split(".")
        forged = jwt.encode(
            {
                "sub": "admin",
                "email": "a@example.com",
                "type": ACCESS,
                "jti": "x",
                "iat": datetime.now(timezone.utc),
                "exp": datetime.now(timezone.utc) + timedelta(minutes=5),
            },
            "attacker-secret",
            algorithm="HS256",
        ).split(".")[1]
        assert _reason(codec, f"{header}.{forged}.{signature}") == "bad_signature"


# ---------------------------------------------------------------------------
# TestOpaqueTokens
# ---------------------------------------------------------------------------


class TestOpaqueTokens:
    def test_secure_token_is_64_hex_chars(self):
        token = generate_secure_token()
        assert len(token) == 64
        int(token, 16)

    def test_secure_tokens_are_unique(self):
        assert len({generate_secure_token() for _ in range(100)}) == 100

    def test_hash_token_is_deterministic_sha256(self):
        assert hash_token("abc") == hash_token("abc")
        assert hash_token("abc") == "ba7816bf8f01cfea414140de5dae2223b00361a396177a9cb410ff61f20015ad"

    def test_hash_differs_from_raw(self):
        raw = generate_secure_token()
        assert hash_token(raw) != raw
