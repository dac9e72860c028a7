"""Unit tests for auth/tokens.py and auth/apikeys.py.

Covers:
- Key format, prefix length, and uniqueness across many generations
- HMAC hashing is deterministic and never equals the raw key
- Identity JWT round trip; tampered and expired tokens decode to None
- Header extraction (Bearer cw_..., X-API-Key, JWT bearer ignored)
- authenticate_api_key: one distinct code per failure, store errors fail closed
- scope_allows: admin scope grants everything
"""

from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy.exc import SQLAlchemyError

from auth.apikeys import authenticate_api_key, extract_api_key, scope_allows
from auth.models import ApiKey, Identity
from auth.store import UserStore
from auth.tokens import (
    API_KEY_PREFIX,
    KEY_PREFIX_LENGTH,
    create_identity_token,
    decode_identity_token,
    generate_api_key,
    hash_api_key,
)
from core.errors import AuthenticationInvalid, EvaluationFailed


@pytest.fixture
def store():
    s = UserStore("sqlite:///:memory:")
    yield s
    s.close()


def _insert_key(store: UserStore, **fields) -> str:
    generated = generate_api_key()
    store.create_api_key(
        ApiKey(
            user_id="u-1",
            name="ci",
            key_hash=generated.key_hash,
            key_prefix=generated.key_prefix,
            **fields,
        )
    )
    return generated.key


class BrokenStore:
    def get_api_key_by_hash(self, key_hash):
        raise SQLAlchemyError("database is locked")


# ---------------------------------------------------------------------------
# Generation and hashing
# ---------------------------------------------------------------------------


class TestGenerateApiKey:
    def test_format(self) -> None:
        generated = generate_api_key()
        assert generated.key.startswith(API_KEY_PREFIX)
        assert len(generated.key) == len(API_KEY_PREFIX) + 64
        assert generated.key_prefix == generated.key[:KEY_PREFIX_LENGTH]
        assert len(generated.key_prefix) == 12

    def test_keys_are_unique(self) -> None:
        keys = {generate_api_key().key for _ in range(10_000)}
        assert len(keys) == 10_000

    def test_repr_hides_raw_key(self) -> None:
        generated = generate_api_key()
        assert generated.key not in repr(generated)

    def test_hash_is_deterministic(self) -> None:
        generated = generate_api_key()
        assert hash_api_key(generated.key) == generated.key_hash
        assert hash_api_key(generated.key) == hash_api_key(generated.key)
        assert generated.key_hash != generated.key
        assert len(generated.key_hash) == 64


class TestIdentityToken:
    def test_round_trip(self) -> None:
        identity = Identity(id="u-1", email="a@example.test", username="a", groups=("admins", "developers"))
        decoded = decode_identity_token(create_identity_token(identity, expire_seconds=60))
        assert decoded == Identity(id="u-1", email="a@example.test", name=None, username="a", groups=("admins", "developers"))

    def test_tampered_token(self) -> None:
        token = create_identity_token(Identity(id="u-1"), expire_seconds=60)
        header, payload, _ = token.split(".")
        assert decode_identity_token(f"{header}.{payload}.{'A' * 43}") is None

    def test_garbage(self) -> None:
        assert decode_identity_token("not-a-jwt") is None


# ---------------------------------------------------------------------------
# Extraction
# ---------------------------------------------------------------------------


class TestExtractApiKey:
    def test_bearer_key(self) -> None:
        assert extract_api_key("Bearer cw_live_abc", None) == "cw_live_abc"

    def test_x_api_key(self) -> None:
        assert extract_api_key(None, "cw_live_abc") == "cw_live_abc"

    def test_bearer_wins(self) -> None:
        assert extract_api_key("Bearer cw_live_one", "cw_live_two") == "cw_live_one"

    def test_jwt_bearer_is_not_a_key(self) -> None:
        assert extract_api_key("Bearer eyJhbGciOi.x.y", None) is None

    def test_nothing(self) -> None:
        assert extract_api_key(None, None) is None
        assert extract_api_key("", "not-a-key") is None


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------


class TestAuthenticateApiKey:
    def test_valid_key(self, store) -> None:
        raw = _insert_key(store, scopes=["read"])
        record = authenticate_api_key(store, raw, "10.0.0.1")
        assert record.user_id == "u-1"
        assert record.scopes == ["read"]

    def test_unknown_key(self, store) -> None:
        with pytest.raises(AuthenticationInvalid) as exc_info:
            authenticate_api_key(store, generate_api_key().key, None)
        assert exc_info.value.code == "invalid_api_key"

    def test_revoked_key(self, store) -> None:
        raw = _insert_key(store)
        key_id = store.get_api_key_by_hash(hash_api_key(raw)).id
        store.revoke_api_key(key_id)
        with pytest.raises(AuthenticationInvalid) as exc_info:
            authenticate_api_key(store, raw, None)
        assert exc_info.value.code == "api_key_revoked"

    def test_expired_key(self, store) -> None:
        past = (datetime.now(timezone.utc) - timedelta(days=1)).isoformat()
        raw = _insert_key(store, expires_at=past)
        with pytest.raises(AuthenticationInvalid) as exc_info:
            authenticate_api_key(store, raw, None)
        assert exc_info.value.code == "api_key_expired"

    def test_future_expiry_is_valid(self, store) -> None:
        future = (datetime.now(timezone.utc) + timedelta(days=1)).isoformat()
        raw = _insert_key(store, expires_at=future)
        assert authenticate_api_key(store, raw, None).expires_at == future

    def test_ip_whitelist(self, store) -> None:
        raw = _insert_key(store, ip_whitelist=["10.0.0.1"])
        assert authenticate_api_key(store, raw, "10.0.0.1") is not None
        with pytest.raises(AuthenticationInvalid) as exc_info:
            authenticate_api_key(store, raw, "10.0.0.2")
        assert exc_info.value.code == "ip_not_allowed"
        assert exc_info.value.status_code == 401

    def test_store_failure_fails_closed(self) -> None:
        with pytest.raises(EvaluationFailed) as exc_info:
            authenticate_api_key(BrokenStore(), generate_api_key().key, None)
        assert exc_info.value.code == "authentication_error"
        assert exc_info.value.status_code == 500


class TestScopeAllows:
    def test_exact_scope(self) -> None:
        assert scope_allows(["read"], "read")
        assert not scope_allows(["read"], "write")

    def test_admin_grants_everything(self) -> None:
        assert scope_allows(["admin"], "agents")

    def test_no_scopes(self) -> None:
        assert not scope_allows([], "read")
        assert not scope_allows(None, "read")
