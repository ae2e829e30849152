import json

import pytest
from jose.utils import base64url_decode, base64url_encode

import passkeys.tokens as tokens_module
from passkeys.tokens import (
    ChallengeTokenService,
    KeyState,
    ServiceNotReady,
    SigningKeyPair,
    SigningKeyUnavailable,
    TokenExpired,
    TokenInvalid,
)


@pytest.fixture
def keys():
    pair = SigningKeyPair()
    pair.generate()
    return pair


@pytest.fixture
def service(keys):
    return ChallengeTokenService(keys, issuer="example.com", default_ttl=300)


def test_issue_and_verify_round_trip(service):
    token = service.issue({"challenge": "abc", "userName": "alice", "sub": "aGFuZGxl"})
    claims = service.verify(token)
    assert claims["challenge"] == "abc"
    assert claims["userName"] == "alice"
    assert claims["iss"] == "example.com"
    assert claims["exp"] - claims["iat"] == 300


def test_none_claims_are_dropped_and_reserved_claims_protected(service):
    token = service.issue({"challenge": "abc", "userName": None, "exp": 1, "iss": "evil"})
    claims = service.verify(token)
    assert "userName" not in claims
    assert claims["iss"] == "example.com"
    assert claims["exp"] > 1


def test_expired_token(service):
    token = service.issue({"challenge": "abc"}, ttl=-10)
    with pytest.raises(TokenExpired):
        service.verify(token)


def test_tampered_payload_is_invalid(service):
    token = service.issue({"challenge": "abc", "userName": "alice"})
    header, payload, signature = token.split(".")
    claims = json.loads(base64url_decode(payload.encode()))
    claims["userName"] = "mallory"
    forged = base64url_encode(json.dumps(claims).encode()).decode()
    with pytest.raises(TokenInvalid):
        service.verify(".".join([header, forged, signature]))


@pytest.mark.parametrize("token", ["", "garbage", "a.b.c"])
def test_malformed_tokens_are_invalid(service, token):
    with pytest.raises(TokenInvalid):
        service.verify(token)


def test_token_from_another_process_key_is_invalid(service):
    other_keys = SigningKeyPair()
    other_keys.generate()
    other = ChallengeTokenService(other_keys, issuer="example.com")
    with pytest.raises(TokenInvalid):
        service.verify(other.issue({"challenge": "abc"}))


def test_wrong_issuer_is_invalid(keys, service):
    other = ChallengeTokenService(keys, issuer="other.example")
    with pytest.raises(TokenInvalid):
        service.verify(other.issue({"challenge": "abc"}))


def test_key_pair_lifecycle_ready():
    pair = SigningKeyPair()
    assert pair.state is KeyState.INITIALIZING
    with pytest.raises(ServiceNotReady):
        pair.wait(timeout=0)
    pair.start()
    private_pem, public_pem = pair.wait(timeout=10)
    assert pair.state is KeyState.READY
    assert b"PRIVATE KEY" in private_pem
    assert b"PUBLIC KEY" in public_pem


def test_service_refuses_before_key_is_ready():
    service = ChallengeTokenService(SigningKeyPair(), issuer="example.com", ready_timeout=0.01)
    with pytest.raises(ServiceNotReady):
        service.issue({"challenge": "abc"})
    with pytest.raises(ServiceNotReady):
        service.verify("a.b.c")


def test_failed_key_generation_blocks_service(monkeypatch):
    def boom(*args, **kwargs):
        raise RuntimeError("no entropy")

    monkeypatch.setattr(tokens_module.ec, "generate_private_key", boom)
    pair = SigningKeyPair()
    pair.generate()
    assert pair.state is KeyState.FAILED
    service = ChallengeTokenService(pair, issuer="example.com")
    with pytest.raises(SigningKeyUnavailable):
        service.issue({"challenge": "abc"})
