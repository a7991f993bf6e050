import uuid

import pytest

from app.auth.tokens import TokenIssuer
from app.exceptions import TokenInvalid


def _issuer(**overrides) -> TokenIssuer:
    kwargs = {"issuer": "tempmail-identity", "audience": "tempmail-api"}
    kwargs.update(overrides)
    return TokenIssuer("test-secret", **kwargs)


def test_issue_and_verify_round_trip() -> None:
    issuer = _issuer()
    user_id = uuid.uuid4()
    payload = issuer.verify(issuer.issue(user_id, "a@x.com"))
    assert payload.user_id == user_id
    assert payload.email == "a@x.com"


def test_from_settings_uses_configured_secret(settings) -> None:
    issuer = TokenIssuer.from_settings(settings)
    token = issuer.issue(uuid.uuid4(), "a@x.com")
    with pytest.raises(TokenInvalid):
        TokenIssuer(
            "another-secret", issuer=settings.jwt_issuer, audience=settings.jwt_audience
        ).verify(token)


def test_tampered_token_is_rejected() -> None:
    issuer = _issuer()
    token = issuer.issue(uuid.uuid4(), "a@x.com")
    header, payload, signature = token.split(".")
    tampered = ".".join([header, payload, signature[::-1]])
    with pytest.raises(TokenInvalid):
        issuer.verify(tampered)


def test_expired_token_is_rejected() -> None:
    issuer = _issuer(expire_seconds=-60)
    token = issuer.issue(uuid.uuid4(), "a@x.com")
    with pytest.raises(TokenInvalid) as exc_info:
        issuer.verify(token)
    assert exc_info.value.message == "Invalid or expired token. Please login again."


def test_wrong_audience_is_rejected() -> None:
    token = _issuer(audience="someone-else").issue(uuid.uuid4(), "a@x.com")
    with pytest.raises(TokenInvalid):
        _issuer().verify(token)


@pytest.mark.parametrize("garbage", ["", "not-a-jwt", "a.b.c"])
def test_malformed_token_is_rejected(garbage: str) -> None:
    with pytest.raises(TokenInvalid):
        _issuer().verify(garbage)


def test_oauth_state_round_trip() -> None:
    issuer = _issuer()
    issuer.verify_oauth_state(issuer.issue_oauth_state())


def test_oauth_state_and_access_token_are_not_interchangeable() -> None:
    issuer = _issuer()
    with pytest.raises(TokenInvalid):
        issuer.verify(issuer.issue_oauth_state())
    with pytest.raises(TokenInvalid):
        issuer.verify_oauth_state(issuer.issue(uuid.uuid4(), "a@x.com"))
