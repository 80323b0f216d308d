from datetime import datetime, timedelta, timezone

import pytest

from services.auth_tokens import AuthTokenError, create_access_token, create_admin_token, decode_token


def test_access_token_round_trip_carries_subject_and_scope() -> None:
    token, ttl = create_access_token(installation_id="inst-1", order_id="tvmax-1", expires_in=timedelta(days=7))

    claims = decode_token(token, scope="access")

    assert ttl == 7 * 86400
    assert claims["sub"] == "inst-1"
    assert claims["order_id"] == "tvmax-1"
    assert claims["jti"]


def test_admin_token_is_rejected_for_access_scope() -> None:
    token, _ = create_admin_token(admin_id="a-1", username="root", role="super_admin")

    with pytest.raises(AuthTokenError) as excinfo:
        decode_token(token, scope="access")
    assert excinfo.value.code == "auth.token_invalid"


def test_tampered_token_is_invalid() -> None:
    token, _ = create_access_token(installation_id="inst-1")

    with pytest.raises(AuthTokenError) as excinfo:
        decode_token(token[:-2] + ("AA" if not token.endswith("AA") else "BB"))
    assert excinfo.value.code == "auth.token_invalid"


def test_token_signed_with_other_secret_is_invalid(monkeypatch: pytest.MonkeyPatch) -> None:
    token, _ = create_access_token(installation_id="inst-1")
    monkeypatch.setenv("APP_JWT_SECRET", "another-secret-value-for-tests-0000")

    with pytest.raises(AuthTokenError):
        decode_token(token)


def test_expired_token_reports_expiry() -> None:
    token, _ = create_access_token(
        installation_id="inst-1",
        expires_in=timedelta(hours=1),
        now=datetime.now(timezone.utc) - timedelta(hours=2),
    )

    with pytest.raises(AuthTokenError) as excinfo:
        decode_token(token)
    assert excinfo.value.code == "auth.token_expired"


def test_blank_installation_cannot_be_issued() -> None:
    with pytest.raises(AuthTokenError):
        create_access_token(installation_id="")


def test_missing_secret_fails_loudly(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("APP_JWT_SECRET", raising=False)
    monkeypatch.delenv("JWT_SECRET", raising=False)

    with pytest.raises(RuntimeError):
        create_access_token(installation_id="inst-1")
