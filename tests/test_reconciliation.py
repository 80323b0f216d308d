from datetime import datetime, timedelta, timezone
from typing import Optional

import jwt
import pytest
from sqlalchemy.orm import Session, sessionmaker

from core.subscription_constants import TransactionStatus
from models.payments import PaymentTransaction
from models.user import User
from services.errors import PersistenceError, ValidationError
from services.package_catalog import ensure_default_packages
from services.payments import reconciliation, transaction_store
from services.payments.reconciliation import (
    OUTCOME_COMPLETED,
    OUTCOME_DUPLICATE,
    OUTCOME_GRANT_RESUMED,
    OUTCOME_IGNORED_UNKNOWN_ORDER,
    OUTCOME_STATUS_RECORDED,
    OUTCOME_TERMINAL_CONFLICT,
    expire_stale_transactions,
    reconcile_payment,
    resume_pending_grants,
)

NOW = datetime(2024, 1, 1, tzinfo=timezone.utc)


def _pending(
    session: Session,
    *,
    order_id: str = "tvmax-order-1",
    installation_id: str = "inst-1",
    package_name: str = "Wiki 1",
    phone_number: Optional[str] = "255700000001",
    name: str = "Asha",
) -> PaymentTransaction:
    return transaction_store.create_pending(
        session,
        order_id=order_id,
        installation_id=installation_id,
        package_name=package_name,
        amount=1000,
        customer_name=name,
        phone_number=phone_number,
    )


def _user(session: Session, installation_id: str, *, expires_at=None, phone=None) -> User:
    user = User(installation_id=installation_id, subscription_expires_at=expires_at, phone_number=phone)
    session.add(user)
    session.commit()
    session.refresh(user)
    return user


@pytest.fixture(autouse=True)
def _catalog(db_session: Session) -> None:
    ensure_default_packages(db_session)


def test_completed_without_prior_expiry_grants_package_days(db_session: Session) -> None:
    _pending(db_session)
    _user(db_session, "inst-1")

    result = reconcile_payment(db_session, "tvmax-order-1", "COMPLETED", now=NOW)

    assert result.outcome == OUTCOME_COMPLETED
    assert result.granted_days == 7
    assert result.user.expiry_utc() == datetime(2024, 1, 8, tzinfo=timezone.utc)
    assert result.user.is_premium_at(NOW)
    record = transaction_store.get_transaction(db_session, "tvmax-order-1")
    assert record.status == TransactionStatus.COMPLETED.value
    assert record.access_token == result.token
    assert record.grant_applied_at is not None


def test_completed_extends_from_existing_future_expiry(db_session: Session) -> None:
    _pending(db_session)
    _user(db_session, "inst-1", expires_at=datetime(2024, 1, 10, tzinfo=timezone.utc))

    result = reconcile_payment(db_session, "tvmax-order-1", "COMPLETED", now=NOW)

    assert result.user.expiry_utc() == datetime(2024, 1, 17, tzinfo=timezone.utc)


def test_completed_extends_from_now_when_expiry_in_past(db_session: Session) -> None:
    _pending(db_session)
    _user(db_session, "inst-1", expires_at=datetime(2023, 6, 1, tzinfo=timezone.utc))

    result = reconcile_payment(db_session, "tvmax-order-1", "COMPLETED", now=NOW)

    assert result.user.expiry_utc() == NOW + timedelta(days=7)


def test_unknown_package_falls_back_to_default_days(db_session: Session) -> None:
    _pending(db_session, package_name="Legacy Plan")

    result = reconcile_payment(db_session, "tvmax-order-1", "COMPLETED", now=NOW)

    assert result.granted_days == 30
    assert result.user.expiry_utc() == NOW + timedelta(days=30)


def test_package_name_matches_case_insensitively(db_session: Session) -> None:
    _pending(db_session, package_name="  mwezi   1 ")

    result = reconcile_payment(db_session, "tvmax-order-1", "completed", now=NOW)

    assert result.granted_days == 30
    assert result.user.expiry_utc() == datetime(2024, 1, 31, tzinfo=timezone.utc)


def test_completed_creates_user_when_installation_unknown(db_session: Session) -> None:
    _pending(db_session, installation_id="fresh-install", name="Juma")

    result = reconcile_payment(db_session, "tvmax-order-1", "COMPLETED", now=NOW)

    assert result.outcome == OUTCOME_COMPLETED
    user = db_session.query(User).filter(User.installation_id == "fresh-install").one()
    assert user.display_name == "Juma"
    assert user.phone_number == "255700000001"
    assert user.expiry_utc() == datetime(2024, 1, 8, tzinfo=timezone.utc)


def test_token_is_bound_to_installation_and_granted_duration(db_session: Session) -> None:
    _pending(db_session)

    result = reconcile_payment(db_session, "tvmax-order-1", "COMPLETED", now=NOW)

    claims = jwt.decode(
        result.token,
        "test-jwt-secret-with-enough-entropy-000",
        algorithms=["HS256"],
        audience="tvmax-app",
        options={"verify_exp": False},
    )
    assert claims["sub"] == "inst-1"
    assert claims["order_id"] == "tvmax-order-1"
    assert claims["exp"] - claims["iat"] == 7 * 86400


def test_unknown_order_is_ignored_without_user_changes(db_session: Session) -> None:
    result = reconcile_payment(db_session, "tvmax-missing", "COMPLETED", now=NOW)

    assert result.outcome == OUTCOME_IGNORED_UNKNOWN_ORDER
    assert db_session.query(User).count() == 0


def test_cancelled_marks_transaction_without_touching_user(db_session: Session) -> None:
    _pending(db_session)
    user = _user(db_session, "inst-1")

    result = reconcile_payment(db_session, "tvmax-order-1", "CANCELED", now=NOW)

    assert result.outcome == OUTCOME_STATUS_RECORDED
    assert result.status is TransactionStatus.CANCELLED
    record = transaction_store.get_transaction(db_session, "tvmax-order-1")
    assert record.status == "CANCELLED"
    assert record.access_token is None
    db_session.refresh(user)
    assert user.subscription_expires_at is None
    assert user.phone_number is None


def test_duplicate_completed_does_not_extend_twice(db_session: Session) -> None:
    _pending(db_session)
    _user(db_session, "inst-1")

    first = reconcile_payment(db_session, "tvmax-order-1", "COMPLETED", now=NOW)
    second = reconcile_payment(db_session, "tvmax-order-1", "COMPLETED", now=NOW + timedelta(hours=1))

    assert second.outcome == OUTCOME_DUPLICATE
    assert second.token == first.token
    assert second.user.expiry_utc() == datetime(2024, 1, 8, tzinfo=timezone.utc)


def test_failed_after_completed_is_a_terminal_conflict(db_session: Session) -> None:
    _pending(db_session)
    reconcile_payment(db_session, "tvmax-order-1", "COMPLETED", now=NOW)

    result = reconcile_payment(db_session, "tvmax-order-1", "FAILED", now=NOW)

    assert result.outcome == OUTCOME_TERMINAL_CONFLICT
    assert transaction_store.get_transaction(db_session, "tvmax-order-1").status == "COMPLETED"


def test_completed_after_cancelled_does_not_grant(db_session: Session) -> None:
    _pending(db_session)
    reconcile_payment(db_session, "tvmax-order-1", "CANCELLED", now=NOW)

    result = reconcile_payment(db_session, "tvmax-order-1", "COMPLETED", now=NOW)

    assert result.outcome == OUTCOME_TERMINAL_CONFLICT
    assert db_session.query(User).count() == 0


def test_repeated_failure_notification_is_duplicate(db_session: Session) -> None:
    _pending(db_session)
    reconcile_payment(db_session, "tvmax-order-1", "FAILED", now=NOW)

    result = reconcile_payment(db_session, "tvmax-order-1", "FAILED", now=NOW)

    assert result.outcome == OUTCOME_DUPLICATE


def _hold_pending(session: Session, order_id: str = "tvmax-order-1") -> PaymentTransaction:
    record = transaction_store.get_transaction(session, order_id)
    assert record.status == TransactionStatus.PENDING.value
    return record


def test_completed_race_lost_on_stale_session_is_duplicate(
    db_session: Session, session_factory: sessionmaker
) -> None:
    _pending(db_session)
    _hold_pending(db_session)

    other = session_factory()
    try:
        first = reconcile_payment(other, "tvmax-order-1", "COMPLETED", now=NOW)
    finally:
        other.close()
    assert first.outcome == OUTCOME_COMPLETED

    second = reconcile_payment(db_session, "tvmax-order-1", "COMPLETED", now=NOW + timedelta(hours=1))

    assert second.outcome == OUTCOME_DUPLICATE
    assert second.token == first.token
    users = db_session.query(User).filter(User.installation_id == "inst-1").all()
    assert len(users) == 1
    assert users[0].expiry_utc() == datetime(2024, 1, 8, tzinfo=timezone.utc)


def test_failed_on_stale_session_after_completion_is_terminal_conflict(
    db_session: Session, session_factory: sessionmaker
) -> None:
    _pending(db_session)
    _hold_pending(db_session)

    other = session_factory()
    try:
        reconcile_payment(other, "tvmax-order-1", "COMPLETED", now=NOW)
    finally:
        other.close()

    result = reconcile_payment(db_session, "tvmax-order-1", "FAILED", now=NOW)

    assert result.outcome == OUTCOME_TERMINAL_CONFLICT
    assert result.status is TransactionStatus.COMPLETED
    record = transaction_store.get_transaction(db_session, "tvmax-order-1")
    assert record.status == TransactionStatus.COMPLETED.value
    assert record.failure_reason is None
    user = db_session.query(User).filter(User.installation_id == "inst-1").one()
    assert user.expiry_utc() == datetime(2024, 1, 8, tzinfo=timezone.utc)


def test_grant_claimed_elsewhere_writes_no_user(db_session: Session, session_factory: sessionmaker) -> None:
    _pending(db_session)
    transaction_store.transition_from_pending(
        db_session,
        "tvmax-order-1",
        TransactionStatus.COMPLETED,
        values={"granted_days": 7, "completed_at": NOW, "access_token": "issued-token"},
    )
    db_session.commit()
    record = transaction_store.get_transaction(db_session, "tvmax-order-1")
    assert record.grant_applied_at is None

    other = session_factory()
    try:
        assert transaction_store.claim_grant(other, "tvmax-order-1", applied_at=NOW) is True
        other.commit()
    finally:
        other.close()

    assert reconciliation._apply_grant(db_session, record, NOW) == (None, None)
    result = reconcile_payment(db_session, "tvmax-order-1", "COMPLETED", now=NOW)

    assert result.outcome == OUTCOME_DUPLICATE
    assert result.user is None
    assert result.token == "issued-token"
    assert db_session.query(User).count() == 0


def test_phone_owned_by_other_user_is_not_adopted(db_session: Session) -> None:
    _user(db_session, "other-install", phone="255700000001")
    payer = _user(db_session, "inst-1")
    _pending(db_session, phone_number="255 700-000-001")

    result = reconcile_payment(db_session, "tvmax-order-1", "COMPLETED", now=NOW)

    assert result.user.id == payer.id
    assert result.user.phone_number is None
    assert result.user.is_premium_at(NOW)


def test_new_user_drops_phone_owned_by_other_user(db_session: Session) -> None:
    _user(db_session, "other-install", phone="255700000001")
    _pending(db_session, installation_id="fresh-install")

    result = reconcile_payment(db_session, "tvmax-order-1", "COMPLETED", now=NOW)

    assert result.user.installation_id == "fresh-install"
    assert result.user.phone_number is None


def test_phone_adopted_when_user_has_none(db_session: Session) -> None:
    _user(db_session, "inst-1")
    _pending(db_session)

    result = reconcile_payment(db_session, "tvmax-order-1", "COMPLETED", now=NOW)

    assert result.user.phone_number == "255700000001"


def test_existing_phone_is_never_overwritten(db_session: Session) -> None:
    _user(db_session, "inst-1", phone="255711111111")
    _pending(db_session)

    result = reconcile_payment(db_session, "tvmax-order-1", "COMPLETED", now=NOW)

    assert result.user.phone_number == "255711111111"


@pytest.mark.parametrize("order_id", ["", "   ", None])
def test_blank_order_id_is_rejected(db_session: Session, order_id) -> None:
    with pytest.raises(ValidationError):
        reconcile_payment(db_session, order_id, "COMPLETED", now=NOW)


@pytest.mark.parametrize("payment_status", ["PENDING", "REFUNDED", "", None])
def test_unsupported_status_is_rejected(db_session: Session, payment_status) -> None:
    _pending(db_session)
    with pytest.raises(ValidationError):
        reconcile_payment(db_session, "tvmax-order-1", payment_status, now=NOW)


def test_interrupted_grant_is_resumed_by_redelivery(db_session: Session, monkeypatch: pytest.MonkeyPatch) -> None:
    _pending(db_session)
    _user(db_session, "inst-1")

    def _crash(*_args, **_kwargs):
        raise PersistenceError("payments.grant_persist_failed", "simulated crash")

    monkeypatch.setattr(reconciliation, "_apply_grant", _crash)
    with pytest.raises(PersistenceError):
        reconcile_payment(db_session, "tvmax-order-1", "COMPLETED", now=NOW)
    monkeypatch.undo()

    record = transaction_store.get_transaction(db_session, "tvmax-order-1")
    assert record.status == "COMPLETED"
    assert record.grant_applied_at is None

    result = reconcile_payment(db_session, "tvmax-order-1", "COMPLETED", now=NOW)

    assert result.outcome == OUTCOME_GRANT_RESUMED
    assert result.user.expiry_utc() == datetime(2024, 1, 8, tzinfo=timezone.utc)


def test_resume_pending_grants_applies_each_grant_once(db_session: Session, monkeypatch: pytest.MonkeyPatch) -> None:
    _pending(db_session)

    def _crash(*_args, **_kwargs):
        raise PersistenceError("payments.grant_persist_failed", "simulated crash")

    monkeypatch.setattr(reconciliation, "_apply_grant", _crash)
    with pytest.raises(PersistenceError):
        reconcile_payment(db_session, "tvmax-order-1", "COMPLETED", now=NOW)
    monkeypatch.undo()

    summary = resume_pending_grants(db_session, now=NOW)
    assert summary.resumed == ["tvmax-order-1"]
    assert resume_pending_grants(db_session, now=NOW).resumed == []

    user = db_session.query(User).filter(User.installation_id == "inst-1").one()
    assert user.expiry_utc() == datetime(2024, 1, 8, tzinfo=timezone.utc)


def test_expire_stale_transactions_only_moves_old_pending(db_session: Session) -> None:
    old = _pending(db_session, order_id="tvmax-old")
    _pending(db_session, order_id="tvmax-new")
    completed = _pending(db_session, order_id="tvmax-done", installation_id="inst-2")
    old.created_at = NOW - timedelta(days=2)
    completed.created_at = NOW - timedelta(days=2)
    db_session.query(PaymentTransaction).filter(PaymentTransaction.order_id == "tvmax-new").update(
        {"created_at": NOW - timedelta(minutes=5)}
    )
    db_session.commit()
    reconcile_payment(db_session, "tvmax-done", "COMPLETED", now=NOW)

    expired = expire_stale_transactions(db_session, older_than=timedelta(hours=24), now=NOW)

    assert expired == ["tvmax-old"]
    assert transaction_store.get_transaction(db_session, "tvmax-old").status == "EXPIRED"
    assert transaction_store.get_transaction(db_session, "tvmax-new").status == "PENDING"
    assert transaction_store.get_transaction(db_session, "tvmax-done").status == "COMPLETED"
