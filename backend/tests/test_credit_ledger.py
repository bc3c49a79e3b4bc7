from sqlalchemy.orm import Session

from models.database import Batch, Clip, CreditTransaction
from services.billing.ledger import CreditLedger, debit_key, refund_key
from shared.enums import PaymentStatus, TransactionType


def make_batch(db: Session, user_id: str | None, charge: int, clip_count: int) -> Batch:
    batch = Batch(
        user_id=user_id,
        intent_text="test intent",
        preset_key="AUTO",
        resolved_preset_key="FOUNDERS",
        mode="hook_test",
        batch_size=clip_count,
        output_type="video",
        status="running",
        quality_mode="balanced",
        base_cost_cents=0,
        user_charge_cents=charge,
        refunded_cents=0,
        payment_status=PaymentStatus.CHARGED.value if user_id else PaymentStatus.FREE.value,
    )
    db.add(batch)
    db.flush()
    for index in range(clip_count):
        db.add(Clip(batch_id=batch.id, variant_id=f"V{index + 1:02d}"))
    db.commit()
    return batch


def test_add_credits_creates_account(db_session: Session) -> None:
    ledger = CreditLedger(db_session)
    assert ledger.get_balance("new-user") == 0
    assert ledger.add_credits("new-user", 500) == 500
    assert ledger.add_credits("new-user", 250, TransactionType.BONUS) == 750
    assert [tx.amount_cents for tx in ledger.list_transactions("new-user")] == [250, 500]


def test_add_credits_is_idempotent_with_key(db_session: Session) -> None:
    ledger = CreditLedger(db_session)
    ledger.add_credits("buyer", 1000, idempotency_key="purchase:abc")
    ledger.add_credits("buyer", 1000, idempotency_key="purchase:abc")
    assert ledger.get_balance("buyer") == 1000


def test_debit_reduces_balance_once(db_session: Session, funded_user: str) -> None:
    ledger = CreditLedger(db_session)
    assert ledger.debit(funded_user, "batch-1", 360) is True
    assert ledger.debit(funded_user, "batch-1", 360) is True
    assert ledger.get_balance(funded_user) == 10_000 - 360
    assert ledger.has_transaction(debit_key("batch-1"))


def test_debit_fails_on_insufficient_balance(db_session: Session) -> None:
    ledger = CreditLedger(db_session)
    ledger.add_credits("poor-user", 100)
    assert ledger.debit("poor-user", "batch-2", 360) is False
    assert ledger.get_balance("poor-user") == 100
    assert not ledger.has_transaction(debit_key("batch-2"))


def test_debit_fails_without_account(db_session: Session) -> None:
    assert CreditLedger(db_session).debit("nobody", "batch-3", 10) is False


def test_refund_is_idempotent_per_clip(db_session: Session, funded_user: str) -> None:
    ledger = CreditLedger(db_session)
    ledger.debit(funded_user, "batch-4", 360)

    assert ledger.refund(funded_user, "batch-4", "clip-a", 90) is True
    assert ledger.refund(funded_user, "batch-4", "clip-a", 90) is False
    assert ledger.refund(funded_user, "batch-4", "clip-b", 90) is True

    assert ledger.get_balance(funded_user) == 10_000 - 360 + 180
    assert ledger.refunded_total("batch-4") == 180
    assert ledger.has_transaction(refund_key("batch-4", "clip-a"))


def test_refund_clip_share_caps_at_charge(db_session: Session, funded_user: str) -> None:
    ledger = CreditLedger(db_session)
    batch = make_batch(db_session, funded_user, charge=100, clip_count=3)
    ledger.debit(funded_user, batch.id, 100)
    clips = db_session.query(Clip).filter(Clip.batch_id == batch.id).order_by(Clip.variant_id).all()

    # ceil(100 / 3) = 34, 34, then whatever is left
    assert [ledger.refund_clip_share(batch, clip) for clip in clips] == [34, 34, 32]
    assert batch.refunded_cents == 100
    assert batch.payment_status == PaymentStatus.REFUNDED.value
    assert ledger.get_balance(funded_user) == 10_000
    assert all(clip.refunded for clip in clips)


def test_refund_clip_share_twice_credits_once(db_session: Session, funded_user: str) -> None:
    ledger = CreditLedger(db_session)
    batch = make_batch(db_session, funded_user, charge=360, clip_count=4)
    ledger.debit(funded_user, batch.id, 360)
    clip = db_session.query(Clip).filter(Clip.batch_id == batch.id).first()

    assert ledger.refund_clip_share(batch, clip) == 90
    assert ledger.refund_clip_share(batch, clip) == 0
    assert batch.refunded_cents == 90
    assert batch.payment_status == PaymentStatus.CHARGED.value
    refunds = (
        db_session.query(CreditTransaction)
        .filter(CreditTransaction.batch_id == batch.id, CreditTransaction.transaction_type == "refund")
        .count()
    )
    assert refunds == 1


def test_refund_clip_share_skips_free_batches(db_session: Session) -> None:
    ledger = CreditLedger(db_session)
    batch = make_batch(db_session, None, charge=360, clip_count=2)
    clip = db_session.query(Clip).filter(Clip.batch_id == batch.id).first()
    assert ledger.refund_clip_share(batch, clip) == 0


def test_refund_keeps_a_debit_committed_by_another_session(
    db_session: Session, second_session: Session, funded_user: str
) -> None:
    ledger = CreditLedger(db_session)
    assert ledger.get_account(funded_user).balance_cents == 10_000

    assert CreditLedger(second_session).debit(funded_user, "batch-other", 3000) is True
    assert ledger.refund(funded_user, "batch-x", "clip-1", 100) is True

    assert ledger.get_balance(funded_user) == 7_100
    assert CreditLedger(second_session).get_balance(funded_user) == 7_100
    assert ledger.list_transactions(funded_user)[0].balance_after_cents == 7_100


def test_clip_refunds_from_two_sessions_both_reach_the_batch(
    db_session: Session, second_session: Session, funded_user: str
) -> None:
    ledger = CreditLedger(db_session)
    batch = make_batch(db_session, funded_user, charge=360, clip_count=4)
    ledger.debit(funded_user, batch.id, 360)
    first, second = db_session.query(Clip).filter(Clip.batch_id == batch.id).order_by(Clip.variant_id).all()[:2]

    # Loaded before either refund, so this copy of the batch still says 0
    other_batch = second_session.get(Batch, batch.id)
    other_clip = second_session.get(Clip, second.id)
    assert other_batch.refunded_cents == 0

    assert ledger.refund_clip_share(batch, first) == 90
    assert CreditLedger(second_session).refund_clip_share(other_batch, other_clip) == 90

    db_session.expire_all()
    assert db_session.get(Batch, batch.id).refunded_cents == 180
    assert ledger.refunded_total(batch.id) == 180
    assert ledger.get_balance(funded_user) == 10_000 - 360 + 180
