"""Credit ledger: user balances with idempotent debits and refunds."""

import math
from datetime import datetime

from sqlalchemy import case, func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from models.database import Batch, Clip, CreditTransaction, UserCredits
from shared.enums import PaymentStatus, TransactionType
from shared.utils import setup_logging

logger = setup_logging("credit-ledger")


def debit_key(batch_id: str) -> str:
    return f"debit:{batch_id}"


def refund_key(batch_id: str, clip_id: str) -> str:
    return f"refund:{batch_id}:{clip_id}"


class CreditLedger:
    """Balance operations for one database session.

    Every balance movement writes a CreditTransaction in the same database
    transaction as the balance update. The transaction's unique
    idempotency key is what makes a replayed debit or refund a no-op.
    """

    def __init__(self, db: Session) -> None:
        self.db = db

    def get_balance(self, user_id: str) -> int:
        balance = self.db.execute(
            select(UserCredits.balance_cents).where(UserCredits.user_id == user_id)
        ).scalar_one_or_none()
        return balance or 0

    def get_account(self, user_id: str) -> UserCredits | None:
        return self.db.query(UserCredits).filter(UserCredits.user_id == user_id).first()

    def list_transactions(self, user_id: str, limit: int = 50) -> list[CreditTransaction]:
        return (
            self.db.query(CreditTransaction)
            .filter(CreditTransaction.user_id == user_id)
            .order_by(CreditTransaction.created_at.desc(), CreditTransaction.id.desc())
            .limit(limit)
            .all()
        )

    def has_transaction(self, idempotency_key: str) -> bool:
        return (
            self.db.query(CreditTransaction.id)
            .filter(CreditTransaction.idempotency_key == idempotency_key)
            .first()
            is not None
        )

    def add_credits(
        self,
        user_id: str,
        amount_cents: int,
        transaction_type: TransactionType = TransactionType.PURCHASE,
        description: str | None = None,
        idempotency_key: str | None = None,
    ) -> int:
        """Credit a user's balance and return the new balance."""
        if amount_cents <= 0:
            raise ValueError("amount_cents must be positive")
        if idempotency_key and self.has_transaction(idempotency_key):
            return self.get_balance(user_id)

        balance = self._credit_balance(user_id, amount_cents, refund=False)
        self.db.add(
            CreditTransaction(
                user_id=user_id,
                amount_cents=amount_cents,
                balance_after_cents=balance,
                transaction_type=TransactionType(transaction_type).value,
                idempotency_key=idempotency_key,
                description=description or f"Added {amount_cents} credits",
            )
        )
        self.db.commit()
        logger.info(f"Added {amount_cents} credits for user {user_id}")
        return balance

    def debit(self, user_id: str, batch_id: str, amount_cents: int) -> bool:
        """Charge a batch. Returns False when the balance is insufficient.

        A second debit for the same batch is a no-op that reports success.
        """
        key = debit_key(batch_id)
        if self.has_transaction(key):
            logger.info(f"Debit for batch {batch_id} already applied")
            return True

        now = datetime.utcnow()
        result = self.db.execute(
            update(UserCredits)
            .where(UserCredits.user_id == user_id, UserCredits.balance_cents >= amount_cents)
            .values(
                balance_cents=UserCredits.balance_cents - amount_cents,
                lifetime_spent_cents=UserCredits.lifetime_spent_cents + amount_cents,
                updated_at=now,
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            self.db.rollback()
            logger.warning(f"Insufficient credits for user {user_id}: {amount_cents} required")
            return False

        balance = self.db.execute(
            select(UserCredits.balance_cents).where(UserCredits.user_id == user_id)
        ).scalar_one()
        self.db.add(
            CreditTransaction(
                user_id=user_id,
                amount_cents=-amount_cents,
                balance_after_cents=balance,
                transaction_type=TransactionType.GENERATION.value,
                batch_id=batch_id,
                idempotency_key=key,
                description=f"Batch generation {batch_id}",
            )
        )
        try:
            self.db.commit()
        except IntegrityError:
            # A concurrent debit for this batch won the race
            self.db.rollback()
            return True

        logger.info(f"Debited {amount_cents} credits from user {user_id} for batch {batch_id}")
        return True

    def refund(
        self,
        user_id: str,
        batch_id: str,
        clip_id: str,
        amount_cents: int,
        description: str | None = None,
    ) -> bool:
        """Credit back part of a batch charge for one clip.

        Returns True when this call credited the user, False when the refund
        for (batch, clip) had already been applied.
        """
        applied = self._stage_refund(user_id, batch_id, clip_id, amount_cents, description)
        if not applied:
            return False
        try:
            self.db.commit()
        except IntegrityError:
            self.db.rollback()
            return False
        return True

    def refund_clip_share(self, batch: Batch, clip: Clip) -> int:
        """Refund one clip's share of its batch charge and record it on the batch.

        The share is ceil(charge / clip count), capped so refunds never
        exceed what the batch was charged. Returns the amount credited.
        """
        if not batch.user_id or clip.refunded:
            return 0
        charge, payment_status = self.db.execute(
            select(Batch.user_charge_cents, Batch.payment_status).where(Batch.id == batch.id)
        ).one()
        if charge <= 0 or payment_status != PaymentStatus.CHARGED.value:
            return 0

        if self.has_transaction(refund_key(batch.id, clip.id)):
            clip.refunded = True
            self.db.commit()
            return 0

        clip_count = self.db.query(func.count(Clip.id)).filter(Clip.batch_id == batch.id).scalar() or 1
        share = self._reserve_refund(batch.id, math.ceil(charge / clip_count))
        clip.refunded = True
        if share <= 0:
            self.db.commit()
            return 0

        applied = self._stage_refund(
            batch.user_id,
            batch.id,
            clip.id,
            share,
            f"Refund for failed variant {clip.variant_id} of batch {batch.id}",
        )
        if not applied:
            self.db.rollback()
            return 0
        self.db.execute(
            update(Batch)
            .where(Batch.id == batch.id, Batch.refunded_cents >= Batch.user_charge_cents)
            .values(payment_status=PaymentStatus.REFUNDED.value)
            .execution_options(synchronize_session=False)
        )
        try:
            self.db.commit()
        except IntegrityError:
            # A concurrent refund for this clip won the race
            self.db.rollback()
            return 0

        logger.info(f"Refunded {share} credits to user {batch.user_id} for clip {clip.id}")
        return share

    def refunded_total(self, batch_id: str) -> int:
        total = self.db.execute(
            select(func.coalesce(func.sum(CreditTransaction.amount_cents), 0)).where(
                CreditTransaction.batch_id == batch_id,
                CreditTransaction.transaction_type == TransactionType.REFUND.value,
            )
        ).scalar_one()
        return int(total)

    def _reserve_refund(self, batch_id: str, share: int) -> int:
        """Add up to share to the batch's refunded total in SQL; returns the amount added."""
        while True:
            row = self.db.execute(
                select(Batch.refunded_cents, Batch.user_charge_cents).where(Batch.id == batch_id)
            ).one_or_none()
            if row is None:
                return 0
            amount = min(share, row.user_charge_cents - (row.refunded_cents or 0))
            if amount <= 0:
                return 0
            result = self.db.execute(
                update(Batch)
                .where(Batch.id == batch_id, Batch.refunded_cents + amount <= Batch.user_charge_cents)
                .values(refunded_cents=Batch.refunded_cents + amount, updated_at=datetime.utcnow())
                .execution_options(synchronize_session=False)
            )
            if result.rowcount == 1:
                return amount
            # Another refund moved the total; recompute against the new value

    def _credit_balance(self, user_id: str, amount_cents: int, refund: bool) -> int:
        """Add to a balance with a single UPDATE and return the new balance.

        The account row is created on first use. A refund also takes the
        amount back out of lifetime spending.
        """
        if refund:
            lifetime = {
                "lifetime_spent_cents": case(
                    (UserCredits.lifetime_spent_cents > amount_cents, UserCredits.lifetime_spent_cents - amount_cents),
                    else_=0,
                )
            }
        else:
            lifetime = {"lifetime_added_cents": UserCredits.lifetime_added_cents + amount_cents}

        result = self.db.execute(
            update(UserCredits)
            .where(UserCredits.user_id == user_id)
            .values(balance_cents=UserCredits.balance_cents + amount_cents, updated_at=datetime.utcnow(), **lifetime)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            self.db.add(
                UserCredits(
                    user_id=user_id,
                    balance_cents=amount_cents,
                    lifetime_added_cents=0 if refund else amount_cents,
                    lifetime_spent_cents=0,
                )
            )
            self.db.flush()
            return amount_cents

        return self.db.execute(
            select(UserCredits.balance_cents).where(UserCredits.user_id == user_id)
        ).scalar_one()

    def _stage_refund(
        self,
        user_id: str,
        batch_id: str,
        clip_id: str,
        amount_cents: int,
        description: str | None,
    ) -> bool:
        if amount_cents <= 0:
            return False
        key = refund_key(batch_id, clip_id)
        if self.has_transaction(key):
            logger.info(f"Refund {key} already applied")
            return False

        balance = self._credit_balance(user_id, amount_cents, refund=True)
        self.db.add(
            CreditTransaction(
                user_id=user_id,
                amount_cents=amount_cents,
                balance_after_cents=balance,
                transaction_type=TransactionType.REFUND.value,
                batch_id=batch_id,
                clip_id=clip_id,
                idempotency_key=key,
                description=description or f"Refund for clip {clip_id}",
            )
        )
        return True
