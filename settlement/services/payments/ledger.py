"""
TransactionLedger: persistence and state transitions of PaymentTransaction.

pending -> verified and pending -> failed are the only edges. Each transition is
one unit of work: row locked by external_txn_id (SELECT ... FOR UPDATE),
status checked, mutated, committed. The on_verified hook runs inside that unit,
so activation commits or rolls back together with the status change.
"""
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Callable

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
from sqlalchemy.orm.attributes import flag_modified

from settlement.core.errors import ConflictError, NotFoundError, ValidationError
from settlement.models.payment_transaction import PaymentTransaction
from settlement.models.types import EntitlementType, TransactionStatus, parse_entitlement_type
from settlement.services.audit.service import AuditService
from settlement.utils.metrics import payment_transitions_total
from settlement.utils.time import utcnow

logger = logging.getLogger(__name__)

OnVerified = Callable[[PaymentTransaction, datetime], Any]


@dataclass(frozen=True)
class Transition:
    """applied=False means the call was a no-op on an already-terminal record."""
    transaction: PaymentTransaction
    applied: bool


class TransactionLedger:
    def __init__(self, db: Session, audit: AuditService | None = None):
        self.db = db
        self.audit = audit or AuditService(db)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get(self, external_txn_id: str) -> PaymentTransaction | None:
        return (
            self.db.query(PaymentTransaction)
            .filter(PaymentTransaction.external_txn_id == external_txn_id)
            .one_or_none()
        )

    def get_or_raise(self, external_txn_id: str) -> PaymentTransaction:
        txn = self.get(external_txn_id)
        if txn is None:
            raise NotFoundError("Payment transaction not found", detail={"external_txn_id": external_txn_id})
        return txn

    def get_by_id(self, transaction_id: str) -> PaymentTransaction | None:
        return self.db.query(PaymentTransaction).filter(PaymentTransaction.id == transaction_id).one_or_none()

    def list_for_owner(self, owner_id: str, limit: int = 50, offset: int = 0) -> list[PaymentTransaction]:
        return (
            self.db.query(PaymentTransaction)
            .filter(PaymentTransaction.owner_id == owner_id)
            .order_by(PaymentTransaction.created_at.desc())
            .offset(offset)
            .limit(limit)
            .all()
        )

    def list_recent(
        self,
        status: str | None = None,
        owner_id: str | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> tuple[int, list[PaymentTransaction]]:
        q = self.db.query(PaymentTransaction)
        if status:
            q = q.filter(PaymentTransaction.status == status)
        if owner_id:
            q = q.filter(PaymentTransaction.owner_id == owner_id)
        total = q.count()
        items = q.order_by(PaymentTransaction.created_at.desc()).offset(offset).limit(limit).all()
        return total, items

    def list_pending(self, older_than: timedelta, limit: int = 200, now: datetime | None = None) -> list[PaymentTransaction]:
        cutoff = (now or utcnow()) - older_than
        return (
            self.db.query(PaymentTransaction)
            .filter(
                PaymentTransaction.status == TransactionStatus.PENDING.value,
                PaymentTransaction.created_at <= cutoff,
            )
            .order_by(PaymentTransaction.created_at.asc())
            .limit(limit)
            .all()
        )

    # ------------------------------------------------------------------
    # Create
    # ------------------------------------------------------------------

    def create(
        self,
        owner_id: str,
        entitlement_type: str | EntitlementType,
        duration_days: int,
        amount_minor: int,
        gateway: str,
        external_txn_id: str,
        account_tier: str,
        related_entity_id: str | None = None,
        pricing_tier_id: int | None = None,
        discount_percent: int = 0,
        redirect_target: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> PaymentTransaction:
        """Persist a pending transaction and commit, so the row exists before any callback."""
        etype = parse_entitlement_type(entitlement_type)
        if amount_minor is None or amount_minor <= 0:
            raise ValidationError("Invalid amount. Amount must be greater than 0.")
        if not external_txn_id:
            raise ValidationError("external_txn_id is required")

        txn = PaymentTransaction(
            owner_id=owner_id,
            entitlement_type=etype.value,
            related_entity_id=related_entity_id,
            duration_days=duration_days,
            account_tier=account_tier,
            pricing_tier_id=pricing_tier_id,
            amount_minor=amount_minor,
            discount_percent=discount_percent,
            gateway=gateway,
            external_txn_id=external_txn_id,
            status=TransactionStatus.PENDING.value,
            meta=dict(metadata or {}),
            redirect_target=redirect_target,
        )
        try:
            self.db.add(txn)
            self.db.flush()
            self.audit.log(
                "user", owner_id, "payment_created", "payment_transaction", txn.id,
                {
                    "external_txn_id": external_txn_id,
                    "entitlement_type": etype.value,
                    "amount_minor": amount_minor,
                    "after": TransactionStatus.PENDING.value,
                },
                commit=False,
            )
            self.db.commit()
        except IntegrityError:
            self.db.rollback()
            logger.warning("payment_duplicate_external_id", extra={"external_txn_id": external_txn_id})
            raise ConflictError(
                "Transaction with this external id already exists",
                detail={"external_txn_id": external_txn_id},
            ) from None

        logger.info(
            "payment_created",
            extra={
                "transaction_id": txn.id,
                "external_txn_id": external_txn_id,
                "owner_id": owner_id,
                "entitlement_type": etype.value,
                "amount_minor": amount_minor,
                "after": TransactionStatus.PENDING.value,
            },
        )
        return txn

    # ------------------------------------------------------------------
    # Transitions (atomic)
    # ------------------------------------------------------------------

    def _lock(self, external_txn_id: str) -> PaymentTransaction:
        txn = (
            self.db.query(PaymentTransaction)
            .filter(PaymentTransaction.external_txn_id == external_txn_id)
            .with_for_update()
            .populate_existing()
            .one_or_none()
        )
        if txn is None:
            raise NotFoundError("Payment transaction not found", detail={"external_txn_id": external_txn_id})
        return txn

    def mark_verified(
        self,
        external_txn_id: str,
        on_verified: OnVerified | None = None,
        *,
        actor_id: str | None = None,
        now: datetime | None = None,
    ) -> Transition:
        """
        pending -> verified, then on_verified(txn, now) in the same unit.
        Already verified: no-op, on_verified is NOT called. Failed: ConflictError.
        """
        now = now or utcnow()
        try:
            txn = self._lock(external_txn_id)
            before = txn.status
            if before == TransactionStatus.VERIFIED.value:
                self.db.commit()
                logger.info(
                    "payment_already_verified",
                    extra={"transaction_id": txn.id, "external_txn_id": external_txn_id, "actor_id": actor_id},
                )
                return Transition(txn, applied=False)
            if before == TransactionStatus.FAILED.value:
                raise ConflictError(
                    "Transaction already failed",
                    detail={"external_txn_id": external_txn_id, "status": before},
                )

            txn.status = TransactionStatus.VERIFIED.value
            txn.verified_at = now
            self.db.flush()

            if on_verified is not None:
                on_verified(txn, now)

            self.audit.log(
                "gateway", actor_id, "payment_verified", "payment_transaction", txn.id,
                {"external_txn_id": external_txn_id, "before": before, "after": txn.status},
                commit=False,
            )
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

        payment_transitions_total.labels(status=TransactionStatus.VERIFIED.value).inc()
        logger.info(
            "payment_verified",
            extra={
                "transaction_id": txn.id,
                "external_txn_id": external_txn_id,
                "owner_id": txn.owner_id,
                "actor_id": actor_id,
                "amount_minor": txn.amount_minor,
                "before": before,
                "after": txn.status,
            },
        )
        return Transition(txn, applied=True)

    def mark_failed(
        self,
        external_txn_id: str,
        reason: str,
        *,
        actor_id: str | None = None,
        now: datetime | None = None,
    ) -> Transition:
        """pending -> failed. Verified is terminal and wins: ConflictError. Already failed: no-op."""
        now = now or utcnow()
        try:
            txn = self._lock(external_txn_id)
            before = txn.status
            if before == TransactionStatus.FAILED.value:
                self.db.commit()
                logger.info(
                    "payment_already_failed",
                    extra={"transaction_id": txn.id, "external_txn_id": external_txn_id, "actor_id": actor_id},
                )
                return Transition(txn, applied=False)
            if before == TransactionStatus.VERIFIED.value:
                raise ConflictError(
                    "Transaction already verified",
                    detail={"external_txn_id": external_txn_id, "status": before},
                )

            txn.status = TransactionStatus.FAILED.value
            txn.failed_at = now
            txn.failure_reason = reason
            self.audit.log(
                "gateway", actor_id, "payment_failed", "payment_transaction", txn.id,
                {"external_txn_id": external_txn_id, "before": before, "after": txn.status, "reason": reason},
                commit=False,
            )
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

        payment_transitions_total.labels(status=TransactionStatus.FAILED.value).inc()
        logger.info(
            "payment_failed",
            extra={
                "transaction_id": txn.id,
                "external_txn_id": external_txn_id,
                "owner_id": txn.owner_id,
                "actor_id": actor_id,
                "reason": reason,
                "before": before,
                "after": txn.status,
            },
        )
        return Transition(txn, applied=True)

    # ------------------------------------------------------------------
    # Audit annotations
    # ------------------------------------------------------------------

    def annotate(self, external_txn_id: str, key: str, value: Any) -> PaymentTransaction:
        """Write an audit note into metadata. Allowed in any status; never touches status."""
        try:
            txn = self._lock(external_txn_id)
            notes = dict(txn.meta or {})
            annotations = dict(notes.get("annotations") or {})
            annotations[key] = value
            notes["annotations"] = annotations
            txn.meta = notes
            flag_modified(txn, "meta")
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise
        return txn
