"""
SettlementService: purchase, gateway callback and reconciliation flows.

Responsibilities:
- Validate the purchase target and price it for the payer's current tier
- Initiate with the gateway, then persist the pending transaction before redirecting
- Settle callbacks: gateway verify() first, then one locked ledger transition
- Reconcile pending transactions the gateway never called back about
"""
import logging
import time
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Callable

import pybreaker
from sqlalchemy.orm import Session

from settlement.core.config import settings
from settlement.core.errors import ConflictError, GatewayError, NotFoundError, RateLimitError, ValidationError
from settlement.models.ad import Ad
from settlement.models.payment_transaction import PaymentTransaction
from settlement.models.types import (
    TERMINAL_STATUSES,
    EntitlementType,
    EntityType,
    TransactionStatus,
    entity_type_for,
    parse_entitlement_type,
)
from settlement.services.circuit_breaker import get_circuit_breaker
from settlement.services.entitlements.activator import EntitlementActivator
from settlement.services.payments.gateway import GatewayStatus, PaymentGateway
from settlement.services.payments.ledger import TransactionLedger, Transition
from settlement.services.payments.rate_limit import PurchaseRateLimiter
from settlement.services.pricing.resolver import PriceQuote, PricingResolver
from settlement.utils.metrics import (
    gateway_request_duration_seconds,
    gateway_requests_total,
    payment_callback_duplicates_total,
    purchases_initiated_total,
)
from settlement.utils.time import ensure_utc, utcnow

logger = logging.getLogger(__name__)

# Gateway statuses in a callback that mean the payer did not pay.
CALLBACK_FAILURE_STATUSES = frozenset({"failed", "failure", "canceled", "cancelled", "error", "expired"})

GATEWAY_BREAKER_NAME = "payment_gateway"


@dataclass(frozen=True)
class PurchaseResult:
    transaction: PaymentTransaction
    quote: PriceQuote
    redirect_target: str


class SettlementService:
    def __init__(
        self,
        db: Session,
        gateway: PaymentGateway,
        rate_limiter: PurchaseRateLimiter | None = None,
        breaker: pybreaker.CircuitBreaker | None = None,
    ):
        self.db = db
        self.gateway = gateway
        self.rate_limiter = rate_limiter or PurchaseRateLimiter()
        self.breaker = breaker or get_circuit_breaker(GATEWAY_BREAKER_NAME)
        self.pricing = PricingResolver(db)
        self.ledger = TransactionLedger(db)
        self.activator = EntitlementActivator(db)

    # ------------------------------------------------------------------
    # Gateway calls
    # ------------------------------------------------------------------

    def _call_gateway(self, operation: str, func: Callable[..., Any], *args: Any, **kwargs: Any) -> Any:
        """Run a gateway call through the circuit breaker; every failure becomes GatewayError."""
        started = time.monotonic()
        try:
            result = self.breaker.call(func, *args, **kwargs)
        except pybreaker.CircuitBreakerError as e:
            gateway_requests_total.labels(operation=operation, status="circuit_open").inc()
            logger.warning("gateway_circuit_open", extra={"breaker_name": GATEWAY_BREAKER_NAME, "path": operation})
            raise GatewayError(
                "Payment gateway temporarily unavailable",
                detail={"operation": operation, "gateway": self.gateway.name},
            ) from e
        except Exception as e:
            gateway_requests_total.labels(operation=operation, status="error").inc()
            logger.error(
                "gateway_call_failed",
                extra={"path": operation, "error": f"{type(e).__name__}: {e}"},
            )
            raise GatewayError(
                f"Payment gateway {operation} failed",
                detail={"operation": operation, "gateway": self.gateway.name},
            ) from e
        finally:
            gateway_request_duration_seconds.labels(operation=operation).observe(time.monotonic() - started)
        gateway_requests_total.labels(operation=operation, status="ok").inc()
        return result

    # ------------------------------------------------------------------
    # Purchase
    # ------------------------------------------------------------------

    def _validate_target(
        self,
        owner_id: str,
        entitlement_type: EntitlementType,
        related_entity_id: str | None,
    ) -> str | None:
        if entity_type_for(entitlement_type) == EntityType.AD:
            if not related_entity_id:
                raise ValidationError("Ad id is required for ad promotions")
            ad = self.db.query(Ad).filter(Ad.id == related_entity_id).one_or_none()
            if ad is None or ad.user_id != owner_id:
                raise NotFoundError("Ad not found", detail={"ad_id": related_entity_id})
            if not ad.is_promotable():
                raise ValidationError(
                    "Ad must be active or approved to promote",
                    detail={"ad_id": related_entity_id, "status": ad.status},
                )
            return related_entity_id
        if related_entity_id and related_entity_id != owner_id:
            raise ValidationError("Verification is purchased for the paying account only")
        return None

    def purchase(
        self,
        owner_id: str,
        entitlement_type: str | EntitlementType,
        duration_days: int,
        related_entity_id: str | None = None,
        *,
        simulate_failure: bool = False,
        now: datetime | None = None,
    ) -> PurchaseResult:
        etype = parse_entitlement_type(entitlement_type)
        target_id = self._validate_target(owner_id, etype, related_entity_id)

        if not self.rate_limiter.allow(owner_id):
            raise RateLimitError("Too many purchases. Try again later.")

        quote = self.pricing.quote(owner_id, etype, duration_days, now)
        if quote.price_minor <= 0:
            raise ValidationError("Invalid amount. Amount must be greater than 0.")

        product_ref = f"{etype.value}:{duration_days}d"
        if target_id:
            product_ref += f":ad:{target_id}"
        initiation = self._call_gateway(
            "initiate",
            self.gateway.initiate,
            quote.price_minor,
            product_ref,
            {"simulate_failure": simulate_failure, "owner_id": owner_id},
        )

        # Ledger row is committed before the payer gets the redirect.
        txn = self.ledger.create(
            owner_id=owner_id,
            entitlement_type=etype,
            duration_days=duration_days,
            amount_minor=quote.price_minor,
            gateway=self.gateway.name,
            external_txn_id=initiation.external_txn_id,
            account_tier=quote.account_tier.value,
            related_entity_id=target_id,
            pricing_tier_id=quote.pricing_tier_id,
            discount_percent=quote.discount_percent,
            redirect_target=initiation.redirect_target,
            metadata={"product_ref": product_ref, "currency": settings.currency},
        )
        purchases_initiated_total.labels(
            entitlement_type=etype.value, account_tier=quote.account_tier.value
        ).inc()
        return PurchaseResult(transaction=txn, quote=quote, redirect_target=initiation.redirect_target)

    # ------------------------------------------------------------------
    # Callback / settlement
    # ------------------------------------------------------------------

    def handle_callback(
        self,
        external_txn_id: str,
        gateway_status: str | None,
        *,
        actor_id: str = "gateway",
        now: datetime | None = None,
    ) -> PaymentTransaction:
        """
        Drive mark_verified / mark_failed from a gateway callback.
        Deliveries for terminal transactions are benign duplicates: logged, not raised.
        """
        txn = self.ledger.get_or_raise(external_txn_id)
        if txn.status in TERMINAL_STATUSES:
            self._log_duplicate(txn, gateway_status)
            return txn

        status = (gateway_status or "").strip().lower()
        if status in CALLBACK_FAILURE_STATUSES:
            return self._fail(external_txn_id, f"gateway_reported_{status}", actor_id=actor_id, now=now)
        return self.confirm(external_txn_id, actor_id=actor_id, now=now)

    def confirm(
        self,
        external_txn_id: str,
        *,
        actor_id: str = "gateway",
        now: datetime | None = None,
    ) -> PaymentTransaction:
        """Ask the gateway, then settle. The ledger lock is never held across verify()."""
        txn = self.ledger.get_or_raise(external_txn_id)
        verification = self._call_gateway("verify", self.gateway.verify, external_txn_id)

        if not verification.verified:
            if verification.status == GatewayStatus.PENDING:
                logger.info(
                    "payment_still_pending",
                    extra={"transaction_id": txn.id, "external_txn_id": external_txn_id},
                )
                return txn
            reason = verification.reason or f"gateway_status_{verification.status.value}"
            return self._fail(external_txn_id, reason, actor_id=actor_id, now=now)

        if verification.amount_minor is not None and verification.amount_minor != txn.amount_minor:
            logger.error(
                "payment_amount_mismatch",
                extra={
                    "transaction_id": txn.id,
                    "external_txn_id": external_txn_id,
                    "amount_minor": txn.amount_minor,
                    "after": verification.amount_minor,
                },
            )
            return self._fail(external_txn_id, "amount_mismatch", actor_id=actor_id, now=now)

        return self._verify(external_txn_id, actor_id=actor_id, now=now)

    def _verify(self, external_txn_id: str, *, actor_id: str, now: datetime | None) -> PaymentTransaction:
        try:
            transition = self.ledger.mark_verified(
                external_txn_id,
                on_verified=self.activator.activate,
                actor_id=actor_id,
                now=now,
            )
        except ConflictError as e:
            return self._conflict(external_txn_id, e)
        if not transition.applied:
            payment_callback_duplicates_total.inc()
        return transition.transaction

    def _fail(self, external_txn_id: str, reason: str, *, actor_id: str, now: datetime | None) -> PaymentTransaction:
        try:
            transition: Transition = self.ledger.mark_failed(external_txn_id, reason, actor_id=actor_id, now=now)
        except ConflictError as e:
            return self._conflict(external_txn_id, e)
        if not transition.applied:
            payment_callback_duplicates_total.inc()
        return transition.transaction

    def _conflict(self, external_txn_id: str, error: ConflictError) -> PaymentTransaction:
        payment_callback_duplicates_total.inc()
        logger.warning(
            "payment_callback_conflict",
            extra={"external_txn_id": external_txn_id, "error": error.message},
        )
        return self.ledger.get_or_raise(external_txn_id)

    def _log_duplicate(self, txn: PaymentTransaction, gateway_status: str | None) -> None:
        payment_callback_duplicates_total.inc()
        logger.info(
            "payment_callback_duplicate",
            extra={
                "transaction_id": txn.id,
                "external_txn_id": txn.external_txn_id,
                "before": txn.status,
                "reason": gateway_status,
            },
        )

    # ------------------------------------------------------------------
    # Reconciliation
    # ------------------------------------------------------------------

    def reconcile_pending(self, now: datetime | None = None) -> dict[str, int]:
        """
        Poll status() for pending transactions older than reconcile_min_age_minutes.
        completed -> verify + activate; failed -> failed; still pending past
        pending_timeout_hours -> failed("pending_timeout"). Gateway errors leave the row pending.
        """
        now = ensure_utc(now or utcnow())
        timeout = timedelta(hours=settings.pending_timeout_hours)
        pending = self.ledger.list_pending(
            older_than=timedelta(minutes=settings.reconcile_min_age_minutes),
            limit=settings.reconcile_batch_size,
            now=now,
        )
        counts = {"checked": 0, "verified": 0, "failed": 0, "timed_out": 0, "still_pending": 0, "errors": 0}
        for txn in pending:
            counts["checked"] += 1
            external_txn_id = txn.external_txn_id
            created_at = ensure_utc(txn.created_at)
            try:
                status = self._call_gateway("status", self.gateway.status, external_txn_id)
                if status == GatewayStatus.COMPLETED:
                    result = self.confirm(external_txn_id, actor_id="reconciler", now=now)
                elif status == GatewayStatus.FAILED:
                    result = self._fail(external_txn_id, "gateway_reported_failed", actor_id="reconciler", now=now)
                elif now - created_at >= timeout:
                    result = self._fail(external_txn_id, "pending_timeout", actor_id="reconciler", now=now)
                    if result.status == TransactionStatus.FAILED.value:
                        counts["timed_out"] += 1
                        continue
                else:
                    result = txn
            except GatewayError:
                counts["errors"] += 1
                continue

            if result.status == TransactionStatus.VERIFIED.value:
                counts["verified"] += 1
            elif result.status == TransactionStatus.FAILED.value:
                counts["failed"] += 1
            else:
                counts["still_pending"] += 1

        logger.info("payments_reconciled", extra={"count": counts["checked"], "after": counts})
        return counts
