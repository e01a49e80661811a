"""
=============================================================================
RASPADINHA - Conciliação de Pagamentos PIX
=============================================================================
Processa os webhooks de pagamento concluído e de cobrança expirada.

IDEMPOTÊNCIA:
Só depósitos em `pending` são processados. Uma segunda entrega do mesmo
webhook não encontra depósito pendente e é apenas confirmada, sem escrita.
A troca de status é um compare-and-swap gravado na mesma transação do
crédito: entre duas entregas simultâneas, só uma vence e credita o saldo.
Se o crédito falhar, nada é gravado e o depósito segue `pending`.
=============================================================================
"""

import logging
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Any, Dict, Optional

from .config import DepositConfig
from .errors import AccountNotFound, LedgerIntegrityError
from .ledger import SettlementLedger
from .records import AuditEntry, DepositStatus, to_money, utcnow
from .storage import SettlementStore

logger = logging.getLogger(__name__)

COMPLETED_STATUS = "COMPLETED"
EXPIRED_STATUS = "EXPIRED"
EXPIRY_EVENTS = ("OPENPIX:CHARGE_EXPIRED", "charge.expired")


class ReconcileOutcome(Enum):
    IGNORED = "ignored"                    # evento não aplicável
    NOT_FOUND = "not_found"                # nenhum depósito pendente
    DUPLICATE = "duplicate"                # perdeu o compare-and-swap
    AMOUNT_MISMATCH = "amount_mismatch"
    COMPLETED = "completed"
    CREDIT_FAILED = "credit_failed"
    MISSING_REFERENCE = "missing_reference"
    EXPIRED = "expired"


@dataclass(frozen=True)
class ReconcileResult:
    outcome: ReconcileOutcome
    correlation_id: Optional[str] = None
    deposit_id: Optional[str] = None


def _charge(payload: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    charge = payload.get("charge")
    return charge if isinstance(charge, dict) else None


def reported_amount(charge: Dict[str, Any]) -> Optional[Decimal]:
    """`value` chega em centavos."""
    try:
        cents = Decimal(str(charge.get("value")))
    except (InvalidOperation, ValueError):
        return None
    if not cents.is_finite():
        return None
    return to_money(cents / 100)


def is_expiry_event(payload: Dict[str, Any]) -> bool:
    if payload.get("event") in EXPIRY_EVENTS:
        return True
    charge = _charge(payload)
    return bool(charge and charge.get("status") == EXPIRED_STATUS)


class PaymentReconciler:

    def __init__(self, store: SettlementStore, ledger: SettlementLedger):
        self.store = store
        self.ledger = ledger

    async def complete(self, payload: Dict[str, Any]) -> ReconcileResult:
        """
        pending -> completed e crédito no ledger.

        Status e saldo mudam juntos; nunca fica `completed` sem crédito.
        Conta inexistente ou lançamento inválido levam o depósito a `failed`.
        """
        charge = _charge(payload)
        if charge is None:
            logger.info("[WEBHOOK] Evento sem charge, ignorado")
            return ReconcileResult(ReconcileOutcome.IGNORED)
        if charge.get("status") != COMPLETED_STATUS:
            logger.info("[WEBHOOK] Charge não concluída (status=%s), ignorada", charge.get("status"))
            return ReconcileResult(ReconcileOutcome.IGNORED)

        correlation_id = charge.get("correlationID")
        if not correlation_id:
            logger.info("[WEBHOOK] Charge concluída sem correlationID, ignorada")
            return ReconcileResult(ReconcileOutcome.IGNORED)

        deposit = await self.store.find_pending_deposit(correlation_id)
        if deposit is None:
            logger.info("[WEBHOOK] Nenhum depósito pendente para %s", correlation_id)
            return ReconcileResult(ReconcileOutcome.NOT_FOUND, correlation_id)

        received = reported_amount(charge)
        if received is None or abs(deposit.amount - received) > DepositConfig.AMOUNT_TOLERANCE:
            logger.error(
                "[WEBHOOK] Valor divergente em %s. Esperado: %s Recebido: %s",
                correlation_id, deposit.amount, received,
            )
            await self.store.transition_deposit(
                deposit.id, DepositStatus.PENDING, DepositStatus.FAILED
            )
            return ReconcileResult(ReconcileOutcome.AMOUNT_MISMATCH, correlation_id, deposit.id)

        pix = payload.get("pix") if isinstance(payload.get("pix"), dict) else {}
        metadata = {
            "woovi_correlation_id": correlation_id,
            "woovi_end_to_end_id": pix.get("endToEndId"),
            "payment_method": DepositConfig.METHOD,
            "is_simulated": False,
        }

        try:
            transaction = await self.ledger.credit_deposit(deposit, metadata)
        except (AccountNotFound, LedgerIntegrityError) as e:
            # Nenhuma entrega futura vai conseguir creditar
            logger.error("[WEBHOOK] Depósito %s não pode ser creditado: %s", deposit.id, e.message)
            await self._mark_failed(deposit.id)
            return ReconcileResult(ReconcileOutcome.CREDIT_FAILED, correlation_id, deposit.id)
        except Exception:
            logger.exception(
                "[WEBHOOK] Falha ao creditar depósito %s; permanece pending para nova entrega",
                deposit.id,
            )
            return ReconcileResult(ReconcileOutcome.CREDIT_FAILED, correlation_id, deposit.id)

        if transaction is None:
            logger.info("[WEBHOOK] Depósito %s já processado por outra entrega", deposit.id)
            return ReconcileResult(ReconcileOutcome.DUPLICATE, correlation_id, deposit.id)

        logger.info(
            "[WEBHOOK] Depósito %s concluído: R$ %s para %s",
            deposit.id, deposit.amount, deposit.user_id,
        )
        return ReconcileResult(ReconcileOutcome.COMPLETED, correlation_id, deposit.id)

    async def _mark_failed(self, deposit_id: str) -> None:
        try:
            await self.store.transition_deposit(deposit_id, DepositStatus.PENDING, DepositStatus.FAILED)
        except Exception:
            logger.critical(
                "[WEBHOOK] Depósito %s não creditado e não marcado como failed; segue pending",
                deposit_id,
                exc_info=True,
            )

    async def expire(self, payload: Dict[str, Any]) -> ReconcileResult:
        """pending -> expired, com registro de auditoria. Nunca mexe no saldo."""
        if not is_expiry_event(payload):
            logger.info("[WEBHOOK] Não é evento de expiração: %s", payload.get("event"))
            return ReconcileResult(ReconcileOutcome.IGNORED)

        charge = _charge(payload)
        correlation_id = charge.get("correlationID") if charge else None
        if not correlation_id:
            return ReconcileResult(ReconcileOutcome.MISSING_REFERENCE)

        deposit = await self.store.find_pending_deposit(correlation_id)
        if deposit is None:
            logger.info("[WEBHOOK] Nenhum depósito pendente para %s", correlation_id)
            return ReconcileResult(ReconcileOutcome.NOT_FOUND, correlation_id)

        audit = AuditEntry(
            action="payment_expired",
            user_id=deposit.user_id,
            table_name="credit_purchases",
            record_id=deposit.id,
            old_values={"status": DepositStatus.PENDING.value},
            new_values={
                "status": DepositStatus.EXPIRED.value,
                "webhook_data": payload,
                "expired_at": utcnow().isoformat(),
            },
        )
        swapped = await self.store.transition_deposit(
            deposit.id, DepositStatus.PENDING, DepositStatus.EXPIRED, audit=audit
        )
        if not swapped:
            return ReconcileResult(ReconcileOutcome.DUPLICATE, correlation_id, deposit.id)

        logger.info(
            "[WEBHOOK] Pagamento expirado para %s, valor R$ %s",
            deposit.user_id, deposit.amount,
        )
        return ReconcileResult(ReconcileOutcome.EXPIRED, correlation_id, deposit.id)
