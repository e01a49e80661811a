"""
=============================================================================
RASPADINHA - Endpoints de Administração
=============================================================================
- Ajuste manual de saldo (lançamento admin_adjustment)
- Auditoria do ledger de um usuário (reprodução + totais real/simulado)
=============================================================================
"""

import logging
import secrets

from fastapi import APIRouter, Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from .config import settings
from .deps import get_ledger, get_store
from .errors import AccountNotFound
from .ledger import SettlementLedger
from .records import BalanceTransaction, to_money
from .schemas import BalanceAdjustment, LedgerReport, TransactionResponse
from .storage import SettlementStore

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/admin", tags=["Admin"])

# =============================================================================
# SECURITY
# =============================================================================
security = HTTPBearer(auto_error=False)


async def get_current_admin(
    credentials: HTTPAuthorizationCredentials = Depends(security),
):
    """Compara o Bearer token com ADMIN_API_KEY."""
    expected = settings.ADMIN_API_KEY
    if not expected or credentials is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid admin token")
    if not secrets.compare_digest(credentials.credentials, expected):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid admin token")
    return {"role": "admin"}


def to_transaction_response(transaction: BalanceTransaction) -> TransactionResponse:
    return TransactionResponse(
        id=transaction.id,
        transaction_type=transaction.transaction_type.value,
        amount=float(transaction.amount),
        previous_balance=float(transaction.previous_balance),
        new_balance=float(transaction.new_balance),
        reference_id=transaction.reference_id,
        metadata=transaction.metadata,
        simulated=transaction.simulated,
        created_at=transaction.created_at,
    )


# =============================================================================
# ENDPOINT: AJUSTE DE SALDO
# =============================================================================

@router.post("/users/{user_id}/balance-adjustments", response_model=TransactionResponse)
async def adjust_balance(
    user_id: str,
    data: BalanceAdjustment,
    admin=Depends(get_current_admin),
    ledger: SettlementLedger = Depends(get_ledger),
):
    """
    Crédito (amount > 0) ou débito (amount < 0) manual.

    Débito maior que o saldo zera a conta; o pedido original fica no metadata.
    """
    transaction = await ledger.adjust(user_id, to_money(data.amount), data.reason)
    logger.info("[ADMIN] Ajuste de %s em %s: %s", transaction.amount, user_id, data.reason)
    return to_transaction_response(transaction)


# =============================================================================
# ENDPOINT: AUDITORIA DO LEDGER
# =============================================================================

@router.get("/users/{user_id}/ledger", response_model=LedgerReport)
async def get_user_ledger(
    user_id: str,
    admin=Depends(get_current_admin),
    store: SettlementStore = Depends(get_store),
):
    """
    Reproduz os lançamentos do usuário a partir do primeiro saldo anterior
    e compara com o saldo atual.
    """
    account = await store.get_account(user_id)
    if account is None:
        raise AccountNotFound()

    transactions = await store.list_transactions(user_id)
    initial = transactions[0].previous_balance if transactions else account.balance
    verification = SettlementLedger.replay(transactions, initial, account.balance)

    if verification["integrity_status"] != "OK":
        logger.warning("[ADMIN] Ledger de %s com divergência: %s", user_id, verification)

    return LedgerReport(
        user_id=user_id,
        balance=float(account.balance),
        transactions=[to_transaction_response(t) for t in transactions],
        verification=verification,
        buckets=SettlementLedger.bucket_totals(transactions),
    )
