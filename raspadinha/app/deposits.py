"""
=============================================================================
RASPADINHA - Depósitos PIX
=============================================================================
FLUXO:
1. POST /deposits cria a cobrança na Woovi e grava o depósito como pending
2. O app consulta GET /deposits/{id} até o webhook mudar o status
=============================================================================
"""

import logging
import secrets
import string
import time
from datetime import timedelta
from decimal import Decimal

from fastapi import APIRouter, Depends

from .config import DepositConfig
from .deps import get_gateway, get_store
from .errors import AccountNotFound, DepositNotFound, InvalidDepositAmount
from .pix_gateway import WooviClient
from .records import DepositRequest, to_money, utcnow
from .schemas import DepositCreate, DepositResponse, PixChargeResponse
from .storage import SettlementStore

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/deposits", tags=["Deposits"])

BASE36 = string.digits + string.ascii_lowercase


def generate_correlation_id(user_id: str) -> str:
    """dep_<usuário>_<epoch ms>_<9 caracteres base36>"""
    suffix = "".join(secrets.choice(BASE36) for _ in range(9))
    return f"dep_{user_id}_{int(time.time() * 1000)}_{suffix}"


def validate_amount(raw) -> Decimal:
    try:
        amount = to_money(raw)
    except ArithmeticError as e:
        raise InvalidDepositAmount() from e
    if amount <= 0:
        raise InvalidDepositAmount()
    if amount < DepositConfig.MIN_AMOUNT:
        raise InvalidDepositAmount("Minimum amount is R$ 1.00")
    if amount > DepositConfig.MAX_AMOUNT:
        raise InvalidDepositAmount("Maximum amount is R$ 10,000.00")
    return amount


def to_deposit_response(deposit: DepositRequest) -> DepositResponse:
    return DepositResponse(
        id=deposit.id,
        user_id=deposit.user_id,
        amount=float(deposit.amount),
        status=deposit.status.value,
        method=deposit.method,
        correlation_id=deposit.correlation_id,
        created_at=deposit.created_at,
        updated_at=deposit.updated_at,
    )


@router.post("", response_model=PixChargeResponse)
async def create_pix_deposit(
    data: DepositCreate,
    store: SettlementStore = Depends(get_store),
    gateway: WooviClient = Depends(get_gateway),
):
    """
    Cria uma cobrança PIX.

    A cobrança é criada antes do registro: se o gateway falhar, nada é gravado.
    """
    amount = validate_amount(data.amount)
    if await store.get_account(data.user_id) is None:
        raise AccountNotFound()
    correlation_id = generate_correlation_id(data.user_id)

    charge = await gateway.create_charge(
        correlation_id,
        amount,
        customer_name=data.customer_name or "Cliente",
        customer_email=data.customer_email or "",
    )

    deposit = await store.create_deposit(
        data.user_id, amount, correlation_id, method=DepositConfig.METHOD
    )
    logger.info("[PIX] Depósito %s pendente: R$ %s para %s", deposit.id, amount, data.user_id)

    expires_at = utcnow() + timedelta(seconds=charge.expires_in)
    return PixChargeResponse(
        correlationId=correlation_id,
        pixCode=charge.br_code,
        qrCodeImage=charge.qr_code_image,
        pixKey=charge.pix_key,
        amount=float(amount),
        expiresIn=charge.expires_in,
        expiresAt=expires_at.isoformat(),
        paymentLinkUrl=charge.payment_link_url,
        globalID=charge.global_id,
        purchaseId=deposit.id,
    )


@router.get("/{deposit_id}", response_model=DepositResponse)
async def get_deposit_status(
    deposit_id: str,
    store: SettlementStore = Depends(get_store),
):
    deposit = await store.get_deposit(deposit_id)
    if deposit is None:
        raise DepositNotFound()
    return to_deposit_response(deposit)
