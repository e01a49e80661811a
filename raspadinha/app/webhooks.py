"""
=============================================================================
RASPADINHA - Webhooks da Woovi
=============================================================================
POST /webhooks/woovi          -> pagamento concluído (resposta texto puro)
POST /webhooks/woovi-expired  -> cobrança expirada (resposta JSON)

Entregas repetidas ou irrelevantes são confirmadas com 200 e nenhuma escrita.
=============================================================================
"""

import json
import logging
import secrets
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, Header, HTTPException, Request, status
from fastapi.responses import JSONResponse, PlainTextResponse

from .config import settings
from .deps import get_reconciler
from .errors import SettlementError
from .reconciler import PaymentReconciler, ReconcileOutcome

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/webhooks", tags=["Webhooks"])


def verify_webhook_token(authorization: Optional[str] = Header(None)) -> None:
    """Se WEBHOOK_AUTH_TOKEN estiver configurado, o header deve conferir."""
    expected = settings.WEBHOOK_AUTH_TOKEN
    if not expected:
        return
    if not authorization or not secrets.compare_digest(authorization, expected):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unauthorized")


async def _read_payload(request: Request) -> Optional[Dict[str, Any]]:
    raw = await request.body()
    try:
        payload = json.loads(raw)
    except ValueError:
        logger.error("[WEBHOOK] JSON inválido: %r", raw[:200])
        return None
    return payload if isinstance(payload, dict) else None


def _text(message: str, status_code: int = 200) -> PlainTextResponse:
    return PlainTextResponse(message, status_code=status_code)


COMPLETION_RESPONSES = {
    ReconcileOutcome.IGNORED: ("OK", 200),
    ReconcileOutcome.NOT_FOUND: ("OK", 200),
    ReconcileOutcome.DUPLICATE: ("OK", 200),
    ReconcileOutcome.COMPLETED: ("OK", 200),
    ReconcileOutcome.AMOUNT_MISMATCH: ("Amount mismatch", 400),
    ReconcileOutcome.CREDIT_FAILED: ("Balance update error", 500),
}


@router.post("/woovi", dependencies=[Depends(verify_webhook_token)])
async def woovi_payment_webhook(
    request: Request,
    reconciler: PaymentReconciler = Depends(get_reconciler),
):
    """Pagamento PIX concluído."""
    payload = await _read_payload(request)
    if payload is None:
        return _text("Invalid JSON", 400)

    try:
        result = await reconciler.complete(payload)
    except SettlementError as e:
        logger.error("[WEBHOOK] Erro ao processar pagamento: %s", e.message)
        return _text(e.message, e.status_code)

    message, status_code = COMPLETION_RESPONSES[result.outcome]
    return _text(message, status_code)


@router.post("/woovi-expired", dependencies=[Depends(verify_webhook_token)])
async def woovi_expired_webhook(
    request: Request,
    reconciler: PaymentReconciler = Depends(get_reconciler),
):
    """Cobrança PIX expirada."""
    payload = await _read_payload(request)
    if payload is None:
        return _text("Invalid JSON", 400)

    try:
        result = await reconciler.expire(payload)
    except SettlementError as e:
        logger.error("[WEBHOOK] Erro ao processar expiração: %s", e.message)
        return _text(e.message, e.status_code)

    if result.outcome is ReconcileOutcome.MISSING_REFERENCE:
        return _text("No charge data or correlationID", 400)

    if result.outcome is ReconcileOutcome.EXPIRED:
        body = {
            "success": True,
            "message": "Payment expiration processed successfully",
            "correlationID": result.correlation_id,
            "status": "expired",
        }
    elif result.outcome is ReconcileOutcome.IGNORED:
        body = {"success": True, "message": "Not an expiration event"}
    else:
        body = {
            "success": True,
            "message": "No pending purchase found",
            "correlationID": result.correlation_id,
        }
    return JSONResponse(body, status_code=200)
