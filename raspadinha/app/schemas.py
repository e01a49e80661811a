"""
=============================================================================
RASPADINHA - Schemas da API (Pydantic)
=============================================================================
"""

from datetime import datetime
from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field


# =============================================================================
# JOGO
# =============================================================================

class PlayRequest(BaseModel):
    """Campos opcionais: a ausência vira 400 no handler, não 422."""
    scratch_card_id: Optional[str] = None
    user_id: Optional[str] = None
    card_price: Optional[Any] = None


class PlayResponse(BaseModel):
    success: bool = True
    is_winner: bool
    prize_amount: float
    new_balance: float
    message: str
    grid: List[Union[int, float]]
    winning_cells: List[int]
    win: bool
    prize: float


# =============================================================================
# DEPÓSITOS
# =============================================================================

class DepositCreate(BaseModel):
    user_id: str = Field(..., min_length=1)
    amount: float
    customer_name: Optional[str] = None
    customer_email: Optional[str] = None


class PixChargeResponse(BaseModel):
    correlationId: str
    pixCode: Optional[str] = None
    qrCodeImage: Optional[str] = None
    pixKey: Optional[str] = None
    amount: float
    expiresIn: int
    expiresAt: str
    paymentLinkUrl: Optional[str] = None
    globalID: Optional[str] = None
    purchaseId: str


class DepositResponse(BaseModel):
    id: str
    user_id: str
    amount: float
    status: str
    method: str
    correlation_id: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


# =============================================================================
# ADMIN
# =============================================================================

class BalanceAdjustment(BaseModel):
    amount: float = Field(..., allow_inf_nan=False)
    reason: str = Field(..., min_length=3, max_length=500)


class TransactionResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: Optional[str] = None
    transaction_type: str
    amount: float
    previous_balance: float
    new_balance: float
    reference_id: Optional[str] = None
    metadata: Dict[str, Any] = {}
    simulated: bool
    created_at: Optional[datetime] = None


class LedgerReport(BaseModel):
    user_id: str
    balance: float
    transactions: List[TransactionResponse]
    verification: Dict[str, Any]
    buckets: Dict[str, str]
