"""
=============================================================================
RASPADINHA - Registros Tipados do Domínio
=============================================================================
Tipos explícitos que o núcleo de liquidação manipula. O adaptador de
armazenamento converte as linhas do banco nestes registros; o núcleo nunca
recebe um dicionário solto.
=============================================================================
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal, ROUND_HALF_UP
from enum import Enum
from typing import Any, Dict, Optional


CENT = Decimal("0.01")


def to_money(value: Any) -> Decimal:
    """Converte qualquer valor numérico para Decimal com 2 casas."""
    if value is None:
        return Decimal("0.00")
    if not isinstance(value, Decimal):
        value = Decimal(str(value))
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


# =============================================================================
# ENUMERAÇÕES
# =============================================================================

class Role(str, Enum):
    """Papel da conta (app_role)."""
    USER = "user"
    ADMIN = "admin"
    INFLUENCER = "influencer"

    @classmethod
    def parse(cls, value: Optional[str]) -> "Role":
        try:
            return cls(value or cls.USER.value)
        except ValueError:
            return cls.USER


class TransactionType(str, Enum):
    GAME_PURCHASE = "game_purchase"
    PRIZE_WIN = "prize_win"
    DEPOSIT = "deposit"
    ADMIN_ADJUSTMENT = "admin_adjustment"


class DepositStatus(str, Enum):
    """
    Máquina de estados do depósito. Só existem transições a partir de PENDING;
    os estados terminais nunca são reprocessados.
    """
    PENDING = "pending"
    COMPLETED = "completed"
    EXPIRED = "expired"
    FAILED = "failed"


# Transições permitidas
DEPOSIT_TRANSITIONS = {
    DepositStatus.PENDING: {DepositStatus.COMPLETED, DepositStatus.EXPIRED, DepositStatus.FAILED},
    DepositStatus.COMPLETED: set(),
    DepositStatus.EXPIRED: set(),
    DepositStatus.FAILED: set(),
}


def can_transition(current: DepositStatus, target: DepositStatus) -> bool:
    return target in DEPOSIT_TRANSITIONS[current]


# =============================================================================
# REGISTROS
# =============================================================================

@dataclass(frozen=True)
class Card:
    """Raspadinha (produto). Somente leitura para o núcleo."""
    id: str
    name: str
    display_prize: Decimal
    cash_payout: Decimal
    win_chance: Optional[float]
    active: bool = True


@dataclass(frozen=True)
class UserAccount:
    user_id: str
    balance: Decimal
    role: Role = Role.USER
    balance_version: int = 0


@dataclass(frozen=True)
class PlayRecord:
    """Uma jogada resolvida (tabela jogadas). Imutável depois de gravada."""
    user_id: str
    card_id: str
    is_winner: bool
    prize_amount: Decimal
    simulated: bool
    id: Optional[str] = None
    created_at: Optional[datetime] = None


@dataclass(frozen=True)
class BalanceTransaction:
    """
    Delta atômico de saldo. Invariante: new_balance = previous_balance + amount.
    """
    user_id: str
    transaction_type: TransactionType
    amount: Decimal
    previous_balance: Decimal
    new_balance: Decimal
    reference_id: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)
    simulated: bool = False
    id: Optional[str] = None
    created_at: Optional[datetime] = None

    def is_consistent(self) -> bool:
        return self.previous_balance + self.amount == self.new_balance


@dataclass(frozen=True)
class DepositRequest:
    """Compra de crédito via PIX (tabela credit_purchases)."""
    id: str
    user_id: str
    amount: Decimal
    status: DepositStatus
    correlation_id: Optional[str]
    method: str = "PIX"
    simulated: bool = False
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


@dataclass(frozen=True)
class AuditEntry:
    action: str
    user_id: Optional[str]
    table_name: Optional[str]
    record_id: Optional[str]
    old_values: Optional[Dict[str, Any]] = None
    new_values: Optional[Dict[str, Any]] = None
    id: Optional[str] = None
    created_at: Optional[datetime] = None
