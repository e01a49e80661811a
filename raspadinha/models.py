"""
=============================================================================
RASPADINHA - Modelos de Banco de Dados (SQLAlchemy)
=============================================================================
Tabelas consultadas e alteradas pelo núcleo de liquidação.

Princípios de Design:
- Todo movimento de saldo gera uma linha em balance_transactions
- O saldo nunca fica negativo (CHECK no banco)
- new_balance = previous_balance + amount em toda linha do ledger (CHECK)
- balance_version permite compare-and-swap do saldo
=============================================================================
"""

from datetime import datetime
from decimal import Decimal
from typing import Optional
from uuid import uuid4

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    func,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.ext.asyncio import AsyncAttrs
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from .app.records import utcnow


def _new_id() -> str:
    return str(uuid4())


# JSONB no PostgreSQL, JSON genérico nos demais bancos
JSONType = JSON().with_variant(JSONB(), "postgresql")

MONEY = Numeric(12, 2)


# =============================================================================
# BASE DECLARATIVA
# =============================================================================

class Base(AsyncAttrs, DeclarativeBase):
    """Classe base para todos os modelos com suporte async."""
    pass


# =============================================================================
# TABELA: RASPADINHAS (Produtos)
# =============================================================================

class ScratchCard(Base):
    """
    Definição da raspadinha. Criada/editada pelo admin; somente leitura
    para a liquidação.
    """
    __tablename__ = "raspadinhas"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    nome: Mapped[str] = mapped_column(String(255), nullable=False)

    # Prêmio de vitrine (marketing)
    premio: Mapped[Decimal] = mapped_column(MONEY, nullable=False)
    # Valor efetivamente creditado numa vitória
    cash_payout: Mapped[Decimal] = mapped_column(MONEY, default=Decimal("0.00"), nullable=False)
    # Probabilidade configurada [0, 1]; o motor limita a 0.95
    chances: Mapped[float] = mapped_column(Float, nullable=False)

    ativo: Mapped[Optional[bool]] = mapped_column(Boolean, default=True, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now(), onupdate=utcnow, nullable=False
    )

    __table_args__ = (
        Index("idx_raspadinhas_ativo", "ativo"),
        CheckConstraint("cash_payout >= 0", name="check_cash_payout_non_negative"),
    )


# =============================================================================
# TABELA: PROFILES (Conta e Saldo)
# =============================================================================

class Profile(Base):
    """
    Conta do usuário. `user_id` vem do provedor de identidade.
    O saldo só muda pelo ledger; balance_version é incrementado a cada mudança.
    """
    __tablename__ = "profiles"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    user_id: Mapped[str] = mapped_column(String(64), unique=True, nullable=False)

    role: Mapped[str] = mapped_column(String(20), default="user", nullable=False)

    saldo: Mapped[Decimal] = mapped_column(MONEY, default=Decimal("0.00"), nullable=False)
    balance_version: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now(), onupdate=utcnow, nullable=False
    )

    __table_args__ = (
        Index("idx_profiles_role", "role"),
        CheckConstraint("saldo >= 0", name="check_non_negative_balance"),
        CheckConstraint("role IN ('user', 'admin', 'influencer')", name="check_profile_role"),
    )


# =============================================================================
# TABELA: JOGADAS (Histórico de Jogadas)
# =============================================================================

class Play(Base):
    """Uma jogada liquidada. Imutável depois de gravada."""
    __tablename__ = "jogadas"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False)
    raspadinha_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("raspadinhas.id", ondelete="RESTRICT"), nullable=False
    )
    resultado: Mapped[bool] = mapped_column(Boolean, nullable=False)
    premio_ganho: Mapped[Optional[Decimal]] = mapped_column(MONEY, default=Decimal("0.00"), nullable=True)
    is_simulated: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now(), nullable=False
    )

    __table_args__ = (
        Index("idx_jogadas_user_id", "user_id"),
        Index("idx_jogadas_created_at", "created_at"),
    )


# =============================================================================
# TABELA: BALANCE_TRANSACTIONS (Ledger Append-Only)
# =============================================================================

class BalanceTransaction(Base):
    """
    Livro-razão de saldo. Nunca é atualizado nem apagado.

    Reproduzir a sequência de `amount` de um usuário a partir do saldo
    inicial deve resultar no saldo atual.
    """
    __tablename__ = "balance_transactions"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False)
    transaction_type: Mapped[str] = mapped_column(String(40), nullable=False)

    # Valor com sinal (negativo = débito)
    amount: Mapped[Decimal] = mapped_column(MONEY, nullable=False)
    previous_balance: Mapped[Decimal] = mapped_column(MONEY, nullable=False)
    new_balance: Mapped[Decimal] = mapped_column(MONEY, nullable=False)

    reference_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    # "metadata" é reservado pelo Declarative, daí o atributo com sufixo
    metadata_: Mapped[Optional[dict]] = mapped_column("metadata", JSONType, nullable=True)
    is_simulated: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now(), nullable=False
    )

    __table_args__ = (
        Index("idx_balance_tx_user_id", "user_id"),
        Index("idx_balance_tx_type", "transaction_type"),
        Index("idx_balance_tx_created_at", "created_at"),
        CheckConstraint("new_balance = previous_balance + amount", name="check_balance_equation"),
        CheckConstraint("new_balance >= 0", name="check_new_balance_non_negative"),
    )


# =============================================================================
# TABELA: CREDIT_PURCHASES (Depósitos PIX)
# =============================================================================

class CreditPurchase(Base):
    """
    Pedido de depósito via PIX.

    FLUXO:
    1. Usuário pede o depósito -> cobrança criada no gateway (pending)
    2. Gateway chama o webhook de pagamento -> completed + crédito no ledger
    3. Ou chama o webhook de expiração -> expired
    """
    __tablename__ = "credit_purchases"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False)
    amount: Mapped[Decimal] = mapped_column(MONEY, nullable=False)
    status: Mapped[str] = mapped_column(String(20), default="pending", nullable=False)
    method: Mapped[str] = mapped_column(String(20), default="PIX", nullable=False)

    # correlationID compartilhado com o gateway
    external_ref: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    is_simulated: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now(), onupdate=utcnow, nullable=False
    )

    __table_args__ = (
        Index("idx_credit_purchases_user_id", "user_id"),
        Index("idx_credit_purchases_status", "status"),
        Index("idx_credit_purchases_external_ref", "external_ref"),
        CheckConstraint("amount > 0", name="check_positive_deposit_amount"),
        CheckConstraint(
            "status IN ('pending', 'completed', 'expired', 'failed')",
            name="check_credit_purchase_status",
        ),
    )


# =============================================================================
# TABELA: AUDIT_LOG
# =============================================================================

class AuditLog(Base):
    __tablename__ = "audit_log"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    user_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    action: Mapped[str] = mapped_column(String(100), nullable=False)
    table_name: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    record_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    old_values: Mapped[Optional[dict]] = mapped_column(JSONType, nullable=True)
    new_values: Mapped[Optional[dict]] = mapped_column(JSONType, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now(), nullable=True
    )

    __table_args__ = (
        Index("idx_audit_log_record", "table_name", "record_id"),
    )
