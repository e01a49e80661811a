"""
=============================================================================
RASPADINHA - Adaptador de Armazenamento
=============================================================================
Interface injetada em cada handler. O núcleo só enxerga registros tipados
(records.py); as linhas do banco ficam confinadas aqui.

CONCORRÊNCIA:
A sequência ler saldo -> calcular delta -> gravar saldo acontece inteira
dentro de uma transação do banco, com a linha do perfil travada
(SELECT ... FOR UPDATE) e o UPDATE condicionado a balance_version
(compare-and-swap). Falhas sobem como erro; nada é repetido em silêncio.
=============================================================================
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Callable, List, Optional
from uuid import uuid4

from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import async_sessionmaker

from .. import models
from .errors import AccountNotFound, ConcurrentUpdateError, StorageError
from .records import (
    AuditEntry,
    BalanceTransaction,
    Card,
    DepositRequest,
    DepositStatus,
    PlayRecord,
    Role,
    TransactionType,
    UserAccount,
    can_transition,
    to_money,
    utcnow,
)

logger = logging.getLogger(__name__)

# Recebe a conta travada e devolve o lançamento a gravar
TransactionBuilder = Callable[[UserAccount], BalanceTransaction]

# Falhas de infraestrutura viram StorageError; a transação do banco é desfeita
TRANSIENT_ERRORS = (SQLAlchemyError, asyncio.TimeoutError, OSError)


class SettlementStore(ABC):
    """Operações tipadas sobre as coleções usadas pela liquidação."""

    @abstractmethod
    async def get_card(self, card_id: str) -> Optional[Card]:
        ...

    @abstractmethod
    async def get_account(self, user_id: str) -> Optional[UserAccount]:
        ...

    @abstractmethod
    async def apply_balance_change(
        self,
        user_id: str,
        build: TransactionBuilder,
        play: Optional[PlayRecord] = None,
    ) -> BalanceTransaction:
        """
        Aplica uma mudança de saldo como unidade atômica.

        Grava, nesta ordem e tudo-ou-nada: a jogada (se houver), o novo saldo
        e o lançamento em balance_transactions.
        """

    @abstractmethod
    async def list_transactions(self, user_id: str) -> List[BalanceTransaction]:
        """Lançamentos do usuário em ordem cronológica."""

    @abstractmethod
    async def create_deposit(
        self,
        user_id: str,
        amount,
        correlation_id: str,
        method: str = "PIX",
        simulated: bool = False,
    ) -> DepositRequest:
        ...

    @abstractmethod
    async def get_deposit(self, deposit_id: str) -> Optional[DepositRequest]:
        ...

    @abstractmethod
    async def find_pending_deposit(self, correlation_id: str) -> Optional[DepositRequest]:
        ...

    @abstractmethod
    async def transition_deposit(
        self,
        deposit_id: str,
        expected: DepositStatus,
        target: DepositStatus,
        audit: Optional[AuditEntry] = None,
    ) -> bool:
        """
        Compare-and-swap do status. Retorna False se o depósito não estava
        mais em `expected` (outra entrega do webhook chegou primeiro).
        O registro de auditoria, quando informado, é gravado na mesma transação.
        """

    @abstractmethod
    async def complete_deposit(
        self,
        deposit_id: str,
        user_id: str,
        build: TransactionBuilder,
    ) -> Optional[BalanceTransaction]:
        """
        pending -> completed e crédito do saldo numa única transação.

        Retorna None se o depósito não estava mais pendente. Qualquer falha
        desfaz as duas escritas: o depósito continua `pending` e uma nova
        entrega do webhook pode concluí-lo.
        """


def _check_transition(expected: DepositStatus, target: DepositStatus) -> None:
    if not can_transition(expected, target):
        raise ValueError(f"Transição de depósito inválida: {expected.value} -> {target.value}")


# =============================================================================
# CONVERSÃO LINHA -> REGISTRO
# =============================================================================

def _to_card(row: models.ScratchCard) -> Card:
    return Card(
        id=row.id,
        name=row.nome,
        display_prize=to_money(row.premio),
        cash_payout=to_money(row.cash_payout),
        win_chance=row.chances,
        active=bool(row.ativo),
    )


def _to_account(row: models.Profile) -> UserAccount:
    return UserAccount(
        user_id=row.user_id,
        balance=to_money(row.saldo),
        role=Role.parse(row.role),
        balance_version=row.balance_version or 0,
    )


def _to_transaction(row: models.BalanceTransaction) -> BalanceTransaction:
    return BalanceTransaction(
        id=row.id,
        user_id=row.user_id,
        transaction_type=TransactionType(row.transaction_type),
        amount=to_money(row.amount),
        previous_balance=to_money(row.previous_balance),
        new_balance=to_money(row.new_balance),
        reference_id=row.reference_id,
        metadata=dict(row.metadata_ or {}),
        simulated=row.is_simulated,
        created_at=row.created_at,
    )


def _to_deposit(row: models.CreditPurchase) -> DepositRequest:
    return DepositRequest(
        id=row.id,
        user_id=row.user_id,
        amount=to_money(row.amount),
        status=DepositStatus(row.status),
        correlation_id=row.external_ref,
        method=row.method,
        simulated=row.is_simulated,
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


# =============================================================================
# IMPLEMENTAÇÃO SQLALCHEMY
# =============================================================================

class SqlAlchemySettlementStore(SettlementStore):

    def __init__(self, session_factory: async_sessionmaker):
        self._session_factory = session_factory

    async def get_card(self, card_id: str) -> Optional[Card]:
        try:
            async with self._session_factory() as session:
                row = await session.get(models.ScratchCard, card_id)
                return _to_card(row) if row else None
        except SQLAlchemyError as e:
            raise StorageError() from e

    async def get_account(self, user_id: str) -> Optional[UserAccount]:
        try:
            async with self._session_factory() as session:
                result = await session.execute(
                    select(models.Profile).where(models.Profile.user_id == user_id)
                )
                row = result.scalar_one_or_none()
                return _to_account(row) if row else None
        except SQLAlchemyError as e:
            raise StorageError() from e

    async def _apply_locked(
        self,
        session,
        user_id: str,
        build: TransactionBuilder,
        play: Optional[PlayRecord] = None,
    ) -> BalanceTransaction:
        # 1. Travar a linha do perfil
        result = await session.execute(
            select(models.Profile)
            .where(models.Profile.user_id == user_id)
            .with_for_update()
        )
        profile = result.scalar_one_or_none()
        if profile is None:
            raise AccountNotFound()

        account = _to_account(profile)
        transaction = build(account)

        # 2. Jogada
        if play is not None:
            session.add(models.Play(
                id=play.id or str(uuid4()),
                user_id=play.user_id,
                raspadinha_id=play.card_id,
                resultado=play.is_winner,
                premio_ganho=play.prize_amount,
                is_simulated=play.simulated,
                created_at=play.created_at or utcnow(),
            ))
            await session.flush()

        # 3. Saldo (compare-and-swap na versão)
        updated = await session.execute(
            update(models.Profile)
            .where(
                models.Profile.user_id == user_id,
                models.Profile.balance_version == account.balance_version,
            )
            .values(
                saldo=transaction.new_balance,
                balance_version=account.balance_version + 1,
                updated_at=utcnow(),
            )
            .execution_options(synchronize_session=False)
        )
        if updated.rowcount != 1:
            raise ConcurrentUpdateError()

        # 4. Lançamento
        row = models.BalanceTransaction(
            id=transaction.id or str(uuid4()),
            user_id=transaction.user_id,
            transaction_type=transaction.transaction_type.value,
            amount=transaction.amount,
            previous_balance=transaction.previous_balance,
            new_balance=transaction.new_balance,
            reference_id=transaction.reference_id,
            metadata_=transaction.metadata,
            is_simulated=transaction.simulated,
            created_at=transaction.created_at or utcnow(),
        )
        session.add(row)
        await session.flush()
        return _to_transaction(row)

    async def apply_balance_change(
        self,
        user_id: str,
        build: TransactionBuilder,
        play: Optional[PlayRecord] = None,
    ) -> BalanceTransaction:
        try:
            async with self._session_factory() as session:
                async with session.begin():
                    stored = await self._apply_locked(session, user_id, build, play)
            return stored
        except TRANSIENT_ERRORS as e:
            logger.error("[STORAGE] Falha ao aplicar mudança de saldo de %s: %r", user_id, e)
            raise StorageError() from e

    async def list_transactions(self, user_id: str) -> List[BalanceTransaction]:
        try:
            async with self._session_factory() as session:
                result = await session.execute(
                    select(models.BalanceTransaction)
                    .where(models.BalanceTransaction.user_id == user_id)
                    .order_by(models.BalanceTransaction.created_at.asc())
                )
                return [_to_transaction(row) for row in result.scalars().all()]
        except SQLAlchemyError as e:
            raise StorageError() from e

    async def create_deposit(
        self,
        user_id: str,
        amount,
        correlation_id: str,
        method: str = "PIX",
        simulated: bool = False,
    ) -> DepositRequest:
        try:
            async with self._session_factory() as session:
                async with session.begin():
                    row = models.CreditPurchase(
                        id=str(uuid4()),
                        user_id=user_id,
                        amount=to_money(amount),
                        status=DepositStatus.PENDING.value,
                        method=method,
                        external_ref=correlation_id,
                        is_simulated=simulated,
                        created_at=utcnow(),
                        updated_at=utcnow(),
                    )
                    session.add(row)
                    await session.flush()
                    deposit = _to_deposit(row)
            return deposit
        except SQLAlchemyError as e:
            raise StorageError() from e

    async def get_deposit(self, deposit_id: str) -> Optional[DepositRequest]:
        try:
            async with self._session_factory() as session:
                row = await session.get(models.CreditPurchase, deposit_id)
                return _to_deposit(row) if row else None
        except SQLAlchemyError as e:
            raise StorageError() from e

    async def find_pending_deposit(self, correlation_id: str) -> Optional[DepositRequest]:
        try:
            async with self._session_factory() as session:
                result = await session.execute(
                    select(models.CreditPurchase)
                    .where(
                        models.CreditPurchase.external_ref == correlation_id,
                        models.CreditPurchase.status == DepositStatus.PENDING.value,
                    )
                    .order_by(models.CreditPurchase.created_at.asc())
                    .limit(1)
                )
                row = result.scalar_one_or_none()
                return _to_deposit(row) if row else None
        except SQLAlchemyError as e:
            raise StorageError() from e

    async def transition_deposit(
        self,
        deposit_id: str,
        expected: DepositStatus,
        target: DepositStatus,
        audit: Optional[AuditEntry] = None,
    ) -> bool:
        _check_transition(expected, target)
        try:
            async with self._session_factory() as session:
                async with session.begin():
                    updated = await session.execute(
                        update(models.CreditPurchase)
                        .where(
                            models.CreditPurchase.id == deposit_id,
                            models.CreditPurchase.status == expected.value,
                        )
                        .values(status=target.value, updated_at=utcnow())
                        .execution_options(synchronize_session=False)
                    )
                    if updated.rowcount != 1:
                        return False

                    if audit is not None:
                        session.add(models.AuditLog(
                            id=audit.id or str(uuid4()),
                            user_id=audit.user_id,
                            action=audit.action,
                            table_name=audit.table_name,
                            record_id=audit.record_id,
                            old_values=audit.old_values,
                            new_values=audit.new_values,
                            created_at=audit.created_at or utcnow(),
                        ))
            return True
        except SQLAlchemyError as e:
            raise StorageError() from e

    async def complete_deposit(
        self,
        deposit_id: str,
        user_id: str,
        build: TransactionBuilder,
    ) -> Optional[BalanceTransaction]:
        try:
            async with self._session_factory() as session:
                async with session.begin():
                    updated = await session.execute(
                        update(models.CreditPurchase)
                        .where(
                            models.CreditPurchase.id == deposit_id,
                            models.CreditPurchase.status == DepositStatus.PENDING.value,
                        )
                        .values(status=DepositStatus.COMPLETED.value, updated_at=utcnow())
                        .execution_options(synchronize_session=False)
                    )
                    if updated.rowcount != 1:
                        return None

                    stored = await self._apply_locked(session, user_id, build)
            return stored
        except TRANSIENT_ERRORS as e:
            logger.error("[STORAGE] Falha ao concluir depósito %s: %r", deposit_id, e)
            raise StorageError() from e
