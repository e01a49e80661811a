"""
=============================================================================
RASPADINHA - Livro-Razão de Saldo (Settlement Ledger)
=============================================================================
Única porta de entrada para mudanças de saldo.

Cada mudança gera exatamente um lançamento em balance_transactions:
- previous_balance: saldo lido com a linha travada
- amount: delta efetivo (com sinal)
- new_balance: previous_balance + amount, nunca abaixo de zero

Quando o delta pedido deixaria o saldo negativo, o saldo é limitado a zero e
o lançamento registra o delta efetivo; o pedido original fica em metadata.
=============================================================================
"""

import logging
from decimal import Decimal
from typing import Any, Dict, Iterable, Optional

from .errors import LedgerIntegrityError
from .game_engine import Outcome, PlayPolicy
from .records import (
    BalanceTransaction,
    Card,
    DepositRequest,
    PlayRecord,
    TransactionType,
    UserAccount,
    to_money,
)
from .storage import SettlementStore

logger = logging.getLogger(__name__)

ZERO = Decimal("0.00")


def build_transaction(
    account: UserAccount,
    delta: Any,
    transaction_type: TransactionType,
    reference_id: Optional[str] = None,
    metadata: Optional[Dict[str, Any]] = None,
    simulated: bool = False,
) -> BalanceTransaction:
    """Calcula o lançamento a partir do saldo travado."""
    requested = to_money(delta)
    previous = to_money(account.balance)
    new_balance = max(previous + requested, ZERO)
    amount = new_balance - previous

    meta = dict(metadata or {})
    if amount != requested:
        meta["requested_amount"] = float(requested)
        meta["clamped"] = True

    transaction = BalanceTransaction(
        user_id=account.user_id,
        transaction_type=transaction_type,
        amount=amount,
        previous_balance=previous,
        new_balance=new_balance,
        reference_id=reference_id,
        metadata=meta,
        simulated=simulated,
    )
    verify_transaction(transaction)
    return transaction


def verify_transaction(transaction: BalanceTransaction) -> None:
    """Recusa qualquer lançamento que quebre a equação de saldo."""
    if not transaction.is_consistent():
        raise LedgerIntegrityError(
            f"Balance equation failed: {transaction.previous_balance} + "
            f"{transaction.amount} != {transaction.new_balance}"
        )
    if transaction.new_balance < ZERO:
        raise LedgerIntegrityError("Negative balance")


class SettlementLedger:
    """
    Aplica deltas de saldo através do adaptador de armazenamento.

    O cálculo do lançamento roda dentro da transação do banco, sobre a conta
    travada; este objeto não guarda estado entre chamadas.
    """

    def __init__(self, store: SettlementStore):
        self.store = store

    async def settle(
        self,
        user_id: str,
        delta: Any,
        transaction_type: TransactionType,
        reference_id: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
        simulated: bool = False,
    ) -> BalanceTransaction:
        def build(account: UserAccount) -> BalanceTransaction:
            return build_transaction(
                account, delta, transaction_type, reference_id, metadata, simulated
            )

        transaction = await self.store.apply_balance_change(user_id, build)
        self._log(transaction)
        return transaction

    async def play_and_settle(
        self,
        account: UserAccount,
        card: Card,
        price: Decimal,
        outcome: Outcome,
        policy: PlayPolicy,
        display_value: Decimal,
    ) -> BalanceTransaction:
        """
        Liquida uma jogada: grava a jogada, o saldo e o lançamento juntos.

        Usuário e admin pagam o preço e recebem o prêmio; influencer só recebe
        o prêmio.
        """
        prize = to_money(outcome.prize_amount)
        delta = prize - to_money(price) if policy.charges_price else prize

        metadata = {
            "scratch_card_id": card.id,
            "scratch_card_name": card.name,
            "game_result": "win" if outcome.is_winner else "loss",
            "prize_amount": float(prize),
            "prize_display_value": float(to_money(display_value)),
            "card_price": float(to_money(price)),
            "role": policy.role.value,
            "is_simulated": policy.simulated,
        }
        if policy.simulated:
            metadata[f"{policy.role.value}_simulated"] = True

        transaction_type = TransactionType.PRIZE_WIN if outcome.is_winner else TransactionType.GAME_PURCHASE
        play = PlayRecord(
            user_id=account.user_id,
            card_id=card.id,
            is_winner=outcome.is_winner,
            prize_amount=prize,
            simulated=policy.simulated,
        )

        def build(locked: UserAccount) -> BalanceTransaction:
            return build_transaction(
                locked,
                delta,
                transaction_type,
                reference_id=card.id,
                metadata=metadata,
                simulated=policy.simulated,
            )

        transaction = await self.store.apply_balance_change(account.user_id, build, play=play)
        self._log(transaction)
        return transaction

    async def credit_deposit(
        self,
        deposit: DepositRequest,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> Optional[BalanceTransaction]:
        """
        Conclui o depósito e credita o saldo na mesma transação.

        Retorna None quando outra entrega já tirou o depósito de `pending`.
        """
        def build(account: UserAccount) -> BalanceTransaction:
            return build_transaction(
                account,
                deposit.amount,
                TransactionType.DEPOSIT,
                reference_id=deposit.id,
                metadata=metadata,
            )

        transaction = await self.store.complete_deposit(deposit.id, deposit.user_id, build)
        if transaction is not None:
            self._log(transaction)
        return transaction

    async def adjust(self, user_id: str, amount: Decimal, reason: str) -> BalanceTransaction:
        """Ajuste manual feito pelo admin (delta com sinal)."""
        return await self.settle(
            user_id,
            to_money(amount),
            TransactionType.ADMIN_ADJUSTMENT,
            metadata={"admin_reason": reason},
        )

    @staticmethod
    def _log(transaction: BalanceTransaction) -> None:
        bucket = "SIMULATED" if transaction.simulated else "REAL"
        logger.info(
            "[LEDGER] %s %s %s: %s -> %s (%s%s)",
            bucket,
            transaction.transaction_type.value,
            transaction.user_id,
            transaction.previous_balance,
            transaction.new_balance,
            "+" if transaction.amount >= 0 else "",
            transaction.amount,
        )
        if transaction.metadata.get("clamped"):
            logger.warning(
                "[LEDGER] Saldo de %s limitado a zero (pedido %s)",
                transaction.user_id,
                transaction.metadata.get("requested_amount"),
            )

    # =========================================================================
    # AUDITORIA
    # =========================================================================

    @staticmethod
    def replay(
        transactions: Iterable[BalanceTransaction],
        initial_balance: Any = ZERO,
        current_balance: Any = None,
    ) -> Dict[str, Any]:
        """
        Reproduz os lançamentos a partir do saldo inicial e detecta anomalias.

        - invalid_entries: linhas que quebram a equação
        - broken_chain: linhas cujo previous_balance difere do saldo corrente
        - drift: saldo registrado menos saldo recalculado
        """
        calculated = to_money(initial_balance)
        invalid_entries = []
        broken_chain = []
        count = 0

        for transaction in transactions:
            count += 1
            if not transaction.is_consistent():
                invalid_entries.append(transaction.id)
            if to_money(transaction.previous_balance) != calculated:
                broken_chain.append(transaction.id)
            calculated += to_money(transaction.amount)

        recorded = calculated if current_balance is None else to_money(current_balance)
        drift = recorded - calculated

        return {
            "total_entries_verified": count,
            "invalid_entries": invalid_entries,
            "broken_chain": broken_chain,
            "calculated_balance": str(calculated),
            "recorded_balance": str(recorded),
            "drift": str(drift),
            "integrity_status": "OK" if drift == 0 and not invalid_entries and not broken_chain else "ALERT",
        }

    @staticmethod
    def bucket_totals(transactions: Iterable[BalanceTransaction]) -> Dict[str, str]:
        """Separa o dinheiro real do simulado (admin/influencer)."""
        real = ZERO
        simulated = ZERO
        for transaction in transactions:
            if transaction.simulated:
                simulated += to_money(transaction.amount)
            else:
                real += to_money(transaction.amount)
        return {"real": str(real), "simulated": str(simulated)}
