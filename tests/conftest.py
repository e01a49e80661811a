"""
Fixtures compartilhadas: store em memória, gateway falso e RNG controlado.
"""

import random
from dataclasses import replace
from decimal import Decimal
from typing import Dict, List, Optional
from uuid import uuid4

import pytest
from fastapi.testclient import TestClient

from raspadinha.app.config import settings
from raspadinha.app.deps import get_enforce_affordability, get_rng
from raspadinha.app.errors import AccountNotFound, PaymentGatewayError, StorageError
from raspadinha.app.main import app
from raspadinha.app.pix_gateway import PixCharge
from raspadinha.app.records import (
    AuditEntry,
    BalanceTransaction,
    Card,
    DepositRequest,
    DepositStatus,
    PlayRecord,
    Role,
    UserAccount,
    can_transition,
    to_money,
    utcnow,
)
from raspadinha.app.storage import SettlementStore


class FixedRandom(random.Random):
    """`random()` devolve sempre `draw`; choice/sample seguem a semente."""

    def __init__(self, draw: float = 0.99, seed: int = 7):
        super().__init__(seed)
        self.draw = draw

    def random(self) -> float:
        return self.draw

    # Mantém choice/sample no gerador semeado, não em random()
    def getrandbits(self, k: int) -> int:
        return super().getrandbits(k)


class InMemorySettlementStore(SettlementStore):
    """
    Dublê do adaptador de armazenamento.

    `fail_on` contém nomes de operações que devem levantar StorageError
    antes de qualquer mudança.
    """

    def __init__(self):
        self.cards: Dict[str, Card] = {}
        self.accounts: Dict[str, UserAccount] = {}
        self.plays: List[PlayRecord] = []
        self.transactions: List[BalanceTransaction] = []
        self.deposits: Dict[str, DepositRequest] = {}
        self.audit: List[AuditEntry] = []
        self.fail_on = set()
        self.writes = 0

    # helpers de teste
    def add_card(self, card: Card) -> Card:
        self.cards[card.id] = card
        return card

    def add_account(self, user_id: str, balance, role: Role = Role.USER) -> UserAccount:
        account = UserAccount(user_id=user_id, balance=to_money(balance), role=role)
        self.accounts[user_id] = account
        return account

    def add_deposit(self, user_id: str, amount, correlation_id: str,
                    status: DepositStatus = DepositStatus.PENDING) -> DepositRequest:
        deposit = DepositRequest(
            id=str(uuid4()),
            user_id=user_id,
            amount=to_money(amount),
            status=status,
            correlation_id=correlation_id,
            created_at=utcnow(),
            updated_at=utcnow(),
        )
        self.deposits[deposit.id] = deposit
        return deposit

    def balance(self, user_id: str) -> Decimal:
        return self.accounts[user_id].balance

    def _check(self, operation: str) -> None:
        if operation in self.fail_on:
            raise StorageError()

    # SettlementStore
    async def get_card(self, card_id: str) -> Optional[Card]:
        self._check("get_card")
        return self.cards.get(card_id)

    async def get_account(self, user_id: str) -> Optional[UserAccount]:
        self._check("get_account")
        return self.accounts.get(user_id)

    async def apply_balance_change(self, user_id, build, play=None) -> BalanceTransaction:
        self._check("apply_balance_change")
        account = self.accounts.get(user_id)
        if account is None:
            raise AccountNotFound()
        transaction = build(account)
        if play is not None:
            self._check("play")

        if play is not None:
            self.plays.append(replace(play, id=str(uuid4()), created_at=utcnow()))
        self.accounts[user_id] = replace(
            account,
            balance=transaction.new_balance,
            balance_version=account.balance_version + 1,
        )
        stored = replace(transaction, id=str(uuid4()), created_at=utcnow())
        self.transactions.append(stored)
        self.writes += 1
        return stored

    async def complete_deposit(self, deposit_id, user_id, build) -> Optional[BalanceTransaction]:
        self._check("complete_deposit")
        deposit = self.deposits.get(deposit_id)
        if deposit is None or deposit.status is not DepositStatus.PENDING:
            return None
        # Falhas acontecem antes de qualquer escrita: tudo ou nada
        self._check("apply_balance_change")
        account = self.accounts.get(user_id)
        if account is None:
            raise AccountNotFound()
        transaction = build(account)

        self.deposits[deposit_id] = replace(deposit, status=DepositStatus.COMPLETED, updated_at=utcnow())
        self.accounts[user_id] = replace(
            account,
            balance=transaction.new_balance,
            balance_version=account.balance_version + 1,
        )
        stored = replace(transaction, id=str(uuid4()), created_at=utcnow())
        self.transactions.append(stored)
        self.writes += 1
        return stored

    async def list_transactions(self, user_id: str) -> List[BalanceTransaction]:
        return [t for t in self.transactions if t.user_id == user_id]

    async def create_deposit(self, user_id, amount, correlation_id, method="PIX", simulated=False):
        self._check("create_deposit")
        deposit = self.add_deposit(user_id, amount, correlation_id)
        self.writes += 1
        return deposit

    async def get_deposit(self, deposit_id: str) -> Optional[DepositRequest]:
        return self.deposits.get(deposit_id)

    async def find_pending_deposit(self, correlation_id: str) -> Optional[DepositRequest]:
        self._check("find_pending_deposit")
        for deposit in self.deposits.values():
            if deposit.correlation_id == correlation_id and deposit.status is DepositStatus.PENDING:
                return deposit
        return None

    async def transition_deposit(self, deposit_id, expected, target, audit=None) -> bool:
        if not can_transition(expected, target):
            raise ValueError(f"{expected.value} -> {target.value}")
        self._check(f"transition_{target.value}")
        deposit = self.deposits.get(deposit_id)
        if deposit is None or deposit.status is not expected:
            return False
        self.deposits[deposit_id] = replace(deposit, status=target, updated_at=utcnow())
        if audit is not None:
            self.audit.append(audit)
        self.writes += 1
        return True


class FakeGateway:

    def __init__(self):
        self.charges = []
        self.fail = False

    async def create_charge(self, correlation_id, amount, customer_name="Cliente", customer_email=""):
        if self.fail:
            raise PaymentGatewayError()
        self.charges.append((correlation_id, amount))
        return PixCharge(
            correlation_id=correlation_id,
            br_code="00020126580014br.gov.bcb.pix",
            qr_code_image="https://api.woovi.com/qr/1.png",
            pix_key="chave-pix",
            expires_in=3600,
            payment_link_url="https://woovi.com/pay/1",
            global_id="Q2hhcmdlOjE=",
        )

    async def close(self):
        pass


# =============================================================================
# FIXTURES
# =============================================================================

IPHONE = Card(id="card-iphone", name="iPhone 17", display_prize=Decimal("5000"),
              cash_payout=Decimal("0"), win_chance=0.25)
CASA_PROPRIA = Card(id="card-casa-propria", name="Casa Própria", display_prize=Decimal("20000"),
                    cash_payout=Decimal("0"), win_chance=0.10)
PIX_100 = Card(id="card-pix-100", name="100 Reais no PIX", display_prize=Decimal("100"),
               cash_payout=Decimal("100"), win_chance=0.30)
INACTIVE = Card(id="card-inactive", name="Moto Honda", display_prize=Decimal("15000"),
                cash_payout=Decimal("0"), win_chance=0.10, active=False)


@pytest.fixture
def store():
    store = InMemorySettlementStore()
    for card in (IPHONE, CASA_PROPRIA, PIX_100, INACTIVE):
        store.add_card(card)
    store.add_account("user-1", "50.00")
    store.add_account("admin-1", "100.00", Role.ADMIN)
    store.add_account("influencer-1", "0.00", Role.INFLUENCER)
    store.add_account("broke-1", "0.30")
    return store


@pytest.fixture
def rng():
    return FixedRandom()


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
def client(store, rng, gateway, monkeypatch):
    monkeypatch.setattr(settings, "WEBHOOK_AUTH_TOKEN", "")
    monkeypatch.setattr(settings, "ADMIN_API_KEY", "admin-secret")
    app.state.store = store
    app.state.gateway = gateway
    app.dependency_overrides[get_rng] = lambda: rng
    app.dependency_overrides[get_enforce_affordability] = lambda: False
    yield TestClient(app, raise_server_exceptions=False)
    app.dependency_overrides.clear()
    app.state.store = None
    app.state.gateway = None
