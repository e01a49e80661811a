"""
=============================================================================
RASPADINHA - Dependências FastAPI
=============================================================================
Store, ledger, gateway e RNG vêm do app.state, montado no lifespan.
Os testes substituem qualquer um via app.dependency_overrides.
=============================================================================
"""

from random import Random

from fastapi import Depends, Request

from .config import settings
from .game_engine import system_rng
from .ledger import SettlementLedger
from .pix_gateway import WooviClient
from .reconciler import PaymentReconciler
from .storage import SettlementStore


def get_store(request: Request) -> SettlementStore:
    return request.app.state.store


def get_ledger(store: SettlementStore = Depends(get_store)) -> SettlementLedger:
    return SettlementLedger(store)


def get_reconciler(
    store: SettlementStore = Depends(get_store),
    ledger: SettlementLedger = Depends(get_ledger),
) -> PaymentReconciler:
    return PaymentReconciler(store, ledger)


def get_gateway(request: Request) -> WooviClient:
    return request.app.state.gateway


def get_rng() -> Random:
    return system_rng


def get_enforce_affordability() -> bool:
    return settings.ENFORCE_AFFORDABILITY
