"""
=============================================================================
RASPADINHA - Regra de Preço
=============================================================================
O servidor não confia no preço enviado pelo cliente: recalcula o preço a
partir do nome e do prêmio de vitrine da raspadinha e compara.

Tabela:
- Casa, Onix ........................... R$ 10,00
- Prêmio >= 15 mil, Moto, Casa Própria . R$  5,00
- Prêmio <= 500 ........................ R$  0,50
- Demais (iPhone, 1 mil a 10 mil) ...... R$  1,00
=============================================================================
"""

from decimal import Decimal
from typing import Any

from .config import PricingConfig
from .records import to_money


def _contains_any(name: str, tokens) -> bool:
    return any(token in name for token in tokens)


def resolve_price(card_name: str, display_prize: Any) -> Decimal:
    """
    Calcula o preço canônico de uma raspadinha.

    Função pura: mesmo (nome, prêmio) sempre produz o mesmo preço.
    "Casa Própria" pertence à faixa de alto valor, não à faixa premium da Casa.
    """
    name = (card_name or "").lower()
    prize = to_money(display_prize)

    if _contains_any(name, PricingConfig.PREMIUM_TOKENS) and not _contains_any(
        name, PricingConfig.OWNED_HOUSE_TOKENS
    ):
        return PricingConfig.PREMIUM_PRICE

    if prize >= PricingConfig.HIGH_VALUE_THRESHOLD or _contains_any(
        name, PricingConfig.HIGH_VALUE_TOKENS
    ):
        return PricingConfig.HIGH_VALUE_PRICE

    if prize <= PricingConfig.SMALL_PRIZE_THRESHOLD:
        return PricingConfig.SMALL_PRIZE_PRICE

    return PricingConfig.DEFAULT_PRICE


def price_matches(declared: Any, resolved: Decimal) -> bool:
    """Aceita diferença de até 1 centavo."""
    try:
        declared_value = Decimal(str(declared))
    except (ArithmeticError, ValueError):
        return False
    if not declared_value.is_finite():
        return False
    return abs(declared_value - resolved) <= PricingConfig.PRICE_TOLERANCE
