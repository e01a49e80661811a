"""
=============================================================================
RASPADINHA - Processamento da Jogada
=============================================================================
Recebida -> Validada -> Resolvida -> Liquidada -> Respondida

- Validação (parâmetros, raspadinha ativa, perfil, preço) acontece antes de
  qualquer escrita; falha aqui não altera nada
- O resultado é sorteado no servidor antes da grade ser montada
- Falha na liquidação vira erro 500, nunca uma "derrota"
=============================================================================
"""

import json
import logging
from decimal import Decimal
from random import Random
from typing import Any, Dict

from fastapi import APIRouter, Depends, Request
from pydantic import ValidationError

from .deps import get_enforce_affordability, get_ledger, get_rng, get_store
from .errors import (
    AccountNotFound,
    CardNotFound,
    InsufficientBalance,
    InvalidCardPrice,
    MissingParameters,
    StorageError,
)
from .game_engine import (
    build_grid,
    candidate_pool,
    policy_for,
    resolve_outcome,
    win_display_value,
)
from .ledger import SettlementLedger
from .pricing import price_matches, resolve_price
from .schemas import PlayRequest, PlayResponse
from .storage import SettlementStore

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Game"])

LOSS_MESSAGE = "Não foi desta vez! Tente novamente."


def format_brl(value: Decimal) -> str:
    """Formata em reais: 1234.5 -> 'R$ 1.234,50'."""
    text = f"{value:,.2f}"
    return "R$ " + text.replace(",", "_").replace(".", ",").replace("_", ".")


def result_message(is_winner: bool, prize: Decimal, card_name: str) -> str:
    if not is_winner:
        return LOSS_MESSAGE
    if prize > 0:
        return f"Parabéns! Você ganhou {format_brl(prize)}!"
    return f"Parabéns! Você desbloqueou o prêmio: {card_name}"


def _is_blank(value: Any) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


async def process_game(
    play: PlayRequest,
    store: SettlementStore,
    ledger: SettlementLedger,
    rng: Random,
    enforce_affordability: bool = False,
) -> PlayResponse:
    # 1. Validação
    if _is_blank(play.scratch_card_id) or _is_blank(play.user_id) or _is_blank(play.card_price):
        raise MissingParameters()

    card = await store.get_card(play.scratch_card_id)
    if card is None or not card.active:
        raise CardNotFound()

    account = await store.get_account(play.user_id)
    if account is None:
        raise AccountNotFound()

    price = resolve_price(card.name, card.display_prize)
    if not price_matches(play.card_price, price):
        logger.warning(
            "[GAME] Preço inválido para %s: enviado %s, esperado %s",
            card.name, play.card_price, price,
        )
        raise InvalidCardPrice()

    policy = policy_for(account.role)
    if enforce_affordability and policy.charges_price and account.balance < price:
        raise InsufficientBalance()

    # 2. Sorteio (antes de qualquer grade)
    outcome = resolve_outcome(card, policy, rng)
    display_value = win_display_value(card)
    grid = build_grid(outcome.is_winner, display_value, candidate_pool(card), rng)

    # 3. Liquidação
    try:
        transaction = await ledger.play_and_settle(
            account, card, price, outcome, policy, display_value
        )
    except StorageError as e:
        logger.error("[GAME] Falha ao gravar jogada de %s: %s", account.user_id, e)
        raise StorageError("Failed to record game") from e

    logger.info(
        "[GAME] %s jogou %s (%s): %s, prêmio R$ %s, chance %.2f",
        account.user_id,
        card.name,
        policy.role.value,
        "GANHOU" if outcome.is_winner else "perdeu",
        outcome.prize_amount,
        outcome.win_chance,
    )

    prize = float(outcome.prize_amount)
    return PlayResponse(
        success=True,
        is_winner=outcome.is_winner,
        prize_amount=prize,
        new_balance=float(transaction.new_balance),
        message=result_message(outcome.is_winner, outcome.prize_amount, card.name),
        grid=grid.as_numbers(),
        winning_cells=grid.winning_cells,
        win=outcome.is_winner,
        prize=prize,
    )


@router.post("/process-game", response_model=PlayResponse)
async def process_game_endpoint(
    request: Request,
    store: SettlementStore = Depends(get_store),
    ledger: SettlementLedger = Depends(get_ledger),
    rng: Random = Depends(get_rng),
    enforce_affordability: bool = Depends(get_enforce_affordability),
) -> Dict[str, Any]:
    """
    Compra e joga uma raspadinha.

    Body: {scratch_card_id, user_id, card_price}
    """
    try:
        body = json.loads(await request.body() or b"{}")
        play = PlayRequest.model_validate(body if isinstance(body, dict) else {})
    except (ValueError, ValidationError) as e:
        raise MissingParameters() from e

    result = await process_game(play, store, ledger, rng, enforce_affordability)
    return result.model_dump()
