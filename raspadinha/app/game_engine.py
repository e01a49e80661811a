"""
=============================================================================
RASPADINHA - Motor de Sorteio e Grade
=============================================================================
Decide o resultado da jogada no servidor e só depois monta a grade exibida.

Princípios:
- O resultado (ganhou/perdeu, valor do prêmio) é fixado antes de qualquer
  resposta e a grade nunca consegue alterá-lo
- A aleatoriedade vem do CSPRNG do sistema operacional
- Papéis privilegiados (admin/influencer) jogam em modo simulado, com
  probabilidade própria, fora da economia real
=============================================================================
"""

import math
import secrets
from dataclasses import dataclass, field
from decimal import Decimal
from random import Random
from typing import Dict, Iterable, List, Optional, Sequence, Union

from .config import GameConfig
from .records import Card, Role, to_money


# Fonte padrão de aleatoriedade: os.urandom por baixo, imprevisível para o cliente
system_rng: Random = secrets.SystemRandom()


# =============================================================================
# POLÍTICA DE JOGO POR PAPEL
# =============================================================================

@dataclass(frozen=True)
class PlayPolicy:
    """
    Modo de liquidação de uma jogada.

    - fixed_win_chance: substitui a chance configurada na raspadinha
    - charges_price: se o preço é debitado do saldo
    - simulated: lançamentos vão para o balde simulado (fora da receita real)
    """
    role: Role
    fixed_win_chance: Optional[float]
    charges_price: bool
    simulated: bool


PLAY_POLICIES: Dict[Role, PlayPolicy] = {
    Role.USER: PlayPolicy(
        role=Role.USER,
        fixed_win_chance=None,
        charges_price=True,
        simulated=False,
    ),
    Role.ADMIN: PlayPolicy(
        role=Role.ADMIN,
        fixed_win_chance=GameConfig.PRIVILEGED_WIN_CHANCE,
        charges_price=True,
        simulated=True,
    ),
    # Jogadas promocionais: só o prêmio entra, o preço não é debitado
    Role.INFLUENCER: PlayPolicy(
        role=Role.INFLUENCER,
        fixed_win_chance=GameConfig.PRIVILEGED_WIN_CHANCE,
        charges_price=False,
        simulated=True,
    ),
}


def policy_for(role: Role) -> PlayPolicy:
    return PLAY_POLICIES.get(role, PLAY_POLICIES[Role.USER])


# =============================================================================
# RESOLVEDOR DE RESULTADO
# =============================================================================

@dataclass(frozen=True)
class Outcome:
    is_winner: bool
    prize_amount: Decimal
    win_chance: float
    draw: float


def effective_win_chance(raw_chance: Optional[float]) -> float:
    """Chance configurada limitada a (0, 0.95]; ausente ou <= 0 vira 0.25."""
    try:
        chance = float(raw_chance)
    except (TypeError, ValueError):
        return GameConfig.DEFAULT_WIN_CHANCE
    if not math.isfinite(chance) or chance <= 0:
        return GameConfig.DEFAULT_WIN_CHANCE
    return min(chance, GameConfig.MAX_WIN_CHANCE)


def resolve_cash_payout(card: Card) -> Decimal:
    """
    Valor realmente creditado numa vitória.
    cash_payout > 0 tem prioridade; senão o prêmio de vitrine limitado a 1000;
    sem prêmio de vitrine, 100 fixo.
    """
    cash_payout = to_money(card.cash_payout)
    if cash_payout > 0:
        return cash_payout
    display_prize = to_money(card.display_prize)
    if display_prize > 0:
        return min(display_prize, to_money(GameConfig.FALLBACK_PRIZE_CAP))
    return to_money(GameConfig.FALLBACK_PRIZE_FLAT)


def resolve_outcome(card: Card, policy: PlayPolicy, rng: Random = system_rng) -> Outcome:
    """Sorteia ganhou/perdeu e o valor do prêmio."""
    if policy.fixed_win_chance is not None:
        chance = policy.fixed_win_chance
    else:
        chance = effective_win_chance(card.win_chance)

    draw = rng.random()
    is_winner = draw < chance
    prize = resolve_cash_payout(card) if is_winner else to_money(0)

    return Outcome(is_winner=is_winner, prize_amount=prize, win_chance=chance, draw=draw)


# =============================================================================
# SINTETIZADOR DE GRADE
# =============================================================================

Number = Union[int, float]


@dataclass
class Grid:
    cells: List[Decimal]
    winning_cells: List[int] = field(default_factory=list)  # posições 1-based

    def as_numbers(self) -> List[Number]:
        return [_as_number(value) for value in self.cells]


def _as_number(value: Decimal) -> Number:
    if value == value.to_integral_value():
        return int(value)
    return float(value)


def win_display_value(card: Card) -> Decimal:
    """Valor mostrado nas 3 casas vencedoras."""
    display_prize = to_money(card.display_prize)
    if display_prize > 0:
        return display_prize
    return max(resolve_cash_payout(card), to_money(GameConfig.MIN_WIN_DISPLAY_VALUE))


def candidate_pool(card: Card) -> List[Decimal]:
    """Denominações padrão + valores da própria raspadinha, sem repetição."""
    values = [Decimal(v) for v in GameConfig.STANDARD_DENOMINATIONS]
    values.append(win_display_value(card))
    values.append(resolve_cash_payout(card))
    return _dedupe(values)


def _dedupe(values: Iterable) -> List[Decimal]:
    return list(dict.fromkeys(to_money(v) for v in values))


def _top_up(pool: List[Decimal], excluded: Optional[Decimal], slots: int) -> List[Decimal]:
    """
    Garante valores distintos suficientes para preencher `slots` casas sem
    passar de MAX_REPEATS por valor, completando com as denominações padrão.
    """
    needed = math.ceil(slots / GameConfig.MAX_REPEATS)
    usable = [v for v in pool if v != excluded]
    if len(usable) >= needed:
        return pool

    extended = list(pool)
    for raw in GameConfig.STANDARD_DENOMINATIONS:
        value = to_money(raw)
        if value in extended or value == excluded:
            continue
        extended.append(value)
        usable.append(value)
        if len(usable) >= needed:
            break
    return extended


def _fill(
    grid: List[Optional[Decimal]],
    pool: Sequence[Decimal],
    excluded: Optional[Decimal],
    rng: Random,
) -> None:
    counts: Dict[Decimal, int] = {}
    for index, current in enumerate(grid):
        if current is not None:
            continue
        choices = [
            value for value in pool
            if value != excluded and counts.get(value, 0) < GameConfig.MAX_REPEATS
        ]
        chosen = rng.choice(choices)
        grid[index] = chosen
        counts[chosen] = counts.get(chosen, 0) + 1


def build_grid(
    is_winner: bool,
    win_value: Decimal,
    pool: Sequence,
    rng: Random = system_rng,
) -> Grid:
    """
    Monta a grade 3x3 coerente com o resultado já decidido.

    Vencedor: exatamente 3 casas com o valor do prêmio; as demais nunca
    repetem esse valor e nenhum outro valor aparece mais de 2 vezes.
    Perdedor: nenhum valor aparece mais de 2 vezes, sem casas vencedoras.
    """
    size = GameConfig.GRID_SIZE
    base = _dedupe(pool) or _dedupe(GameConfig.STANDARD_DENOMINATIONS)
    grid: List[Optional[Decimal]] = [None] * size

    if is_winner:
        value = to_money(win_value) if win_value else base[0]
        positions = sorted(rng.sample(range(size), GameConfig.WINNING_MATCH))
        for position in positions:
            grid[position] = value
        filler_pool = _top_up(base, value, size - GameConfig.WINNING_MATCH)
        _fill(grid, filler_pool, value, rng)
        return Grid(cells=grid, winning_cells=[p + 1 for p in positions])

    filler_pool = _top_up(base, None, size)
    _fill(grid, filler_pool, None, rng)
    return Grid(cells=grid, winning_cells=[])
