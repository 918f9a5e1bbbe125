"""
Calcul du danger suggéré pour un niveau de la traversée.

7 points par joueur encore sur le bateau, multiplié par une fourchette qui
dépend de la manche, puis ×1.8 au dernier niveau.
"""
from typing import Dict, Tuple

BASE_PER_PLAYER = 7
MANCHE_MULTIPLIERS: Dict[int, Tuple[float, float]] = {
    1: (0.7, 1.1),
    2: (0.9, 1.4),
    3: (1.1, 1.7),
}
TERMINAL_LEVEL_MULTIPLIER = 1.8


def danger_range(players_on_boat: int, manche: int, level: int, terminal_level: int = 5) -> Dict[str, int]:
    low, high = MANCHE_MULTIPLIERS.get(manche, MANCHE_MULTIPLIERS[3])
    if level >= terminal_level:
        low *= TERMINAL_LEVEL_MULTIPLIER
        high *= TERMINAL_LEVEL_MULTIPLIER
    base = BASE_PER_PLAYER * max(0, players_on_boat)
    minimum = round(base * low)
    maximum = round(base * high)
    return {"min": minimum, "max": maximum, "suggested": round((minimum + maximum) / 2)}
