"""
Utils: team_utils.py
Rôle:
- Répartir des joueurs dans des clans (tirage équilibré).
- Former des binômes (mates) et des paires de duel aléatoires en évitant
  les coéquipiers.

Notes d'implémentation:
- `seed` permet de rejouer le tirage (déterministe pour tests / équité).
- Les clans sont distribués en round-robin après mélange.
- Un joueur laissé sans paire (effectif impair ou contrainte coéquipier)
  est renvoyé séparément.
"""
import random
from typing import Dict, List, Optional, Sequence, Set, Tuple


def _rng(seed):
    return random.Random(seed) if seed is not None else random


def assign_clans(
    players: Sequence[str],
    clans: Sequence[str],
    seed: Optional[int] = None,
) -> Dict[str, str]:
    """
    Répartit les joueurs dans les clans (écarts de taille au plus 1).

    Returns:
        Dict[str, str]: mapping player_id → clan.
    """
    if not players or not clans:
        return {}
    pool = list(players)
    _rng(seed).shuffle(pool)
    return {pid: clans[i % len(clans)] for i, pid in enumerate(pool)}


def random_pairs(
    players: Sequence[int],
    mates: Optional[Dict[int, int]] = None,
    seed: Optional[int] = None,
) -> Tuple[List[Tuple[int, int]], List[int]]:
    """
    Apparie les sièges au hasard, sans jamais associer deux coéquipiers.

    Returns:
        (paires dans l'ordre de passage, sièges restés sans adversaire)
    """
    mates = mates or {}
    pool = list(players)
    _rng(seed).shuffle(pool)

    used: Set[int] = set()
    pairs: List[Tuple[int, int]] = []
    for i, first in enumerate(pool):
        if first in used:
            continue
        for second in pool[i + 1:]:
            if second in used:
                continue
            if mates.get(first) == second or mates.get(second) == first:
                continue
            pairs.append((first, second))
            used.update((first, second))
            break

    unpaired = [seat for seat in pool if seat not in used]
    return pairs, unpaired


def assign_mates(seats: Sequence[int], seed: Optional[int] = None) -> Dict[int, int]:
    """
    Forme des binômes au hasard. Le lien est symétrique ; avec un effectif
    impair, un siège reste seul (absent du résultat).
    """
    pool = list(seats)
    _rng(seed).shuffle(pool)
    mates: Dict[int, int] = {}
    for first, second in zip(pool[0::2], pool[1::2]):
        mates[first] = second
        mates[second] = first
    return mates
