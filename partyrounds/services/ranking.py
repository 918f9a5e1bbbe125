"""
Service: ranking.py
Classement de priorité à partir des mises.

Règles :
1) mise effective = mise demandée si elle est couverte par le solde, sinon 0
   (une sur-mise est perdue, jamais partiellement honorée);
2) tri par mise effective décroissante;
3) égalités départagées par numéro de siège, dans un sens qui démarre au sens
   configuré et s'inverse après chaque groupe d'égalité de plus d'un joueur
   (les groupes d'un seul joueur ne changent pas le sens);
4) rangs consécutifs 1..N, identifiant de groupe partagé (0 pour un joueur seul).

Le calcul est pur et déterministe : mêmes entrées → même classement.
"""
from __future__ import annotations

from dataclasses import dataclass, asdict
from itertools import groupby
from typing import Any, Dict, Iterable, List, Optional, Tuple

ASC = "ASC"
DESC = "DESC"

NOTE_NO_BET = "Aucune mise soumise"


@dataclass(frozen=True)
class BidInput:
    player_id: str
    seat: int
    display_name: str
    requested: Optional[int]
    balance: int


@dataclass(frozen=True)
class RankingEntry:
    rank: int
    player_id: str
    seat: int
    display_name: str
    requested: Optional[int]
    effective_bid: int
    tie_group_id: int
    note: Optional[str] = None

    def to_row(self) -> Dict[str, Any]:
        return asdict(self)


def effective_bid(requested: Optional[int], balance: int) -> Tuple[int, Optional[str]]:
    """Mise réellement honorée + note éventuelle."""
    if requested is None:
        return 0, NOTE_NO_BET
    if requested < 0:
        return 0, f"Mise invalide ({requested})"
    if requested > balance:
        return 0, f"Mise invalide ({requested} > {balance} jetons)"
    return requested, None


def flip(direction: str) -> str:
    return DESC if direction == ASC else ASC


def rank_bids(bids: Iterable[BidInput], start_direction: str = ASC) -> List[RankingEntry]:
    resolved = []
    for bid in bids:
        amount, note = effective_bid(bid.requested, bid.balance)
        resolved.append((bid, amount, note))

    resolved.sort(key=lambda item: item[1], reverse=True)

    direction = start_direction if start_direction in (ASC, DESC) else ASC
    entries: List[RankingEntry] = []
    group_id = 0
    rank = 1
    for amount, group in groupby(resolved, key=lambda item: item[1]):
        members = sorted(group, key=lambda item: item[0].seat, reverse=(direction == DESC))
        shared_id = 0
        if len(members) > 1:
            group_id += 1
            shared_id = group_id
        for bid, value, note in members:
            entries.append(
                RankingEntry(
                    rank=rank,
                    player_id=bid.player_id,
                    seat=bid.seat,
                    display_name=bid.display_name,
                    requested=bid.requested,
                    effective_bid=value,
                    tie_group_id=shared_id,
                    note=note,
                )
            )
            rank += 1
        if len(members) > 1:
            direction = flip(direction)
    return entries
