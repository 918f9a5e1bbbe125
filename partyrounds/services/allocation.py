"""
Service: allocation.py
Algorithmes d'allocation sous contrainte de rareté, pilotés par le classement
de priorité :

- `allocate_positions` : positions 1..N, place souhaitée si libre, sinon
  recherche vers l'avant avec retour à 1. Le résultat est vérifié (bijection).
- `allocate_shop` : achats dans l'ordre de priorité, refus motivés
  (hors offre, rupture, prix absent, jetons insuffisants).

Les deux fonctions sont pures : l'orchestrateur applique ensuite les
mutations (registre, lignes de résultat, journaux).
"""
from __future__ import annotations

from collections import Counter
from dataclasses import dataclass, field, asdict
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence

from partyrounds.engine.errors import IntegrityViolation

DENY_NOT_IN_OFFER = "NOT_IN_OFFER"
DENY_SOLD_OUT = "SOLD_OUT"
DENY_NO_PRICE = "NO_PRICE"
DENY_INSUFFICIENT_FUNDS = "INSUFFICIENT_FUNDS"


# ---------------------------------------------------------------------------
# Positions
# ---------------------------------------------------------------------------

def allocate_positions(
    order: Sequence[str],
    desired: Dict[str, Optional[int]],
    slot_count: Optional[int] = None,
) -> Dict[str, int]:
    """
    `order` : identifiants joueurs dans l'ordre de priorité.
    `desired` : place souhaitée par joueur (None / hors bornes autorisés).
    Renvoie {player_id: position}.
    """
    n = len(order) if slot_count is None else slot_count
    if len(order) > n:
        raise IntegrityViolation(
            "Plus de joueurs que de places",
            details={"players": len(order), "slots": n},
        )
    taken: Dict[int, str] = {}
    result: Dict[str, int] = {}
    for player_id in order:
        wish = desired.get(player_id)
        valid = isinstance(wish, int) and 1 <= wish <= n
        if valid and wish not in taken:
            slot = wish
        else:
            start = wish if valid else 1
            slot = None
            for offset in range(n):
                candidate = (start - 1 + offset) % n + 1
                if candidate not in taken:
                    slot = candidate
                    break
            if slot is None:
                raise IntegrityViolation("Aucune place libre", details={"player_id": player_id})
        taken[slot] = player_id
        result[player_id] = slot

    verify_permutation(result.values(), len(order))
    return result


def verify_permutation(slots: Iterable[int], n: int) -> None:
    values = list(slots)
    if sorted(values) != list(range(1, n + 1)):
        raise IntegrityViolation(
            "Allocation de positions invalide (pas une permutation)",
            details={"slots": values, "n": n},
        )


# ---------------------------------------------------------------------------
# Boutique
# ---------------------------------------------------------------------------

@dataclass
class ShopRequest:
    player_id: str
    seat: int
    display_name: str
    rank: int
    item_name: Optional[str]
    balance: int
    team: Optional[str] = None


@dataclass
class ShopDecision:
    player_id: str
    seat: int
    display_name: str
    rank: int
    item_name: Optional[str]
    approved: bool
    cost: int = 0
    reason: Optional[str] = None
    reason_code: Optional[str] = None

    def to_row(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class ShopAllocation:
    decisions: List[ShopDecision] = field(default_factory=list)
    remaining: Dict[str, int] = field(default_factory=dict)

    @property
    def approved(self) -> List[ShopDecision]:
        return [d for d in self.decisions if d.approved]

    @property
    def denied(self) -> List[ShopDecision]:
        return [d for d in self.decisions if not d.approved]


def allocate_shop(
    requests: Iterable[ShopRequest],
    offer: Iterable[str],
    price_for: Callable[[str, ShopRequest], Optional[int]],
) -> ShopAllocation:
    """
    `offer` : multiset des objets de la manche (un nom répété = plusieurs unités).
    `price_for(item, request)` : prix applicable (None ou 0 = pas de prix).
    """
    stock = Counter(offer)
    allocation = ShopAllocation()
    for req in sorted(requests, key=lambda r: r.rank):
        decision = ShopDecision(
            player_id=req.player_id,
            seat=req.seat,
            display_name=req.display_name,
            rank=req.rank,
            item_name=req.item_name,
            approved=False,
        )
        item = req.item_name
        if not item or item not in stock:
            decision.reason_code = DENY_NOT_IN_OFFER
            decision.reason = "Objet non disponible dans l'offre"
        elif stock[item] <= 0:
            decision.reason_code = DENY_SOLD_OUT
            decision.reason = "Plus de stock disponible"
        else:
            cost = price_for(item, req)
            if not cost:
                decision.reason_code = DENY_NO_PRICE
                decision.reason = "Prix non défini"
            elif req.balance < cost:
                decision.reason_code = DENY_INSUFFICIENT_FUNDS
                decision.reason = f"Jetons insuffisants ({req.balance}/{cost})"
                decision.cost = cost
            else:
                decision.approved = True
                decision.cost = cost
                stock[item] -= 1
        allocation.decisions.append(decision)
    allocation.remaining = dict(stock)
    return allocation
