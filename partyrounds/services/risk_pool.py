"""
Service: risk_pool.py
Résolution « mises contre seuil » d'un niveau de la traversée (Rivières).

Un niveau :
1) réduction éventuelle du danger (capacité AV2, une seule par niveau);
2) somme des mises des joueurs qui RESTENT;
3) SUCCESS si la somme dépasse strictement le danger, sinon FAIL.

SUCCESS : ceux qui restent valident le niveau, ceux qui descendent passent
à terre, les mises rejoignent la cagnotte. Au dernier niveau, chaque
survivant ajoute un bonus à la cagnotte, partagée entre survivants.
FAIL : cagnotte + mises partagées entre les joueurs à terre (bonus selon le
niveau de descente), les autres chavirent, sauf s'ils déploient leur canot
(AV1). Sans bénéficiaire, la cagnotte est perdue.

Fonction pure : l'orchestrateur applique débits/crédits et changements d'état.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from partyrounds.engine.errors import PreconditionFailed

RESTE = "RESTE"
DESCENDS = "DESCENDS"
AV1_CANOT = "AV1_CANOT"
AV2_REDUCE = "AV2_REDUCE"

EN_BATEAU = "EN_BATEAU"
A_TERRE = "A_TERRE"
CHAVIRE = "CHAVIRE"

SUCCESS = "SUCCESS"
FAIL = "FAIL"


@dataclass
class RiverLevelInput:
    level: int
    terminal_level: int
    danger: int
    pot: int
    states: Dict[str, Dict[str, Any]]
    decisions: Dict[str, Dict[str, Any]]
    av2_player_id: Optional[str] = None
    danger_reduction: int = 20
    survivor_bonus: int = 50
    descent_bonus: int = 10


@dataclass
class RiverLevelOutcome:
    outcome: str
    danger_raw: int
    danger_effective: int
    total_stakes: int
    pot_before: int
    pot_after: int
    stakes: Dict[str, int] = field(default_factory=dict)
    av2_used_by: Optional[str] = None
    validated: List[str] = field(default_factory=list)
    status_changes: Dict[str, str] = field(default_factory=dict)
    descended_level: Dict[str, int] = field(default_factory=dict)
    keryndes_consumed: List[str] = field(default_factory=list)
    payouts: Dict[str, int] = field(default_factory=dict)
    beneficiaries: List[str] = field(default_factory=list)
    forfeited: int = 0
    manche_over: bool = False


def pick_av2(data: RiverLevelInput) -> Optional[str]:
    """
    Choisit l'unique utilisateur de la réduction de danger.
    - aucun candidat → None
    - un seul candidat → lui
    - plusieurs → `av2_player_id` obligatoire (choix du MJ)
    """
    candidates = [
        pid for pid, decision in data.decisions.items()
        if decision.get("decision") == RESTE
        and decision.get("keryndes") == AV2_REDUCE
        and data.states.get(pid, {}).get("keryndes_available")
    ]
    if data.av2_player_id:
        if data.av2_player_id not in candidates:
            raise PreconditionFailed(
                "Le joueur désigné ne peut pas utiliser AV2",
                details={"av2PlayerId": data.av2_player_id, "candidates": candidates},
            )
        return data.av2_player_id
    if not candidates:
        return None
    if len(candidates) > 1:
        raise PreconditionFailed(
            "Plusieurs joueurs peuvent réduire le danger : désigner av2PlayerId",
            details={"candidates": candidates},
        )
    return candidates[0]


def resolve_level(data: RiverLevelInput) -> RiverLevelOutcome:
    av2 = pick_av2(data)
    danger = max(0, data.danger - data.danger_reduction) if av2 else data.danger

    staying = [pid for pid, d in data.decisions.items() if d.get("decision") == RESTE]
    leaving = [pid for pid, d in data.decisions.items() if d.get("decision") == DESCENDS]
    stakes = {pid: int(data.decisions[pid].get("stake") or 0) for pid in staying}
    total = sum(stakes.values())

    result = RiverLevelOutcome(
        outcome=SUCCESS if total > danger else FAIL,
        danger_raw=data.danger,
        danger_effective=danger,
        total_stakes=total,
        pot_before=data.pot,
        pot_after=data.pot + total,
        stakes=stakes,
        av2_used_by=av2,
    )
    if av2:
        result.keryndes_consumed.append(av2)

    if result.outcome == SUCCESS:
        result.validated = list(staying)
        for pid in leaving:
            result.status_changes[pid] = A_TERRE
            result.descended_level[pid] = data.level
        if data.level >= data.terminal_level:
            result.pot_after += data.survivor_bonus * len(staying)
            if staying:
                share = result.pot_after // len(staying)
                result.payouts = {pid: share for pid in staying}
                result.beneficiaries = list(staying)
            else:
                result.forfeited = result.pot_after
            result.manche_over = True
        return result

    # FAIL : le bateau chavire
    beneficiaries: Dict[str, int] = {}
    for pid, state in data.states.items():
        if state.get("status") == A_TERRE:
            beneficiaries[pid] = int(state.get("descended_level") or 0)
    for pid in leaving:
        result.status_changes[pid] = A_TERRE
        result.descended_level[pid] = data.level
        beneficiaries[pid] = data.level
    for pid in staying:
        decision = data.decisions[pid]
        can_escape = (
            decision.get("keryndes") == AV1_CANOT
            and data.states.get(pid, {}).get("keryndes_available")
            and pid != av2
        )
        if can_escape:
            result.status_changes[pid] = A_TERRE
            result.descended_level[pid] = data.level
            result.keryndes_consumed.append(pid)
            beneficiaries[pid] = data.level
        else:
            result.status_changes[pid] = CHAVIRE

    if beneficiaries:
        share = result.pot_after // len(beneficiaries)
        result.payouts = {
            pid: share + level * data.descent_bonus for pid, level in beneficiaries.items()
        }
        result.beneficiaries = list(beneficiaries)
    else:
        result.forfeited = result.pot_after
    result.manche_over = True
    return result
