"""
Service: duels.py
Issue d'un duel Sheriff (fouille / contrebande), évaluée symétriquement.

Pour chaque sens (A→B puis B→A), indépendamment :
- A fouille B et B transporte de l'illégal : A gagne l'impact de B, B le perd
  et se fait confisquer (jetons ramenés au seuil légal);
- A fouille un B en règle : A perd max(impact de A, 1);
- A laisse passer un B en infraction : B gagne son impact;
- A laisse passer un B en règle : rien.

Impact d'un joueur = min(max(0, jetons entrants - seuil légal), impact max).

Les dictionnaires de `DuelOutcome` sont indexés par `str(siège)` : ils sont
persistés tels quels avec le duel (orjson n'accepte que des clés texte).
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, Tuple


@dataclass(frozen=True)
class DuelSide:
    seat: int
    searches: bool
    tokens_entering: int


@dataclass
class DuelOutcome:
    deltas: Dict[str, int] = field(default_factory=dict)
    confiscated: Dict[str, int] = field(default_factory=dict)
    summary: Dict[str, str] = field(default_factory=dict)


def impact(tokens_entering: int, legal_tokens: int = 20, max_impact: int = 10) -> int:
    return min(max(0, int(tokens_entering) - legal_tokens), max_impact)


def _one_way(
    searcher: DuelSide,
    target: DuelSide,
    legal_tokens: int,
    max_impact: int,
) -> Tuple[int, int, int, str, str]:
    """(delta cherche, delta cible, confisqué à la cible, résumé cherche, résumé cible)"""
    target_impact = impact(target.tokens_entering, legal_tokens, max_impact)
    target_illegal = target.tokens_entering > legal_tokens
    if searcher.searches:
        if target_illegal:
            return (
                target_impact, -target_impact, target_impact,
                f"Fouille réussie ! +{target_impact} PV",
                f"Pris en flagrant délit ! -{target_impact} PV",
            )
        penalty = max(impact(searcher.tokens_entering, legal_tokens, max_impact), 1)
        return (
            -penalty, 0, 0,
            f"Fouille d'un voyageur légal. -{penalty} PV",
            "Vous étiez légal. Pas de pénalité.",
        )
    if target_illegal:
        return (
            0, target_impact, 0,
            "Vous avez laissé passer un contrebandier !",
            f"Passage réussi avec contrebande ! +{target_impact} PV",
        )
    return 0, 0, 0, "Vous avez laissé passer.", "Passage sans encombre."


def resolve_duel_outcome(
    first: DuelSide,
    second: DuelSide,
    *,
    legal_tokens: int = 20,
    max_impact: int = 10,
) -> DuelOutcome:
    a, b = str(first.seat), str(second.seat)
    outcome = DuelOutcome(deltas={a: 0, b: 0}, confiscated={a: 0, b: 0})
    texts: Dict[str, list] = {a: [], b: []}
    for searcher, target in ((first, second), (second, first)):
        d_searcher, d_target, taken, s_text, t_text = _one_way(searcher, target, legal_tokens, max_impact)
        key, other = str(searcher.seat), str(target.seat)
        outcome.deltas[key] += d_searcher
        outcome.deltas[other] += d_target
        outcome.confiscated[other] += taken
        texts[key].append(s_text)
        texts[other].append(t_text)
    outcome.summary = {seat: " | ".join(parts) for seat, parts in texts.items()}
    return outcome
