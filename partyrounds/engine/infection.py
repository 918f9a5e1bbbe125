"""
Orchestrateurs d'Infection (manches ouvertes -> resolve_round -> next_round).

Ordre de résolution d'une manche :
1) gel des actions (phase verrouillée, soumissions figées);
2) manche 1 : vote PV du patient zéro, infecté avant les tirs;
3) corruption de l'AE (sabotage du BA);
4) recherche SY, tirs (ordre d'arrivée), boule de cristal, antidotes;
5) vote du test anticorps;
6) contamination (2 nouveaux porteurs max par manche) puis morts du virus;
7) conditions de victoire, points de victoire finaux.

Les informations cachées (rôles révélés, résultats de test, patient zéro)
ne vont qu'au journal MJ, avec le siège destinataire dans le payload.
"""
from __future__ import annotations

import logging
import random
from collections import Counter
from typing import Any, Dict, List, Optional, Sequence

from partyrounds.services import audit, phase_machine, submissions
from partyrounds.services.game_store import GameStore
from partyrounds.services.ledger import Ledger
from .errors import PreconditionFailed

logger = logging.getLogger(__name__)

GAME_TYPE = "INFECTION"
ACTIONS = ("PATIENT_0", "CORRUPTION", "SABOTAGE", "RECHERCHE_SY", "SHOT",
           "OC_LOOKUP", "ANTIDOTE", "VOTE_TEST", "VOTE_PV")

MAX_NEW_INFECTIONS = 2
CITIZEN_CORRUPTION_THRESHOLD = 10
PV_CORRUPTION_THRESHOLD = 15
SABOTAGE_BONUS = 10
VEST = "Gilet"
CRYSTAL = "Boule de cristal"
ANTIDOTES = ("Antidote PV", "Antidote Ezkar")


def is_alive(player: Dict[str, Any]) -> bool:
    return player.get("is_alive", True) is not False


def alive_players(store: GameStore) -> List[Dict[str, Any]]:
    return [p for p in store.active_players() if is_alive(p)]


def required_sy_successes(sy_count: int) -> int:
    return 2 if sy_count >= 2 else 3


def _extra(store: GameStore) -> Dict[str, Any]:
    extra = store.game.setdefault("extra", {})
    extra.setdefault("sy_success_count", 0)
    extra.setdefault(
        "sy_required_success",
        required_sy_successes(len([p for p in alive_players(store) if p.get("role") == "SY"])),
    )
    return extra


def _private(store: GameStore, kind: str, player: Dict[str, Any], message: str, **payload: Any) -> None:
    audit.mj_only(store, kind, message, {"recipient_seat": player["seat"], **payload})


def _count_votes(votes: Sequence[int], rng: random.Random) -> Optional[int]:
    """Cible la plus votée; égalité départagée au hasard."""
    counts = Counter(votes)
    if not counts:
        return None
    best = max(counts.values())
    return rng.choice(sorted(seat for seat, count in counts.items() if count == best))


def _tally(votes: Sequence[int]) -> Dict[str, int]:
    return {str(seat): count for seat, count in Counter(votes).items()}


def _infect(player: Dict[str, Any], manche: int) -> None:
    player.update({
        "is_carrier": True,
        "is_contagious": False,
        "infected_at_round": manche,
        "will_contaminate_at_round": manche + 1,
        "will_die_at_round": manche + 2,
    })


def _kill(player: Dict[str, Any], manche: int, cause: str) -> None:
    player["is_alive"] = False
    player["died_at_round"] = manche
    player["death_cause"] = cause


def _frozen_inputs(store: GameStore) -> Dict[str, Dict[str, Dict[str, Any]]]:
    """Fige la dernière soumission de chaque joueur pour chaque type d'action."""
    frozen = {}
    for action in ACTIONS:
        kept = submissions.latest(store, "infection", action=action)
        frozen[action] = submissions.freeze(store, "infection", {pid: {} for pid in kept}, action=action)
    return frozen


def _by_role(players: Sequence[Dict[str, Any]], role: str) -> List[Dict[str, Any]]:
    return [p for p in players if p.get("role") == role]


# ---------------------------------------------------------------------------
# Étapes de résolution
# ---------------------------------------------------------------------------

def _patient_zero(store, inputs, manche, rng, log) -> Optional[Dict[str, Any]]:
    alive = alive_players(store)
    valid = {p["seat"] for p in alive if p.get("role") != "PV"}
    votes = [
        row["target_seat"] for pv in _by_role(alive, "PV")
        for row in [inputs["PATIENT_0"].get(pv["player_id"])]
        if row and row.get("target_seat") in valid
    ]
    seat = _count_votes(votes, rng)
    if seat is None:
        log.append({"step": "PATIENT_0", "skipped": "Aucun vote valide"})
        return None
    patient = store.player_by_seat(seat)
    _infect(patient, manche)
    log.append({"step": "PATIENT_0", "seat": seat, "votes": _tally(votes)})
    for pv in _by_role(alive, "PV"):
        _private(store, "PATIENT_0", pv, f"Patient zéro : {patient['display_name']} (siège {seat})", target_seat=seat)
    return patient


def _corruption(store, inputs, log) -> bool:
    """Renvoie True si le BA est saboté pour cette manche."""
    alive = alive_players(store)
    ae = next(iter(_by_role(alive, "AE")), None)
    ba = next(iter(_by_role(store.active_players(), "BA")), None)
    if ae is None or ba is None:
        return False
    row = inputs["SABOTAGE"].get(ae["player_id"])
    if not row or row.get("target_seat") != ba["seat"]:
        log.append({"step": "CORRUPTION", "skipped": "BA non identifié", "ae_target": (row or {}).get("target_seat")})
        return False

    citizens: Dict[str, int] = {}
    pv: Dict[str, int] = {}
    for player in alive:
        amount = int((inputs["CORRUPTION"].get(player["player_id"]) or {}).get("amount") or 0)
        if amount > 0:
            (pv if player.get("role") == "PV" else citizens)[player["player_id"]] = amount
    citizens_met = sum(citizens.values()) >= CITIZEN_CORRUPTION_THRESHOLD
    pv_met = sum(pv.values()) >= PV_CORRUPTION_THRESHOLD

    ledger = Ledger(store)
    gain = 0
    if pv_met:
        sabotaged, payers = True, pv
    elif citizens_met:
        sabotaged, payers = False, citizens
    else:
        sabotaged, payers, gain = True, {}, SABOTAGE_BONUS
    for player_id, amount in payers.items():
        gain += ledger.debit_floor(store.get_player(player_id), amount, "corruption")
    if gain:
        ledger.add_victory_points(ae, gain, "corruption")
    log.append({"step": "CORRUPTION", "citizens": citizens, "pv": pv, "sabotaged": sabotaged, "ae_gain": gain})
    audit.emit(store, "CORRUPTION_RESOLVED", public="Corruption résolue",
               mj=f"Corruption : sabotage {'actif' if sabotaged else 'annulé'}, AE +{gain}",
               mj_payload={"citizens": citizens, "pv": pv, "ae_gain": gain})
    if sabotaged:
        audit.mj_only(store, "SABOTAGE_SUCCESS", f"{ae['display_name']} sabote le BA",
                      {"ae_seat": ae["seat"], "ba_seat": ba["seat"]})
    return sabotaged


def _sy_research(store, inputs, log) -> bool:
    sy_players = _by_role(alive_players(store), "SY")
    targets = [(inputs["RECHERCHE_SY"].get(p["player_id"]) or {}).get("target_seat") for p in sy_players]
    if not sy_players or None in targets:
        log.append({"step": "RECHERCHE_SY", "skipped": "Tous les SY n'ont pas cherché"})
        return False
    extra = _extra(store)
    target = store.player_by_seat(targets[0]) if len(set(targets)) == 1 else None
    success = bool(target and target.get("has_antibodies"))
    if success:
        extra["sy_success_count"] = int(extra["sy_success_count"]) + 1
        public, private = "Recherche SY : succès !", f"Anticorps trouvés chez {target['display_name']}"
    elif target is None:
        public, private = "Recherche SY : échec (cibles différentes)", "Les SY ont choisi des cibles différentes"
    else:
        public, private = "Recherche SY : échec", f"{target['display_name']} n'a pas les anticorps"
    audit.emit(store, "SY_RESEARCH", public=public,
               public_payload={"successes": extra["sy_success_count"], "required": extra["sy_required_success"]})
    for sy in sy_players:
        _private(store, "SY_RESEARCH", sy, private, success=success)
    log.append({"step": "RECHERCHE_SY", "targets": targets, "success": success})
    return success


def _shots(store, inputs, manche, sabotaged, log) -> List[int]:
    ledger = Ledger(store)
    deaths: List[int] = []
    shots = sorted(inputs["SHOT"].values(), key=lambda row: (row["submitted_at"], row["seq"]))
    for shot in shots:
        shooter = store.get_player(shot["player_id"])
        target = store.player_by_seat(shot.get("target_seat"))
        bullet = shot.get("item_name") or ("Balle BA" if shooter.get("role") == "BA" else "Balle PV")
        if target is None:
            outcome = "invalid_target"
        elif not is_alive(shooter):
            outcome = "shooter_dead"
        elif not ledger.consume_item(shooter, bullet):
            outcome = "no_ammo"
        elif shooter.get("role") == "BA" and sabotaged:
            outcome = "sabotaged"
        elif shooter.get("is_bot") and shooter.get("role") == "PV" and target.get("role") == "PV":
            outcome = "pv_friendly_fire"
        elif not is_alive(target):
            outcome = "target_dead"
        elif ledger.consume_item(target, VEST):
            outcome = "blocked_by_vest"
            _private(store, "VEST_USED", target, "Ton gilet t'a protégé d'une balle !")
        else:
            outcome = "killed"
            _kill(target, manche, "SHOT")
            deaths.append(target["seat"])
            audit.emit(store, "PLAYER_SHOT",
                       public=f"{target['display_name']} a été tué(e). Rôle : {target.get('role')}",
                       public_payload={"seat": target["seat"], "role": target.get("role")},
                       mj=f"{shooter['display_name']} tue {target['display_name']}",
                       mj_payload={"shooter_seat": shooter["seat"], "target_seat": target["seat"]})
        shot["outcome"] = outcome
        log.append({"step": "SHOT", "shooter": shooter["seat"], "target": shot.get("target_seat"), "outcome": outcome})
    return deaths


def _oracle(store, inputs, log) -> None:
    oc = next(iter(_by_role(alive_players(store), "OC")), None)
    row = inputs["OC_LOOKUP"].get(oc["player_id"]) if oc else None
    target = store.player_by_seat(row.get("target_seat")) if row else None
    if target is None:
        return
    Ledger(store).consume_item(oc, CRYSTAL)
    _private(store, "OC_CONSULT", oc, f"Le rôle de {target['display_name']} est : {target.get('role')}",
             target_seat=target["seat"], target_role=target.get("role"))
    log.append({"step": "OC_LOOKUP", "target": target["seat"], "role": target.get("role")})


def _antidotes(store, inputs, log) -> None:
    ledger = Ledger(store)
    for player_id, row in inputs["ANTIDOTE"].items():
        user = store.get_player(player_id)
        target = store.player_by_seat(row.get("target_seat"))
        if user is None or target is None or not is_alive(user):
            continue
        item = next((name for name in ANTIDOTES if ledger.item_count(user, name) > 0), None)
        if item is None or not ledger.consume_item(user, item):
            continue
        if target.get("is_carrier"):
            target["immune_permanent"] = True
            target["will_die_at_round"] = None
            _private(store, "ANTIDOTE", user, f"Antidote réussi : {target['display_name']} ne mourra pas du virus")
            _private(store, "ANTIDOTE", target, "Tu as reçu l'antidote : tu restes porteur mais ne mourras pas du virus")
        else:
            _private(store, "ANTIDOTE", user, f"Antidote perdu : {target['display_name']} n'était pas porteur")
        log.append({"step": "ANTIDOTE", "user": user["seat"], "target": target["seat"], "success": bool(target.get("is_carrier"))})


def _antibody_test(store, inputs, rng, log) -> None:
    votes = [
        row["target_seat"] for p in alive_players(store)
        for row in [inputs["VOTE_TEST"].get(p["player_id"])]
        if row and row.get("target_seat") is not None
    ]
    seat = _count_votes(votes, rng)
    tested = store.player_by_seat(seat) if seat is not None else None
    if tested is None:
        return
    positive = bool(tested.get("has_antibodies"))
    _private(store, "ANTIBODY_TEST", tested,
             "Résultat du test : tu as les anticorps !" if positive else "Résultat du test : tu n'as pas les anticorps.",
             has_antibodies=positive)
    audit.emit(store, "ANTIBODY_TEST", public=f"Test anticorps : {tested['display_name']} a été désigné(e) par le vote")
    log.append({"step": "VOTE_TEST", "target": seat, "votes": _tally(votes)})


def _first_living_neighbour(ring: List[Dict[str, Any]], index: int, step: int) -> Optional[Dict[str, Any]]:
    for offset in range(1, len(ring)):
        neighbour = ring[(index + step * offset) % len(ring)]
        if is_alive(neighbour):
            return neighbour
    return None


def _contamination(store, manche, log) -> List[int]:
    """Chaque contaminateur (même mort) infecte ses premiers voisins vivants non porteurs."""
    ring = store.active_players()
    contaminators = [p for p in ring if p.get("will_contaminate_at_round") == manche and not p.get("immune_permanent")]
    infected: List[int] = []
    for source in contaminators:
        if len(infected) >= MAX_NEW_INFECTIONS:
            break
        if is_alive(source):
            source["is_contagious"] = True
        index = ring.index(source)
        left = _first_living_neighbour(ring, index, -1)
        right = _first_living_neighbour(ring, index, 1)
        for neighbour in (left, right if right is not left else None):
            if neighbour is None or len(infected) >= MAX_NEW_INFECTIONS:
                continue
            if neighbour.get("is_carrier") or neighbour.get("immune_permanent"):
                continue
            _infect(neighbour, manche)
            infected.append(neighbour["seat"])
        log.append({"step": "CONTAMINATION", "source": source["seat"], "alive": is_alive(source),
                    "left": left and left["seat"], "right": right and right["seat"]})
    return infected


def _virus_deaths(store, manche) -> List[int]:
    victims = [
        p for p in alive_players(store)
        if p.get("will_die_at_round") == manche and not p.get("immune_permanent")
    ]
    for victim in victims:
        _kill(victim, manche, "VIRUS")
        audit.emit(store, "VIRUS_DEATH",
                   public=f"{victim['display_name']} est mort(e) du virus. Rôle : {victim.get('role')}",
                   public_payload={"seat": victim["seat"], "role": victim.get("role")})
    return [v["seat"] for v in victims]


def _winner(store: GameStore) -> Optional[str]:
    extra = _extra(store)
    remaining = alive_players(store)
    if int(extra["sy_success_count"]) >= int(extra["sy_required_success"]):
        return "NON_PV"
    if not _by_role(remaining, "PV"):
        return "NON_PV"
    exposed = [p for p in remaining if p.get("role") != "PV"
               and not p.get("immune_permanent") and not p.get("has_antibodies")]
    if not exposed:
        return "PV"
    return None


# ---------------------------------------------------------------------------
# Points de victoire de fin de partie
# ---------------------------------------------------------------------------

def _speed_bonus(manche: int) -> int:
    if manche <= 2:
        return 50
    return {3: 30, 4: 15}.get(manche, 0)


def final_scores(store: GameStore, winner: Optional[str]) -> Dict[str, int]:
    """Points de victoire par rôle; le partage « meilleurs soupçons » vaut 10."""
    manche = int(store.game["round"])
    extra = _extra(store)
    players = store.active_players()
    pv_seats = {p["seat"] for p in _by_role(players, "PV")}
    accuracy: Counter = Counter()
    for row in store.rows("infection_inputs", action="VOTE_PV", status=submissions.LOCKED):
        if row.get("target_seat") in pv_seats:
            accuracy[row["seat"]] += 1
    best = max(accuracy.values(), default=0)
    best_voters = {seat for seat, count in accuracy.items() if count == best and best > 0}
    share = 10 // len(best_voters) if best_voters else 0
    sabotages = Counter(
        entry["payload"].get("ae_seat") for entry in store.mj_log if entry.get("kind") == "SABOTAGE_SUCCESS"
    )
    pv_dead = winner == "NON_PV"
    sy_success = int(extra["sy_success_count"]) >= int(extra["sy_required_success"])

    ledger = Ledger(store)
    awarded: Dict[str, int] = {}
    for player in players:
        role, alive = player.get("role"), is_alive(player)
        points = 0
        if role == "BA":
            points += _speed_bonus(manche) if pv_dead else 0
        elif role in ("CV", "OC", "SY"):
            points += 20 if pv_dead else 0
            points += (30 if role == "SY" else 20) if sy_success else 0
            points += 10 if pv_dead and alive else 0
        elif role == "KK":
            points += 0 if alive else _speed_bonus(int(player.get("died_at_round") or manche))
        elif role == "PV":
            points += 40 if winner == "PV" else 0
        elif role == "AE":
            points += 10 * sabotages[player["seat"]]
        if role not in ("BA", "PV") and player["seat"] in best_voters:
            points += share
        if points:
            ledger.add_victory_points(player, points, "fin de partie Infection")
        awarded[str(player["seat"])] = points
    return awarded


def _end(store: GameStore, winner: Optional[str]) -> Dict[str, Any]:
    awarded = final_scores(store, winner)
    phase_machine.end_game(store.game)
    label = {"PV": "Victoire des Porte-Venins", "NON_PV": "Victoire des non-PV"}.get(winner, "Partie terminée")
    audit.emit(store, "GAME_ENDED", public=label,
               public_payload={"winner": winner,
                               "roles": {str(p["seat"]): p.get("role") for p in store.active_players()}},
               mj=f"Fin d'Infection ({winner})", mj_payload={"awarded": awarded})
    return {"gameEnded": True, "winner": winner, "awarded": awarded}


# ---------------------------------------------------------------------------
# Orchestrateurs
# ---------------------------------------------------------------------------

def resolve_round(store: GameStore, seed: Any = None) -> Dict[str, Any]:
    game = store.game
    marker = phase_machine.round_marker(game, "infection")
    if phase_machine.is_resolved(game, marker):
        row = store.first("infection_rounds", manche=game["round"]) or {}
        return {"alreadyResolved": True, **row}
    phase_machine.ensure_phase(game, "ACTIONS", game_type=GAME_TYPE)

    rng = random.Random(seed)
    manche = int(game["round"])
    extra = _extra(store)
    phase_machine.lock_phase(game)
    inputs = _frozen_inputs(store)
    log: List[Dict[str, Any]] = []

    patient = _patient_zero(store, inputs, manche, rng, log) if manche == 1 else None
    sabotaged = _corruption(store, inputs, log)
    sy_success = _sy_research(store, inputs, log)
    deaths = _shots(store, inputs, manche, sabotaged, log)
    _oracle(store, inputs, log)
    _antidotes(store, inputs, log)
    _antibody_test(store, inputs, rng, log)
    infected = _contamination(store, manche, log)
    virus_deaths = _virus_deaths(store, manche)
    winner = _winner(store)
    phase_machine.mark_resolved(game, marker)

    row = store.insert("infection_rounds", {
        "manche": manche,
        "patient_zero": patient and patient["seat"],
        "sabotaged": sabotaged,
        "sy_success": sy_success,
        "sy_progress": f"{extra['sy_success_count']}/{extra['sy_required_success']}",
        "shot_deaths": deaths,
        "virus_deaths": virus_deaths,
        "new_carriers": infected,
        "winner": winner,
    })
    audit.mj_only(store, "ROUND_RESOLVED", f"Manche {manche} résolue", {"steps": log, **row})
    logger.info("game %s infection round %s: %d death(s)", store.game_id, manche, len(deaths) + len(virus_deaths))

    result: Dict[str, Any] = {"manche": manche, "deaths": deaths + virus_deaths,
                              "syProgress": row["sy_progress"], "sabotageActive": sabotaged}
    if winner is not None:
        result.update(_end(store, winner))
    else:
        result["gameEnded"] = False
    return result


def next_round(store: GameStore) -> Dict[str, Any]:
    """Ouvre la manche suivante : +1 balle BA (max 2), boule de cristal OC rechargée."""
    game = store.game
    phase_machine.ensure_phase(game, "ACTIONS", locked=True, game_type=GAME_TYPE)
    if not phase_machine.is_resolved(game, phase_machine.round_marker(game, "infection")):
        raise PreconditionFailed("La manche courante n'est pas résolue", details={"manche": game["round"]})
    if not phase_machine.next_round(game):
        return _end(store, _winner(store))

    extra = _extra(store)
    alive = alive_players(store)
    extra["sy_required_success"] = required_sy_successes(len(_by_role(alive, "SY")))
    ledger = Ledger(store)
    for ba in _by_role(alive, "BA"):
        if ledger.item_count(ba, "Balle BA") < 2:
            ledger.grant_item(ba, "Balle BA", 1, attack_usable=True)
    for oc in _by_role(alive, "OC"):
        if ledger.item_count(oc, CRYSTAL) < 1:
            ledger.grant_item(oc, CRYSTAL, 1)
    audit.emit(store, "MANCHE_STARTED", public=f"Manche {game['round']} ouverte")
    return {"manche": game["round"], "syRequiredSuccess": extra["sy_required_success"]}
