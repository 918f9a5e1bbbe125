from __future__ import annotations

from typing import Any, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field


class GameRef(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    game_id: str = Field(..., alias="gameId", min_length=1)


class PlayerRef(GameRef):
    player_token: str = Field(..., alias="playerToken", min_length=1)


# ---------------------------------------------------------------------------
# Soumissions joueurs
# ---------------------------------------------------------------------------

class BetSubmit(PlayerRef):
    amount: int = Field(..., ge=0)


class ActionSubmit(PlayerRef):
    desired_position: Optional[int] = Field(None, alias="desiredPosition")
    attack_slot: Optional[int] = Field(None, alias="attackSlot")
    attack1: Optional[str] = None
    attack2: Optional[str] = None
    protection: Optional[str] = None
    protection_slot: Optional[int] = Field(None, alias="protectionSlot")


class ShopSubmit(PlayerRef):
    want_buy: bool = Field(False, alias="wantBuy")
    item_name: Optional[str] = Field(None, alias="itemName")


class SheriffChoiceSubmit(PlayerRef):
    stage: Literal["INITIAL", "FINAL"] = "INITIAL"
    visa_choice: Optional[Literal["VICTORY_POINTS", "COMMON_POOL"]] = Field(None, alias="visaChoice")
    tokens_entering: int = Field(..., alias="tokensEntering", ge=0)


class DuelDecisionSubmit(PlayerRef):
    duel_id: str = Field(..., alias="duelId")
    searches: bool


class RiverSubmit(PlayerRef):
    decision: Literal["RESTE", "DESCENDS"]
    stake: int = Field(0, ge=0)
    keryndes: Optional[Literal["AV1_CANOT", "AV2_REDUCE"]] = None


class InfectionSubmit(PlayerRef):
    action: Literal["SHOT", "PATIENT_0", "ANTIDOTE", "RECHERCHE_SY", "SABOTAGE", "OC_LOOKUP", "CORRUPTION",
                    "VOTE_TEST", "VOTE_PV"]
    target_seat: Optional[int] = Field(None, alias="targetSeat")
    amount: Optional[int] = Field(None, ge=0)
    item_name: Optional[str] = Field(None, alias="itemName")


# ---------------------------------------------------------------------------
# Orchestrateurs (MJ)
# ---------------------------------------------------------------------------

class StepRequest(GameRef):
    seed: Optional[Any] = None


class ShopResolveRequest(GameRef):
    manche: Optional[int] = None


class DuelRequest(GameRef):
    duel_id: str = Field(..., alias="duelId")


class DangerRequest(GameRef):
    danger: Optional[int] = None


class RiverResolveRequest(GameRef):
    av2_player_id: Optional[str] = Field(None, alias="av2PlayerId")
    level: Optional[int] = None


class PhaseRequest(GameRef):
    action: Literal["lock", "unlock", "next_phase", "next_round"]
    target: Optional[str] = None


class JoinRequest(GameRef):
    display_name: str = Field(..., alias="displayName", min_length=1, max_length=40)


class BotsRequest(GameRef):
    count: int = Field(1, ge=1, le=20)
    with_mates: bool = Field(False, alias="withMates")


class MatesRequest(GameRef):
    seat1: int = Field(..., ge=1)
    seat2: Optional[int] = Field(None, ge=1)


class KickRequest(GameRef):
    player_id: str = Field(..., alias="playerId")


class AutoModeRequest(GameRef):
    enabled: bool
