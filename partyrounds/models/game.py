from __future__ import annotations

from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

GAME_TYPES = ("FORET", "RIVIERES", "SHERIFF", "INFECTION")
GameType = Literal["FORET", "RIVIERES", "SHERIFF", "INFECTION"]


class GameConfig(BaseModel):
    """
    Paramètres d'une partie (surchargeables à la création).
    Les clés inconnues sont conservées telles quelles.
    """
    model_config = ConfigDict(extra="allow")

    tie_start_direction: Literal["ASC", "DESC"] = "ASC"
    max_rounds: Optional[int] = None
    starting_tokens: int = 50
    starting_victory_points: int = 0
    round_income: int = 5
    # Forêt
    discount_team: str = "Akila"
    bonus_team: str = "Akandé"
    battlefield_slots: int = 3
    # Rivières
    river_levels: int = 5
    river_manches: int = 3
    danger_reduction: int = 20
    survivor_bonus: int = 50
    descent_bonus: int = 10
    # Sheriff
    legal_tokens: int = 20
    duel_max_impact: int = 10
    visa_pv_ratio: float = 0.2
    visa_pool_cost: int = 10
    common_pool: int = 100
    random_mates: bool = False


_TYPE_DEFAULTS: Dict[str, Dict[str, Any]] = {
    "FORET": {"starting_tokens": 50},
    "RIVIERES": {"starting_tokens": 100},
    "SHERIFF": {"starting_tokens": 20, "starting_victory_points": 100},
    "INFECTION": {"starting_tokens": 50},
}


def default_config(game_type: str, overrides: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    data: Dict[str, Any] = dict(_TYPE_DEFAULTS.get(game_type, {}))
    data.update(overrides or {})
    return GameConfig(**data).model_dump()


class GameCreate(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    name: str = Field(..., min_length=1, max_length=80)
    game_type: GameType = Field(..., alias="gameType")
    mode: Literal["SINGLE", "ADVENTURE"] = "SINGLE"
    steps: Optional[List[GameType]] = None
    config: Dict[str, Any] = Field(default_factory=dict)
    bot_config: Dict[str, Any] = Field(default_factory=dict, alias="botConfig")
