from __future__ import annotations

from typing import Optional
import time

from pydantic import BaseModel, Field


class Player(BaseModel):
    """Participant d'une partie (humain ou bot)."""

    player_id: str
    user_id: Optional[str] = None
    display_name: str
    seat: int = Field(..., ge=1)
    status: str = "ACTIVE"
    is_bot: bool = False
    tokens: int = Field(0, ge=0)
    victory_points: int = 0
    team: Optional[str] = None
    role: Optional[str] = None
    mate_seat: Optional[int] = None
    is_alive: bool = True
    player_token: str
    joined_at: float = Field(default_factory=time.time)


class PlayerPublic(BaseModel):
    """Vue publique d'un joueur (sans secret)."""

    player_id: str
    display_name: str
    seat: int
    status: str
    is_bot: bool
    tokens: int
    victory_points: int
    team: Optional[str] = None
    mate_seat: Optional[int] = None
    is_alive: bool = True
