from typing import Any, Dict, Literal, Optional
import time

from pydantic import BaseModel, Field

Audience = Literal["ALL", "MJ"]


class AuditRecord(BaseModel):
    """Entrée d'un journal (public ou MJ). Jamais réécrite une fois persistée."""

    id: str
    game_id: str
    round: Optional[int] = None
    audience: Audience
    kind: str
    message: str
    payload: Dict[str, Any] = Field(default_factory=dict)
    ts: float = Field(default_factory=time.time)
