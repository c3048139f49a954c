"""
Database Schemas

Pydantic models for the club's MongoDB collections. Field names are snake_case
in Python and camelCase in the stored documents (``image_url`` <-> ``imageUrl``),
so existing club data keeps its shape.

Collections:
- Player -> "players"
- Coach -> "coaches"
- Match -> "matches"
- NewsArticle -> "news"
- TrainingSession -> "training"
- UserRoleRecord -> "users"
- Tactics -> "tactics"
"""

from datetime import date, datetime
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

Position = Literal["Goalkeeper", "Defender", "Midfielder", "Forward"]
Venue = Literal["Home", "Away"]


def _today() -> str:
    return date.today().isoformat()


class CamelModel(BaseModel):
    """camelCase on the wire, snake_case in code."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class Document(CamelModel):
    id: Optional[str] = None

    def to_store(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True, exclude={"id"})

    def to_api(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True, mode="json")


class StatLine(BaseModel):
    appearances: int = Field(0, ge=0)
    goals: int = Field(0, ge=0)
    assists: int = Field(0, ge=0)


class PlayerStats(CamelModel):
    season: StatLine = Field(default_factory=StatLine)
    all_time: StatLine = Field(default_factory=StatLine)


class Player(Document):
    """Players collection schema (collection name: "players")"""
    user_id: Optional[str] = Field(None, description="Linked identity uid")
    name: str = Field(..., description="Player full name")
    position: Position = "Forward"
    number: int = Field(0, description="Shirt number, expected unique within the roster")
    image_url: str = ""
    join_date: str = Field(default_factory=_today, description="YYYY-MM-DD")
    phone: Optional[str] = None
    address: Optional[str] = None
    stats: PlayerStats = Field(default_factory=PlayerStats)


class Coach(Document):
    """Coaching staff collection schema (collection name: "coaches")"""
    user_id: Optional[str] = None
    name: str
    role: str = Field("Head Coach", description="e.g. Head Coach, Assistant Coach")
    image_url: str = ""
    join_date: str = Field(default_factory=_today)
    bio: Optional[str] = None


class Score(BaseModel):
    home: int = Field(0, ge=0)
    away: int = Field(0, ge=0)


class GoalScorer(CamelModel):
    """Either one of our players (player_id) or an opponent (player_name)."""
    player_id: Optional[str] = None
    player_name: Optional[str] = None
    minute: Optional[int] = Field(None, ge=0)

    def to_store(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)


class Match(Document):
    """Fixtures and results (collection name: "matches")"""
    opponent: str
    date: datetime
    venue: Venue = "Home"
    competition: Optional[str] = "League"
    is_past: bool = False
    # Only meaningful once is_past is set.
    score: Optional[Score] = None
    goal_scorers: List[GoalScorer] = Field(default_factory=list)

    def to_store(self) -> Dict[str, Any]:
        data = super().to_store()
        data["goalScorers"] = [s.to_store() for s in self.goal_scorers]
        return data


class NewsArticle(Document):
    """News collection schema (collection name: "news")"""
    title: str
    summary: str
    date: datetime
    image_url: str = ""


class TrainingSession(Document):
    """Training collection schema (collection name: "training")"""
    date: datetime
    focus: str
    location: str


class UserRoleRecord(Document):
    """
    Role flags for an identity (collection name: "users").
    The document id is the identity uid; the identity provider's own account
    record is matched to it by email only.
    """
    email: str
    name: Optional[str] = None
    is_admin: bool = False
    is_player: bool = False
    is_coach: bool = False


class PitchPosition(BaseModel):
    """Placement on the pitch drawing, as percentages of its height/width."""
    top: float = Field(..., ge=0, le=100)
    left: float = Field(..., ge=0, le=100)


class StartingSlot(CamelModel):
    player_id: str
    position: PitchPosition


class Tactics(Document):
    """Matchday tactics (collection name: "tactics"), one per match."""
    match_id: str
    formation: str = "4-4-2"
    general_notes: str = ""
    starting_xi: List[StartingSlot] = Field(default_factory=list, alias="startingXI")
    substitutes: List[str] = Field(default_factory=list)


class Identity(BaseModel):
    """Signed-in account with the role flags resolved at sign-in."""
    model_config = ConfigDict(frozen=True)

    uid: str
    email: Optional[str] = None
    display_name: Optional[str] = None
    photo_url: Optional[str] = None
    is_admin: bool = False
    is_coach: bool = False


# ----------------------
# Request bodies
# ----------------------

Body = CamelModel


class LoginRequest(Body):
    email: str
    password: str


class DraftRequest(Body):
    tactics_id: Optional[str] = None


class DraftDetails(Body):
    match_id: Optional[str] = None
    formation: Optional[str] = None
    general_notes: Optional[str] = None


class PitchBox(Body):
    """Bounding box of the pitch drawing in client coordinates."""
    left: float
    top: float
    width: float = Field(..., gt=0)
    height: float = Field(..., gt=0)


class Pointer(Body):
    x: float
    y: float


class PitchPlacement(Body):
    """Either a pointer inside a pitch box, or a ready-made percentage position."""
    player_id: str
    pointer: Optional[Pointer] = None
    pitch: Optional[PitchBox] = None
    position: Optional[PitchPosition] = None


class PlayerRef(Body):
    player_id: str


class GoalScorerIn(Body):
    scorer_type: Literal["club", "opponent"] = "club"
    player_id: Optional[str] = None
    player_name: Optional[str] = None
    minute: Optional[int] = Field(None, ge=0)
