"""
Matchday tactics: the stored model, the coach's assignment editor and the
read-only board.

Starting XI positions are percentages of the pitch drawing (top/left in
[0, 100]), so they survive any rendering size. A player is on the pitch, on
the bench, or (by omission) in the roster pool, never in two places.
"""
import functools
import threading
import uuid
from contextlib import contextmanager
from typing import Any, Dict, List, Optional

from database import DocumentStore, where
from errors import ConflictError, NotFoundError, ValidationError
from feed import match_summary, next_match
from identity import SessionContext, SessionManager
from logging_config import get_logger
from schemas import PitchBox, PitchPosition, Pointer, StartingSlot, Tactics

logger = get_logger(__name__)

EMPTY_BOARD_MESSAGE = "No tactics have been set for the next match yet. Check back later!"


def clamp(value: float, low: float = 0.0, high: float = 100.0) -> float:
    return max(low, min(high, value))


def pitch_position(pointer: Pointer, box: PitchBox) -> PitchPosition:
    """Pointer inside the pitch's bounding box -> clamped percentage offsets."""
    left = clamp((pointer.x - box.left) / box.width * 100)
    top = clamp((pointer.y - box.top) / box.height * 100)
    return PitchPosition(top=top, left=left)


def legacy_position(index: int) -> PitchPosition:
    """Vertical stack down the centre line for starters saved without positions."""
    return PitchPosition(top=clamp(50 + (index - 5) * 5), left=50)


def _coerce_position(raw: Any, index: int) -> PitchPosition:
    if not isinstance(raw, dict):
        return legacy_position(index)
    try:
        return PitchPosition(top=clamp(float(raw.get("top", 50))), left=clamp(float(raw.get("left", 50))))
    except (TypeError, ValueError):
        return legacy_position(index)


def normalize_tactics(doc: Dict[str, Any]) -> Tactics:
    """
    Build a Tactics model from a stored document of any vintage.

    Older documents stored startingXI as bare player ids; those get
    synthesised positions. Missing lists become empty and a player found in
    both lists stays on the pitch only.
    """
    slots: List[StartingSlot] = []
    seen = set()
    for index, entry in enumerate(doc.get("startingXI") or []):
        if isinstance(entry, str):
            player_id, position = entry, legacy_position(index)
        elif isinstance(entry, dict) and entry.get("playerId"):
            player_id, position = entry["playerId"], _coerce_position(entry.get("position"), index)
        else:
            continue
        if player_id in seen:
            continue
        seen.add(player_id)
        slots.append(StartingSlot(player_id=player_id, position=position))

    substitutes: List[str] = []
    for player_id in doc.get("substitutes") or []:
        if isinstance(player_id, str) and player_id not in seen and player_id not in substitutes:
            substitutes.append(player_id)

    return Tactics(
        id=doc.get("id"),
        match_id=doc.get("matchId") or "",
        formation=doc.get("formation") or "4-4-2",
        general_notes=doc.get("generalNotes") or "",
        starting_xi=slots,
        substitutes=substitutes,
    )


def _locked(method):
    @functools.wraps(method)
    def wrapper(self, *args, **kwargs):
        with self.lock:
            return method(self, *args, **kwargs)
    return wrapper


class TacticsEditor:
    """
    Working copy of one tactics document plus the add-substitute control.

    Every read-modify-write of the lists runs under ``lock``; one draft may
    be hit by concurrent requests.
    """

    def __init__(self, tactics: Optional[Tactics] = None):
        self.tactics = tactics or Tactics(match_id="")
        self.substitute_to_add = ""
        self.lock = threading.RLock()

    @classmethod
    def open(cls, store: DocumentStore, tactics_id: Optional[str] = None) -> "TacticsEditor":
        if not tactics_id:
            return cls()
        doc = store.get("tactics", tactics_id)
        if doc is None:
            raise NotFoundError("Tactics not found")
        return cls(normalize_tactics(doc))

    # -- assignment --

    def starting_ids(self) -> List[str]:
        return [slot.player_id for slot in self.tactics.starting_xi]

    def _remove_everywhere(self, player_id: str) -> None:
        self.tactics.starting_xi = [s for s in self.tactics.starting_xi if s.player_id != player_id]
        self.tactics.substitutes = [p for p in self.tactics.substitutes if p != player_id]

    @_locked
    def place_at(self, player_id: str, position: PitchPosition) -> None:
        self._remove_everywhere(player_id)
        self.tactics.starting_xi = self.tactics.starting_xi + [
            StartingSlot(player_id=player_id, position=position)
        ]

    @_locked
    def place_on_pitch(self, player_id: str, pointer: Pointer, box: PitchBox) -> PitchPosition:
        position = pitch_position(pointer, box)
        self.place_at(player_id, position)
        return position

    @_locked
    def move_to_substitutes(self, player_id: str) -> None:
        self.tactics.starting_xi = [s for s in self.tactics.starting_xi if s.player_id != player_id]
        if player_id not in self.tactics.substitutes:
            self.tactics.substitutes = self.tactics.substitutes + [player_id]

    @_locked
    def return_to_roster(self, player_id: str) -> None:
        self._remove_everywhere(player_id)

    @_locked
    def remove_substitute(self, player_id: str) -> None:
        self.tactics.substitutes = [p for p in self.tactics.substitutes if p != player_id]

    @_locked
    def select_substitute(self, player_id: str) -> None:
        self.substitute_to_add = player_id or ""

    @_locked
    def add_selected_substitute(self) -> None:
        if not self.substitute_to_add:
            return
        self.move_to_substitutes(self.substitute_to_add)
        self.substitute_to_add = ""

    def available_roster(self, players: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
        assigned = set(self.starting_ids()) | set(self.tactics.substitutes)
        pool = [p for p in players if p.get("id") and p["id"] not in assigned]
        return sorted(pool, key=lambda p: p.get("number", 0))

    # -- details & persistence --

    @_locked
    def update_details(self, match_id: Optional[str] = None, formation: Optional[str] = None,
                       general_notes: Optional[str] = None) -> None:
        if match_id is not None:
            self.tactics.match_id = match_id
        if formation is not None:
            self.tactics.formation = formation
        if general_notes is not None:
            self.tactics.general_notes = general_notes

    @_locked
    def save(self, store: DocumentStore) -> str:
        if not self.tactics.match_id:
            raise ValidationError("Select a match for these tactics")
        if not self.tactics.formation.strip():
            raise ValidationError("Formation is required")

        existing = store.first("tactics", [where("matchId", "==", self.tactics.match_id)])
        if existing and existing["id"] != self.tactics.id:
            raise ConflictError("Tactics already exist for this match")

        data = self.tactics.to_store()
        if self.tactics.id:
            store.update("tactics", self.tactics.id, data)
        else:
            self.tactics.id = store.add("tactics", data)
            logger.info(f"Created tactics {self.tactics.id} for match {self.tactics.match_id}")
        return self.tactics.id

    @_locked
    def state(self, players: Optional[List[Dict[str, Any]]] = None) -> Dict[str, Any]:
        data = self.tactics.to_api()
        data["substituteToAdd"] = self.substitute_to_add
        if players is not None:
            data["roster"] = [player_summary(p) for p in self.available_roster(players)]
        return data


class DraftRegistry:
    """Open editors, each owned by the session that opened it."""

    def __init__(self, sessions: Optional[SessionManager] = None):
        self._drafts: Dict[str, Dict[str, Any]] = {}
        self._lock = threading.Lock()
        if sessions is not None:
            sessions.on_session_change(self._on_session_change)

    def _on_session_change(self, token: str, session: Optional[SessionContext]) -> None:
        if session is None:
            self.drop_session(token)

    def open(self, session: SessionContext, editor: TacticsEditor) -> str:
        draft_id = uuid.uuid4().hex
        with self._lock:
            self._drafts[draft_id] = {"owner": session.token, "editor": editor}
        return draft_id

    def get(self, session: SessionContext, draft_id: str) -> TacticsEditor:
        with self._lock:
            draft = self._drafts.get(draft_id)
        if draft is None or draft["owner"] != session.token:
            raise NotFoundError("Tactics draft not found")
        return draft["editor"]

    @contextmanager
    def edit(self, session: SessionContext, draft_id: str):
        """Hold the draft's lock across a change and the response built from it."""
        editor = self.get(session, draft_id)
        with editor.lock:
            yield editor

    def close(self, session: SessionContext, draft_id: str) -> None:
        self.get(session, draft_id)
        with self._lock:
            self._drafts.pop(draft_id, None)

    def drop_session(self, token: str) -> None:
        with self._lock:
            for draft_id in [d for d, draft in self._drafts.items() if draft["owner"] == token]:
                del self._drafts[draft_id]


# ----------------------
# Board (read-only)
# ----------------------

def player_summary(player: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "id": player.get("id"),
        "name": player.get("name"),
        "number": player.get("number"),
        "position": player.get("position"),
        "imageUrl": player.get("imageUrl", ""),
    }


def _by_number(players: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    return sorted(players, key=lambda p: p.get("number", 0))


def project_board(match: Dict[str, Any], tactics: Tactics, players: List[Dict[str, Any]]) -> Dict[str, Any]:
    by_id = {p["id"]: p for p in players}
    markers = [
        {"player": player_summary(by_id[slot.player_id]), "position": slot.position.model_dump()}
        for slot in tactics.starting_xi
        if slot.player_id in by_id
    ]
    starters = _by_number([by_id[s.player_id] for s in tactics.starting_xi if s.player_id in by_id])
    substitutes = _by_number([by_id[p] for p in tactics.substitutes if p in by_id])
    return {
        "status": "ready",
        "match": match_summary(match),
        "formation": tactics.formation,
        "generalNotes": tactics.general_notes,
        "pitch": markers,
        "startingXI": [player_summary(p) for p in starters],
        "substitutes": [player_summary(p) for p in substitutes],
    }


def load_board(store: DocumentStore) -> Dict[str, Any]:
    """Tactics for the next upcoming match, or the neutral empty state."""
    match = next_match(store)
    if match is None:
        return {"status": "empty", "message": EMPTY_BOARD_MESSAGE}
    doc = store.first("tactics", [where("matchId", "==", match["id"])])
    if doc is None:
        return {"status": "empty", "message": EMPTY_BOARD_MESSAGE}
    return project_board(match, normalize_tactics(doc), store.query("players"))


def list_tactics(store: DocumentStore) -> List[Dict[str, Any]]:
    """All tactics documents labelled with their match, latest match first."""
    tactics = [normalize_tactics(doc) for doc in store.query("tactics")]
    matches = {m["id"]: m for m in store.query("matches", order_by=("date", "desc"))}

    items = []
    for t in tactics:
        match = matches.get(t.match_id)
        item = t.to_api()
        item["matchInfo"] = f"vs {match['opponent']}" if match else "Match not found"
        item["matchDate"] = match_summary(match)["date"] if match else None
        items.append(item)
    # ISO strings of one timezone sort chronologically; unmatched go last
    items.sort(key=lambda i: i["matchDate"] or "", reverse=True)
    return items
