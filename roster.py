"""
Team page: players and coaching staff with name search and category filter.
"""
from typing import Any, Dict, List, Literal

from database import DocumentStore

Category = Literal["all", "players", "coaches"]

PRIVATE_FIELDS = ("phone", "address", "userId")


def public_profile(doc: Dict[str, Any]) -> Dict[str, Any]:
    """Roster entry without contact details or the account link."""
    return {k: v for k, v in doc.items() if k not in PRIVATE_FIELDS}


def _matches(name: str, term: str) -> bool:
    return term.lower() in (name or "").lower()


def filter_roster(
    players: List[Dict[str, Any]],
    coaches: List[Dict[str, Any]],
    search: str = "",
    category: str = "all",
) -> Dict[str, List[Dict[str, Any]]]:
    return {
        "players": [] if category == "coaches" else [p for p in players if _matches(p.get("name"), search)],
        "coaches": [] if category == "players" else [c for c in coaches if _matches(c.get("name"), search)],
    }


def load_roster(store: DocumentStore, search: str = "", category: str = "all") -> Dict[str, List[Dict[str, Any]]]:
    players = store.query("players", order_by=("number", "asc"))
    coaches = store.query("coaches", order_by=("name", "asc"))
    return filter_roster(
        [public_profile(p) for p in players],
        [public_profile(c) for c in coaches],
        search,
        category,
    )
