"""
Admin console: CRUD over the club's collections.

Each collection tag maps to exactly one schema in COLLECTION_SCHEMAS; every
write goes through that schema before it reaches the store.
"""
from typing import Any, Dict, List, Optional, Type

from pydantic import ValidationError as SchemaError

from database import DocumentStore, where
from errors import AuthorizationError, ConfirmationRequiredError, NotFoundError, ValidationError
from feed import iso
from leaderboard import goal_contributions
from logging_config import get_logger
from schemas import (
    Coach,
    Document,
    GoalScorer,
    GoalScorerIn,
    Match,
    NewsArticle,
    Player,
    TrainingSession,
    UserRoleRecord,
)

logger = get_logger(__name__)

COLLECTION_SCHEMAS: Dict[str, Type[Document]] = {
    "players": Player,
    "coaches": Coach,
    "matches": Match,
    "news": NewsArticle,
    "training": TrainingSession,
    "users": UserRoleRecord,
}

LIST_ORDER = {
    "players": ("number", "asc"),
    "coaches": ("name", "asc"),
    "matches": ("date", "desc"),
    "news": ("date", "desc"),
    "training": ("date", "desc"),
    "users": None,
}

USER_DELETE_MESSAGE = "For security, user deletion must be done from the identity provider's console."


def schema_for(collection: str) -> Type[Document]:
    try:
        return COLLECTION_SCHEMAS[collection]
    except KeyError:
        raise NotFoundError(f"Unknown collection '{collection}'")


def validate(collection: str, payload: Dict[str, Any]) -> Document:
    schema = schema_for(collection)
    try:
        return schema.model_validate(payload)
    except SchemaError as e:
        first = e.errors()[0]
        field = ".".join(str(p) for p in first["loc"])
        raise ValidationError(f"{field}: {first['msg']}")


def _row(doc: Dict[str, Any]) -> Dict[str, Any]:
    row = dict(doc)
    if "date" in row:
        row["date"] = iso(row["date"])
    return row


def list_items(store: DocumentStore, collection: str) -> List[Dict[str, Any]]:
    schema_for(collection)
    docs = store.query(collection, order_by=LIST_ORDER[collection])
    rows = [_row(d) for d in docs]

    if collection == "players":
        for row in rows:
            row["ga"] = goal_contributions(row)
    elif collection == "users":
        players = store.query("players")
        for row in rows:
            linked = next((p for p in players if p.get("userId") == row["id"]), None)
            row["name"] = row.get("name") or (linked["name"] if linked else "Not Linked")
    return rows


def create_item(store: DocumentStore, collection: str, payload: Dict[str, Any]) -> str:
    item = validate(collection, payload)
    data = item.to_store()
    if item.id:
        data["id"] = item.id
    doc_id = store.add(collection, data)
    logger.info(f"Created {collection}/{doc_id}")
    return doc_id


def update_item(store: DocumentStore, collection: str, doc_id: str, payload: Dict[str, Any]) -> None:
    item = validate(collection, payload)
    store.update(collection, doc_id, item.to_store())
    logger.info(f"Updated {collection}/{doc_id}")


def delete_item(store: DocumentStore, collection: str, doc_id: str, confirm: bool = False) -> None:
    schema_for(collection)
    if collection == "users":
        raise AuthorizationError(USER_DELETE_MESSAGE)
    if not confirm:
        raise ConfirmationRequiredError(
            "Are you sure you want to delete this item? This action cannot be undone."
        )
    if not store.delete(collection, doc_id):
        raise NotFoundError(f"No document '{doc_id}' in '{collection}'")
    logger.info(f"Deleted {collection}/{doc_id}")


# ----------------------
# Match goal scorers
# ----------------------

def add_goal_scorer(scorers: List[Dict[str, Any]], entry: GoalScorerIn) -> List[Dict[str, Any]]:
    """
    Append a scorer. Club scorers need a player id, opponent scorers a name;
    without one the list comes back unchanged.
    """
    if entry.scorer_type == "club" and entry.player_id:
        scorer = GoalScorer(player_id=entry.player_id, minute=entry.minute)
    elif entry.scorer_type == "opponent" and (entry.player_name or "").strip():
        scorer = GoalScorer(player_name=entry.player_name.strip(), minute=entry.minute)
    else:
        return list(scorers)
    return list(scorers) + [scorer.to_store()]


def remove_goal_scorer(scorers: List[Dict[str, Any]], index: int) -> List[Dict[str, Any]]:
    return [s for i, s in enumerate(scorers) if i != index]


def _match(store: DocumentStore, match_id: str) -> Dict[str, Any]:
    match = store.get("matches", match_id)
    if match is None:
        raise NotFoundError("Match not found")
    return match


def record_goal_scorer(store: DocumentStore, match_id: str, entry: GoalScorerIn) -> List[Dict[str, Any]]:
    scorers = _match(store, match_id).get("goalScorers") or []
    updated = add_goal_scorer(scorers, entry)
    if len(updated) == len(scorers):
        raise ValidationError("Select one of our players or enter the opponent scorer's name")
    store.update("matches", match_id, {"goalScorers": updated})
    return updated


def delete_goal_scorer(store: DocumentStore, match_id: str, index: int) -> List[Dict[str, Any]]:
    scorers = _match(store, match_id).get("goalScorers") or []
    if not 0 <= index < len(scorers):
        raise NotFoundError("Goal scorer not found")
    updated = remove_goal_scorer(scorers, index)
    store.update("matches", match_id, {"goalScorers": updated})
    return updated


def dashboard(store: DocumentStore) -> Dict[str, int]:
    return {
        "totalPlayers": len(store.query("players")),
        "coachingStaff": len(store.query("coaches")),
        "upcomingMatches": len(store.query("matches", [where("isPast", "==", False)])),
        "newsArticles": len(store.query("news")),
    }


def get_item(store: DocumentStore, collection: str, doc_id: str) -> Optional[Dict[str, Any]]:
    schema_for(collection)
    doc = store.get(collection, doc_id)
    return _row(doc) if doc else None
