"""
Fixture and news feed: next match, latest news, kickoff countdown, schedule.
"""
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from config import CLUB_NAME
from database import DocumentStore, where


def as_utc(value: datetime) -> datetime:
    # pymongo hands back naive datetimes that are already UTC
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def iso(value: Any) -> Optional[str]:
    if isinstance(value, datetime):
        return as_utc(value).isoformat()
    return value


def next_match(store: DocumentStore) -> Optional[Dict[str, Any]]:
    return store.first("matches", [where("isPast", "==", False)], order_by=("date", "asc"))


def latest_news(store: DocumentStore) -> Optional[Dict[str, Any]]:
    return store.first("news", order_by=("date", "desc"))


def match_summary(match: Dict[str, Any]) -> Dict[str, Any]:
    """Public shape of a match; also the next-match endpoint's body."""
    return {
        "id": match.get("id"),
        "opponent": match.get("opponent"),
        "venue": match.get("venue"),
        "isPast": match.get("isPast", False),
        "date": iso(match.get("date")),
        "score": match.get("score") or None,
    }


def news_summary(article: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "id": article.get("id"),
        "title": article.get("title"),
        "summary": article.get("summary"),
        "imageUrl": article.get("imageUrl", ""),
        "date": iso(article.get("date")),
    }


def countdown(kickoff: datetime, now: Optional[datetime] = None) -> Dict[str, int]:
    """Days/hours/minutes/seconds until kickoff; empty once it has passed."""
    now = as_utc(now) if now else datetime.now(timezone.utc)
    remaining = int((as_utc(kickoff) - now).total_seconds())
    if remaining <= 0:
        return {}
    days, rest = divmod(remaining, 86400)
    hours, rest = divmod(rest, 3600)
    minutes, seconds = divmod(rest, 60)
    return {"days": days, "hours": hours, "minutes": minutes, "seconds": seconds}


def home_feed(store: DocumentStore, now: Optional[datetime] = None) -> Dict[str, Any]:
    match = next_match(store)
    article = latest_news(store)
    return {
        "nextMatch": match_summary(match) if match else None,
        "countdown": countdown(match["date"], now) if match and match.get("date") else {},
        "latestNews": news_summary(article) if article else None,
    }


def scorer_label(scorer: Dict[str, Any], players_by_id: Dict[str, Dict[str, Any]]) -> str:
    player = players_by_id.get(scorer.get("playerId")) if scorer.get("playerId") else None
    name = player["name"] if player else (scorer.get("playerName") or "Unknown")
    tag = f"({CLUB_NAME})" if player else "(Opponent)"
    label = f"{name} {tag}"
    if scorer.get("minute"):
        label += f" ({scorer['minute']}')"
    return label


def schedule(store: DocumentStore) -> Dict[str, List[Dict[str, Any]]]:
    matches = store.query("matches", order_by=("date", "asc"))
    players_by_id = {p["id"]: p for p in store.query("players")}

    upcoming = []
    results = []
    for match in matches:
        item = match_summary(match)
        item["competition"] = match.get("competition")
        if match.get("isPast"):
            item["goalScorers"] = [scorer_label(s, players_by_id) for s in match.get("goalScorers") or []]
            results.append(item)
        else:
            upcoming.append(item)
    results.reverse()
    return {"upcoming": upcoming, "results": results}
