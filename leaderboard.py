"""
Season leaderboards and the full sortable stats table.

Everything is derived from the players collection on each request.
"""
from typing import Any, Dict, List, Literal

from pydantic import BaseModel, ConfigDict

SortKey = Literal["name", "appearances", "goals", "assists", "ga"]
Direction = Literal["ascending", "descending"]


def season_stat(player: Dict[str, Any], stat: str) -> int:
    return ((player.get("stats") or {}).get("season") or {}).get(stat, 0) or 0


def goal_contributions(player: Dict[str, Any]) -> int:
    """Season goals + assists."""
    return season_stat(player, "goals") + season_stat(player, "assists")


def _metric(player: Dict[str, Any], key: str):
    if key == "name":
        return player.get("name") or ""
    if key == "ga":
        return goal_contributions(player)
    return season_stat(player, key)


def top_players(players: List[Dict[str, Any]], metric: str, n: int = 3) -> List[Dict[str, Any]]:
    """
    Top ``n`` players by a season metric, skipping players on zero.
    Equal values keep their load order; no further tie-break is applied.
    """
    ranked = [p for p in players if _metric(p, metric) > 0]
    ranked.sort(key=lambda p: _metric(p, metric), reverse=True)
    return [_leader_row(p, _metric(p, metric)) for p in ranked[:n]]


def _leader_row(player: Dict[str, Any], stat: int) -> Dict[str, Any]:
    return {
        "id": player.get("id"),
        "name": player.get("name"),
        "number": player.get("number"),
        "imageUrl": player.get("imageUrl", ""),
        "stat": stat,
    }


def leaderboards(players: List[Dict[str, Any]]) -> Dict[str, List[Dict[str, Any]]]:
    return {
        "topScorers": top_players(players, "goals"),
        "topAssisters": top_players(players, "assists"),
        "topGA": top_players(players, "ga"),
    }


class SortConfig(BaseModel):
    model_config = ConfigDict(frozen=True)

    key: SortKey = "ga"
    direction: Direction = "descending"


DEFAULT_SORT = SortConfig()


def request_sort(config: SortConfig, key: str) -> SortConfig:
    """
    Header click on ``key``. A new column starts descending; clicking the
    current column flips its direction.
    """
    if config.key != key:
        return SortConfig(key=key, direction="descending")
    if config.direction == "ascending":
        return SortConfig(key=key, direction="descending")
    return SortConfig(key=key, direction="ascending")


def _column(row: Dict[str, Any], key: str):
    return (row["name"] or "") if key == "name" else row[key]


def sort_stats_table(players: List[Dict[str, Any]], config: SortConfig = DEFAULT_SORT) -> List[Dict[str, Any]]:
    rows = [
        {
            "id": p.get("id"),
            "name": p.get("name"),
            "number": p.get("number"),
            "imageUrl": p.get("imageUrl", ""),
            "appearances": season_stat(p, "appearances"),
            "goals": season_stat(p, "goals"),
            "assists": season_stat(p, "assists"),
            "ga": goal_contributions(p),
        }
        for p in players
    ]
    rows.sort(key=lambda r: _column(r, config.key), reverse=config.direction == "descending")
    for rank, row in enumerate(rows, start=1):
        row["rank"] = rank
    return rows
