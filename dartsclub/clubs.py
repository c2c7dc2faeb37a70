"""Club kinds keyed on ``clubs.database_prefix``.

Each kind knows which statistic tables belong to it and how its raw rows map
onto the column names the statistics functions use (``name``, ``against``,
``darts_thrown``, ``high_closer``).
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from . import datastore as ds
from . import stats
from .errors import UnknownClubKindError


@dataclass(frozen=True)
class ClubKind:
    prefix: str
    session_table: str
    match_table: str
    members_table: str
    leg_table: Optional[str] = None
    # raw column -> canonical column
    session_columns: Dict[str, str] = field(default_factory=dict)
    match_columns: Dict[str, str] = field(default_factory=dict)
    has_seasons: bool = True

    @property
    def player_column(self) -> str:
        for raw, canonical in self.session_columns.items():
            if canonical == "name":
                return raw
        return "name"

    @property
    def match_player_column(self) -> str:
        return "player"

    @property
    def tables(self) -> List[str]:
        names = [self.session_table, self.match_table, self.members_table]
        if self.leg_table:
            names.append(self.leg_table)
        return names

    def session_row(self, raw: Dict[str, Any]) -> Dict[str, Any]:
        row = dict(raw)
        for src, dst in self.session_columns.items():
            row[dst] = raw.get(src)
        return row

    def match_row(self, raw: Dict[str, Any]) -> Dict[str, Any]:
        row = dict(raw)
        for src, dst in self.match_columns.items():
            row[dst] = raw.get(src)
        return row

    def current_season(self) -> Optional[Any]:
        if not self.has_seasons:
            return None
        return stats.latest_season({"season": s} for s in ds.list_seasons(self.session_table))

    def resolve_season(self, season: Optional[str]) -> Optional[Any]:
        """``None``/``"current"`` mean the latest season on record."""
        if not self.has_seasons:
            return None
        if season in (None, "", "current"):
            return self.current_season()
        return season

    def fetch_sessions(self, season: Optional[Any] = None, player: Optional[str] = None) -> List[Dict[str, Any]]:
        filters: Dict[str, Any] = {}
        if season is not None and self.has_seasons:
            filters["season"] = season
        if player is not None:
            filters[self.player_column] = player
        raw = ds.fetch_rows(self.session_table, filters=filters, order_by="date")
        return [self.session_row(r) for r in raw]

    def fetch_matches(self, season: Optional[Any] = None, player: Optional[str] = None) -> List[Dict[str, Any]]:
        """Match rows newest first; rows uploaded without a season count for every season."""
        filters: Dict[str, Any] = {}
        if player is not None:
            filters[self.match_player_column] = player
        raw = ds.fetch_rows(self.match_table, filters=filters, order_by="date", descending=True)
        if season is not None and self.has_seasons:
            raw = [r for r in raw if r.get("season") in (None, "") or str(r.get("season")) == str(season)]
        return [self.match_row(r) for r in raw]

    def fetch_raw_rows(self, season: Optional[Any] = None, player: Optional[str] = None) -> Dict[str, List[Dict[str, Any]]]:
        return {
            "sessions": self.fetch_sessions(season=season, player=player),
            "matches": self.fetch_matches(season=season, player=player),
        }

    def compute_aggregates(self, rows: Dict[str, List[Dict[str, Any]]]) -> Dict[str, Any]:
        """Club dashboard numbers for a season's rows."""
        sessions = rows.get("sessions", [])
        recent = sorted(
            (r for r in sessions if r.get("average") is not None and r.get("date") is not None),
            key=lambda r: str(r.get("date")),
        )[-20:]
        return {
            "summary": stats.summary_stats(sessions),
            "rollup": stats.club_rollup(sessions),
            "trend": stats.weekly_trend(recent),
            "recent_matches": [
                {
                    "date": stats.format_date(m.get("date"), "%Y-%m-%d"),
                    "player": m.get("player"),
                    "against": m.get("against"),
                    "legs": m.get("legs"),
                    "ave": float(m["ave"]) if m.get("ave") is not None else None,
                    "result": m.get("result"),
                }
                for m in rows.get("matches", [])[:10]
            ],
        }

    def player_profile(self, player: str, season: Optional[Any] = None) -> Dict[str, Any]:
        """Everything the player page shows for one player and season."""
        rows = self.fetch_raw_rows(season=season, player=player)
        sessions = rows["sessions"]
        matches = rows["matches"]
        return {
            "player": player,
            "season": season,
            "stats": stats.player_season_stats(sessions),
            "trend": stats.weekly_trend(sessions),
            "opponents": stats.opponent_tally(matches),
            "top_matches": stats.top_matches(matches),
        }

    def rankings(self, season: Optional[Any] = None) -> List[Dict[str, Any]]:
        sessions = self.fetch_sessions(season=season)
        return stats.compute_rankings(sessions, previous=stats.previous_snapshot(sessions))

    def handicaps(self, season: Optional[Any] = None, min_sessions: Optional[int] = None) -> List[Dict[str, Any]]:
        sessions = self.fetch_sessions(season=season)
        return stats.compute_handicaps(stats.season_averages(sessions, min_sessions=min_sessions))


VIKINGS = ClubKind(
    prefix="vikings",
    session_table="vikings_friday",
    match_table="vikings_matches",
    members_table="vikings_members",
)

JDA = ClubKind(
    prefix="jda",
    session_table="jda_stats",
    match_table="jda_matches",
    members_table="jda_members",
    leg_table="jda_legs",
    session_columns={"player": "name", "darts": "darts_thrown", "closer": "high_closer"},
    match_columns={"opponent": "against"},
    has_seasons=False,
)

CLUB_KINDS: Dict[str, ClubKind] = {k.prefix: k for k in (VIKINGS, JDA)}


def kind_for_prefix(prefix: Optional[str]) -> ClubKind:
    kind = CLUB_KINDS.get((prefix or "").strip().lower())
    if kind is None:
        raise UnknownClubKindError(f"No club kind for database prefix {prefix!r}")
    return kind


def kind_for_club(club: Dict[str, Any]) -> ClubKind:
    return kind_for_prefix(club.get("database_prefix"))
