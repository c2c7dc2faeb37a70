"""Statistics for darts league nights: averages, rankings and handicaps."""

from __future__ import annotations

import enum
import json
import logging
from datetime import date, datetime
from decimal import Decimal
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Tuple

logger = logging.getLogger(__name__)

# Settings ship inside the package under ``data``.
DATA_DIR = Path(__file__).resolve().parent / "data"


def _build_tiers(entries: List[Dict]) -> Tuple[List[Tuple[float, int, int]], Tuple[int, int]]:
    """Build descending handicap tiers and the catch-all tier from settings."""
    tiers: List[Tuple[float, int, int]] = []
    default = (301, -200)
    for item in entries:
        bound = item["min_average"]
        values = (int(item["start_score"]), int(item["adjustment"]))
        if isinstance(bound, (int, float)):
            tiers.append((float(bound), *values))
        elif bound == "default_or_lower":
            default = values
    tiers.sort(key=lambda t: -t[0])
    return tiers, default


with (DATA_DIR / "settings.json").open() as f:
    _SETTINGS = json.load(f)

_HANDICAP_TIERS, _HANDICAP_DEFAULT = _build_tiers(_SETTINGS["handicap_tiers"])
_MIN_SESSIONS = int(_SETTINGS.get("handicap_min_sessions", 3))
_START_SCORE = int(_SETTINGS.get("leg_start_score", 501))
_OPPONENT_LIMIT = int(_SETTINGS.get("opponent_limit", 5))
_TOP_MATCH_LIMIT = int(_SETTINGS.get("top_match_limit", 10))


class Outcome(str, enum.Enum):
    WON = "won"
    LOST = "lost"
    DRAW = "draw"
    UNKNOWN = "unknown"


_WIN_TOKENS = {"won", "win", "w"}
_LOSS_TOKENS = {"lost", "lose", "l"}
_DRAW_TOKENS = {"draw", "drawn", "d", "tie"}


def _num(value: Any) -> float:
    """Return ``value`` as a number; None, blanks and junk count as 0."""
    if value is None or isinstance(value, bool):
        return 0
    if isinstance(value, (int, float)):
        return value
    if isinstance(value, Decimal):
        return float(value)
    try:
        return float(str(value).strip())
    except ValueError:
        return 0


def _int(value: Any) -> int:
    return int(_num(value))


def _coerce_date(value: Any) -> Optional[date]:
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    text = str(value).strip()
    if not text:
        return None
    try:
        return date.fromisoformat(text[:10])
    except ValueError:
        pass
    for fmt in ("%d/%m/%Y", "%d/%m/%y", "%d-%m-%Y"):
        try:
            return datetime.strptime(text, fmt).date()
        except ValueError:
            continue
    return None


def format_date(value: Any, fmt: str) -> str:
    parsed = _coerce_date(value)
    if parsed is None:
        return "" if value is None else str(value)
    return parsed.strftime(fmt)


def player_season_stats(rows: Iterable[Dict]) -> Dict[str, float]:
    """Summarise one player's session rows.

    Args:
        rows: Session rows for a single player, optionally narrowed to one
            season.

    Returns:
        Dictionary with highest_average, win_percentage, accumulated_average
        (games-weighted, not a plain mean), leg totals, darts, 180s, 171s and
        highest_closer. Every value is 0 when there are no rows or no games.
    """
    rows = list(rows)
    total_games = sum(_num(r.get("games")) for r in rows)
    total_won = sum(_int(r.get("won")) for r in rows)
    weighted = sum(_num(r.get("average")) * _num(r.get("games")) for r in rows)
    return {
        "highest_average": max((_num(r.get("average")) for r in rows), default=0),
        "win_percentage": (total_won / total_games) * 100 if total_games > 0 else 0,
        "accumulated_average": weighted / total_games if total_games > 0 else 0,
        "total_legs_won": total_won,
        "total_legs_lost": sum(_int(r.get("lost")) for r in rows),
        "total_darts_thrown": sum(_int(r.get("darts_thrown")) for r in rows),
        "total_180s": sum(_int(r.get("one_eighty")) for r in rows),
        "total_171s": sum(_int(r.get("one_seventy_one")) for r in rows),
        "highest_closer": max((_int(r.get("high_closer")) for r in rows), default=0),
    }


def weekly_trend(rows: Iterable[Dict]) -> List[Dict[str, Any]]:
    """One point per session row in the order given (callers sort by date)."""
    return [
        {"week": format_date(r.get("date"), "%d/%m/%y"), "average": _num(r.get("average"))}
        for r in rows
    ]


def classify_result(result: Optional[str]) -> Outcome:
    """Map free-text match results such as ``"Won 3-1"`` or ``"L"`` to an outcome."""
    text = (result or "").strip().lower()
    if text in _WIN_TOKENS or "won" in text:
        return Outcome.WON
    if text in _LOSS_TOKENS or "lost" in text:
        return Outcome.LOST
    if text in _DRAW_TOKENS or "draw" in text:
        return Outcome.DRAW
    return Outcome.UNKNOWN


def opponent_tally(rows: Iterable[Dict], limit: Optional[int] = None) -> List[Dict[str, Any]]:
    """Count meetings per opponent, most frequent first.

    Anything that is not a win is tallied as a loss, including draws and
    results that cannot be classified.
    """
    tally: Dict[str, Dict[str, Any]] = {}
    for match in rows:
        opponent = match.get("against")
        entry = tally.setdefault(opponent, {"opponent": opponent, "played": 0, "wins": 0, "losses": 0})
        entry["played"] += 1
        outcome = classify_result(match.get("result"))
        if outcome is Outcome.WON:
            entry["wins"] += 1
        else:
            if outcome is Outcome.UNKNOWN:
                logger.debug("unclassified result %r against %r counted as loss", match.get("result"), opponent)
            entry["losses"] += 1
    ordered = sorted(tally.values(), key=lambda e: -e["played"])
    return ordered[: _OPPONENT_LIMIT if limit is None else limit]


def top_matches(rows: Iterable[Dict], limit: Optional[int] = None) -> List[Dict[str, Any]]:
    """Best match averages, highest first; matches without a positive average are skipped."""
    played = [m for m in rows if _num(m.get("ave")) > 0]
    played.sort(key=lambda m: -_num(m.get("ave")))
    return [
        {
            "date": format_date(m.get("date"), "%d/%m/%Y"),
            "against": m.get("against"),
            "average": _num(m.get("ave")),
            "result": m.get("result"),
        }
        for m in played[: _TOP_MATCH_LIMIT if limit is None else limit]
    ]


def _dated(rows: Iterable[Dict]) -> List[Tuple[date, Dict]]:
    out = []
    for r in rows:
        d = _coerce_date(r.get("date"))
        if d is not None:
            out.append((d, r))
    return out


def _score_made(row: Dict) -> float:
    return _num(row.get("games")) * _START_SCORE - _num(row.get("score_left"))


def club_rollup(rows: Iterable[Dict]) -> Dict[str, Any]:
    """Club-wide totals for a season of session rows.

    The games column counts each game once per player, so the club total is
    halved. The club average only looks at the most recent play date.
    """
    rows = list(rows)
    dated = _dated(rows)
    latest = max((d for d, _r in dated), default=None)
    latest_rows = [r for d, r in dated if d == latest]
    score = sum(_score_made(r) for r in latest_rows)
    darts = sum(_num(r.get("darts_thrown")) for r in latest_rows)
    return {
        "total_games": sum(_num(r.get("games")) for r in rows) / 2,
        "total_180s": sum(_int(r.get("one_eighty")) for r in rows),
        "total_darts": sum(_int(r.get("darts_thrown")) for r in rows),
        "club_average": round(score / darts * 3, 2) if darts > 0 else 0.0,
        "latest_date": latest.isoformat() if latest else None,
    }


def summary_stats(rows: Iterable[Dict]) -> Dict[str, Any]:
    """Headline cards for a club dashboard (plain mean of row averages)."""
    rows = list(rows)
    total_games = sum(_int(r.get("games")) for r in rows)
    total_wins = sum(_int(r.get("won")) for r in rows)
    avg = sum(_num(r.get("average")) for r in rows) / len(rows) if rows else 0
    return {
        "total_games": total_games,
        "total_wins": total_wins,
        "average": round(avg, 2),
        "total_180s": sum(_int(r.get("one_eighty")) for r in rows),
        "win_rate": round(total_wins / total_games * 100, 1) if total_games > 0 else 0,
    }


def compute_rankings(rows: Iterable[Dict], previous: Optional[Iterable[Dict]] = None) -> List[Dict[str, Any]]:
    """Aggregate session rows into a season ranking table.

    Args:
        rows: Session rows for the season.
        previous: Optional earlier snapshot of the same season's rows. When
            given, each entry's ``change`` is the number of places gained
            since that snapshot; otherwise ``change`` is 0.

    Returns:
        Ranking entries sorted by points then average (both descending), with
        1-based ``position``.
    """
    totals: Dict[str, Dict[str, Any]] = {}
    for r in rows:
        name = r.get("name")
        if not name:
            continue
        entry = totals.setdefault(
            name,
            {
                "name": name,
                "points": 0,
                "games": 0,
                "one_eighty": 0,
                "one_seventy_one": 0,
                "total_score": 0,
                "total_darts": 0,
                "sessions": 0,
            },
        )
        entry["points"] += _num(r.get("points"))
        entry["games"] += _num(r.get("games"))
        entry["one_eighty"] += _int(r.get("one_eighty"))
        entry["one_seventy_one"] += _int(r.get("one_seventy_one"))
        entry["total_score"] += _score_made(r)
        entry["total_darts"] += _num(r.get("darts_thrown"))
        entry["sessions"] += 1

    table = []
    for entry in totals.values():
        darts = entry["total_darts"]
        entry["average"] = entry["total_score"] / darts * 3 if darts > 0 else 0
        table.append(entry)

    table.sort(key=lambda e: (-e["points"], -e["average"], e["name"]))
    for position, entry in enumerate(table, start=1):
        entry["position"] = position

    deltas = ranking_deltas(table, compute_rankings(previous)) if previous is not None else {}
    for entry in table:
        entry["change"] = deltas.get(entry["name"], 0)
    return table


def ranking_deltas(current: Iterable[Dict], previous: Iterable[Dict]) -> Dict[str, int]:
    """Places gained per player between two ranking snapshots.

    Positive means the player moved up. Players missing from ``previous``
    get 0.
    """
    before = {e["name"]: e["position"] for e in previous}
    out: Dict[str, int] = {}
    for entry in current:
        prev = before.get(entry["name"])
        out[entry["name"]] = 0 if prev is None else prev - entry["position"]
    return out


def previous_snapshot(rows: Iterable[Dict]) -> List[Dict]:
    """Rows as they stood before the most recent play date."""
    dated = _dated(rows)
    latest = max((d for d, _r in dated), default=None)
    if latest is None:
        return []
    return [r for d, r in dated if d < latest]


def assign_handicap(average: float) -> Dict[str, int]:
    """Return the start score and adjustment for a season average.

    Tier bounds are inclusive lower bounds, so 45.00 starts on 501 and 44.99
    on 451.
    """
    avg = _num(average)
    for bound, start_score, adjustment in _HANDICAP_TIERS:
        if avg >= bound:
            return {"handicap_start_score": start_score, "handicap_adjustment": adjustment}
    start_score, adjustment = _HANDICAP_DEFAULT
    return {"handicap_start_score": start_score, "handicap_adjustment": adjustment}


def season_averages(rows: Iterable[Dict], min_sessions: Optional[int] = None) -> List[Dict[str, Any]]:
    """Games-weighted season average per player with enough sessions."""
    threshold = _MIN_SESSIONS if min_sessions is None else min_sessions
    by_player: Dict[str, List[Dict]] = {}
    for r in rows:
        name = r.get("name")
        if name:
            by_player.setdefault(name, []).append(r)
    out = []
    for name, player_rows in by_player.items():
        if len(player_rows) < threshold:
            continue
        stats = player_season_stats(player_rows)
        out.append({"name": name, "season_average": stats["accumulated_average"], "sessions": len(player_rows)})
    return out


def compute_handicaps(players: Iterable[Dict]) -> List[Dict[str, Any]]:
    """Assign handicap tiers, strongest player first."""
    table = [
        {"name": p.get("name"), "season_average": _num(p.get("season_average")), **assign_handicap(p.get("season_average"))}
        for p in players
    ]
    table.sort(key=lambda e: (-e["season_average"], e["name"] or ""))
    return table


def top_averages(rows: Iterable[Dict], limit: int = 10) -> List[Dict[str, Any]]:
    """Single-night leaderboard of the best averages."""
    scored = [r for r in rows if r.get("average") is not None]
    scored.sort(key=lambda r: -_num(r.get("average")))
    return [
        {"name": r.get("name"), "average": _num(r.get("average")), "one_eighty": _int(r.get("one_eighty"))}
        for r in scored[:limit]
    ]


def user_growth(profiles: Iterable[Dict]) -> List[Dict[str, Any]]:
    """Count signups per ``YYYY-MM`` month in the order profiles are given."""
    months: Dict[str, int] = {}
    for p in profiles:
        created = p.get("created_at")
        if created is None:
            continue
        month = created.strftime("%Y-%m") if isinstance(created, (date, datetime)) else str(created)[:7]
        months[month] = months.get(month, 0) + 1
    return [{"month": m, "users": n} for m, n in months.items()]


def latest_season(rows: Iterable[Dict]) -> Optional[Any]:
    seasons = [r.get("season") for r in rows if r.get("season") not in (None, "")]
    if not seasons:
        return None
    return max(seasons, key=lambda s: (_num(s), str(s)))


__all__ = [
    "Outcome",
    "assign_handicap",
    "classify_result",
    "club_rollup",
    "compute_handicaps",
    "compute_rankings",
    "format_date",
    "latest_season",
    "opponent_tally",
    "player_season_stats",
    "previous_snapshot",
    "ranking_deltas",
    "season_averages",
    "summary_stats",
    "top_averages",
    "top_matches",
    "user_growth",
    "weekly_trend",
]
