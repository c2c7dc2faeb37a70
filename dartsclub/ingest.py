"""CSV ingestion for club statistic tables.

An upload is parsed against one of six fixed table schemas, cleaned, stripped
of blank rows and inserted in sequential batches. A rejected batch does not
stop the upload; its error is kept as a warning and the remaining batches are
still attempted. Batches that were stored stay stored.
"""

from __future__ import annotations

import csv
import io
import logging
import math
import os
import re
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple, Union

from .errors import BatchInsertError, EmptyDatasetError, IngestionFailedError, ParseError
from .stats import Outcome, classify_result

logger = logging.getLogger(__name__)

BATCH_SIZE = 100

TEXT = "text"
INT = "int"
FLOAT = "float"
NAME = "name"


@dataclass(frozen=True)
class Column:
    header: str
    field: str
    kind: str = TEXT
    # Counters where a missing cell means zero rather than unknown
    default: Optional[int] = None


@dataclass(frozen=True)
class TableSchema:
    table: str
    club: str
    label: str
    columns: Tuple[Column, ...]
    result_field: Optional[str] = None

    @property
    def headers(self) -> List[str]:
        return [c.header for c in self.columns]

    @property
    def fields(self) -> List[str]:
        return [c.field for c in self.columns]


SCHEMAS: Dict[str, TableSchema] = {
    "vikings_friday": TableSchema(
        "vikings_friday",
        "Vikings",
        "Vikings - Friday Sessions",
        (
            Column("Date", "date"),
            Column("Name", "name", NAME),
            Column("Points", "points", INT),
            Column("Games", "games", INT),
            Column("Won", "won", INT),
            Column("Lost", "lost", INT),
            Column("DartsThrown", "darts_thrown", INT),
            Column("ScoreLeft", "score_left", INT),
            Column("Average", "average", FLOAT),
            Column("180", "one_eighty", INT),
            Column("171", "one_seventy_one", INT),
            Column("HighCloser", "high_closer", INT),
            Column("Winner", "winner", INT, default=0),
            Column("Block", "block"),
            Column("Season", "season"),
        ),
    ),
    "vikings_matches": TableSchema(
        "vikings_matches",
        "Vikings",
        "Vikings - Matches",
        (
            Column("Date", "date"),
            Column("Player", "player", NAME),
            Column("Against", "against", NAME),
            Column("Legs", "legs", INT),
            Column("Ave", "ave", FLOAT),
            Column("Result", "result"),
            Column("Season", "season"),
        ),
        result_field="result",
    ),
    "vikings_members": TableSchema(
        "vikings_members",
        "Vikings",
        "Vikings - Members",
        (
            Column("Name", "name", NAME),
            Column("Surname", "surname", NAME),
            Column("Member", "member"),
            Column("Season", "season", INT),
            Column("Color", "color"),
        ),
    ),
    "jda_stats": TableSchema(
        "jda_stats",
        "JDA",
        "JDA - Main Statistics",
        (
            Column("Date", "date"),
            Column("Player", "player", NAME),
            Column("Bonus", "bonus", INT),
            Column("Points", "points", INT),
            Column("Games", "games", INT),
            Column("Won", "won", INT),
            Column("Lost", "lost", INT),
            Column("Darts", "darts", INT),
            Column("ScoreLeft", "score_left", INT),
            Column("Average", "average", FLOAT),
            Column("180s", "one_eighty", INT),
            Column("171s", "one_seventy_one", INT),
            Column("Closer", "closer", INT),
            Column("Closer1", "closer1", INT, default=0),
            Column("Closer2", "closer2", INT, default=0),
            Column("BlockPosition", "block_position", INT),
            Column("Block", "block"),
        ),
    ),
    "jda_legs": TableSchema(
        "jda_legs",
        "JDA",
        "JDA - Individual Legs",
        (
            Column("Date", "date"),
            Column("Player", "player", NAME),
            Column("Opponent", "opponent", NAME),
            Column("Darts", "darts", INT),
            Column("ScoreLeft", "score_left", INT),
            Column("Result", "result"),
        ),
        result_field="result",
    ),
    "jda_matches": TableSchema(
        "jda_matches",
        "JDA",
        "JDA - Matches",
        (
            Column("Date", "date"),
            Column("Player", "player", NAME),
            Column("Opponent", "opponent", NAME),
            Column("Legs", "legs", INT),
            Column("Ave", "ave", FLOAT),
            Column("Result", "result"),
        ),
        result_field="result",
    ),
}


def get_schema(target: str) -> TableSchema:
    try:
        return SCHEMAS[target]
    except KeyError:
        raise ParseError(f"Unknown upload table: {target!r}") from None


def detect_delimiter(first_line: str) -> str:
    """Pick the delimiter from the header line: ``;`` then ``,`` then tab."""
    if ";" in first_line:
        return ";"
    if "," in first_line:
        return ","
    if "\t" in first_line:
        return "\t"
    return ","


def clean_cell(value: Optional[str]) -> Optional[str]:
    """Trim a cell and strip one layer of matching quotes; blanks become None."""
    if value is None:
        return None
    text = value.strip()
    if len(text) >= 2 and text[0] == text[-1] and text[0] in ("'", '"'):
        text = text[1:-1].strip()
    return text or None


def parse_int(value: Optional[str]) -> Optional[int]:
    text = clean_cell(value)
    if text is None:
        return None
    try:
        return int(text)
    except ValueError:
        pass
    try:
        number = float(text)
    except ValueError:
        return None
    if not math.isfinite(number):
        return None
    return int(number)


def parse_float(value: Optional[str]) -> Optional[float]:
    text = clean_cell(value)
    if text is None:
        return None
    try:
        number = float(text)
    except ValueError:
        return None
    if not math.isfinite(number):
        return None
    return number


_WS_RE = re.compile(r"\s+")


def normalize_player_name(value: Optional[str]) -> Optional[str]:
    """Clean a player name and collapse runs of whitespace to one space."""
    text = clean_cell(value)
    if text is None:
        return None
    return _WS_RE.sub(" ", text)


def _convert(column: Column, raw: Optional[str]) -> Any:
    if column.kind == INT:
        value = parse_int(raw)
    elif column.kind == FLOAT:
        value = parse_float(raw)
    elif column.kind == NAME:
        value = normalize_player_name(raw)
    else:
        value = clean_cell(raw)
    if value is None and column.default is not None:
        return column.default
    return value


def _decode(data: Union[bytes, str]) -> str:
    if isinstance(data, str):
        return data
    try:
        return data.decode("utf-8-sig")
    except UnicodeDecodeError as exc:
        raise ParseError(f"File is not valid UTF-8 text: {exc}") from exc


def parse_csv(data: Union[bytes, str], target: str) -> List[Dict[str, Any]]:
    """Parse delimited text into typed rows for ``target``.

    The first row is the header. Columns are matched by exact header text;
    schema columns missing from the file are treated as empty cells.

    Raises:
        ParseError: undecodable input, unknown target, missing header or
            malformed quoting.
    """
    schema = get_schema(target)
    text = _decode(data).lstrip("\ufeff")
    first_line = text.splitlines()[0] if text.strip() else ""
    if not first_line.strip():
        raise ParseError("CSV file has no header row")
    delimiter = detect_delimiter(first_line)

    reader = csv.reader(io.StringIO(text, newline=""), delimiter=delimiter, strict=True)
    try:
        header = [clean_cell(h) or "" for h in next(reader)]
        index = {name: i for i, name in enumerate(header) if name}
        rows: List[Dict[str, Any]] = []
        for cells in reader:
            record: Dict[str, Any] = {}
            for column in schema.columns:
                i = index.get(column.header)
                raw = cells[i] if i is not None and i < len(cells) else None
                record[column.field] = _convert(column, raw)
            rows.append(record)
    except csv.Error as exc:
        raise ParseError(f"CSV parsing error at line {reader.line_num}: {exc}") from exc

    missing = [h for h in schema.headers if h not in index]
    if len(missing) == len(schema.headers):
        raise ParseError(
            f"None of the expected columns for {schema.table} were found; expected: {', '.join(schema.headers)}"
        )
    if missing:
        logger.info("csv_missing_columns table=%s missing=%s", schema.table, ",".join(missing))
    return rows


def is_blank(record: Dict[str, Any], schema: TableSchema) -> bool:
    """True when every field without a zero default is None or empty."""
    for column in schema.columns:
        if column.default is not None:
            continue
        value = record.get(column.field)
        if value is not None and value != "":
            return False
    return True


def filter_blank_rows(rows: Sequence[Dict[str, Any]], target: str) -> List[Dict[str, Any]]:
    schema = get_schema(target)
    return [r for r in rows if not is_blank(r, schema)]


def _env_batch_size() -> int:
    try:
        size = int(os.environ.get("UPLOAD_BATCH_SIZE", BATCH_SIZE))
    except ValueError:
        return BATCH_SIZE
    return size if 0 < size <= BATCH_SIZE else BATCH_SIZE


@dataclass
class IngestionResult:
    table: str
    expected: int
    inserted: int = 0
    batches: int = 0
    failed_batches: int = 0
    warnings: List[str] = field(default_factory=list)

    @property
    def complete(self) -> bool:
        return self.inserted == self.expected

    def summary(self) -> str:
        """Human-readable outcome: inserted count plus any warnings."""
        msg = f"Successfully uploaded {self.inserted} records to {self.table}"
        if not self.complete:
            msg += f" ({self.inserted} of {self.expected} rows inserted)"
        if self.warnings:
            msg += ". Warnings: " + "; ".join(self.warnings)
        return msg

    def to_dict(self) -> Dict[str, Any]:
        return {
            "table": self.table,
            "expected": self.expected,
            "inserted": self.inserted,
            "batches": self.batches,
            "failed_batches": self.failed_batches,
            "warnings": list(self.warnings),
            "message": self.summary(),
        }


def _unclassified_results(rows: Sequence[Dict[str, Any]], schema: TableSchema) -> int:
    if not schema.result_field:
        return 0
    return sum(1 for r in rows if classify_result(r.get(schema.result_field)) is Outcome.UNKNOWN)


def insert_batches(
    rows: Sequence[Dict[str, Any]],
    target: str,
    insert: Callable[[str, List[Dict[str, Any]]], Any],
    batch_size: Optional[int] = None,
) -> IngestionResult:
    """Insert ``rows`` in sequential batches, carrying on past rejected ones.

    Raises:
        IngestionFailedError: when no batch was stored.
    """
    size = batch_size or _env_batch_size()
    result = IngestionResult(table=target, expected=len(rows))
    for batch_no, start in enumerate(range(0, len(rows), size), start=1):
        batch = list(rows[start : start + size])
        result.batches += 1
        try:
            insert(target, batch)
        except BatchInsertError as exc:
            result.failed_batches += 1
            warning = f"Batch {batch_no} (rows {start + 1}-{start + len(batch)}) failed: {exc.message}"
            result.warnings.append(warning)
            logger.warning("ingest_batch_failed table=%s batch=%d size=%d error=%s", target, batch_no, len(batch), exc.message)
            continue
        result.inserted += len(batch)

    logger.info(
        "ingest_counts target=%s expected=%d inserted=%d batches=%d failed=%d",
        target,
        result.expected,
        result.inserted,
        result.batches,
        result.failed_batches,
    )
    if result.inserted == 0:
        raise IngestionFailedError(result.warnings)
    return result


def ingest_csv(
    data: Union[bytes, str],
    target: str,
    insert: Optional[Callable[[str, List[Dict[str, Any]]], Any]] = None,
    batch_size: Optional[int] = None,
) -> IngestionResult:
    """Parse, clean and store one uploaded file into ``target``.

    Args:
        data: Raw file contents.
        target: One of :data:`SCHEMAS`.
        insert: Callable storing one batch; defaults to the datastore's
            ``insert_rows``. It must raise :class:`BatchInsertError` when the
            store rejects a batch.
        batch_size: Override for the batch size (at most 100).

    Raises:
        ParseError: before anything is inserted.
        EmptyDatasetError: no non-blank rows, before anything is inserted.
        IngestionFailedError: every batch was rejected.
    """
    schema = get_schema(target)
    rows = filter_blank_rows(parse_csv(data, target), target)
    if not rows:
        raise EmptyDatasetError(f"No data rows found for {target}")
    if insert is None:
        from .datastore import insert_rows as insert

    result = insert_batches(rows, target, insert, batch_size=batch_size)
    unclassified = _unclassified_results(rows, schema)
    if unclassified:
        result.warnings.append(f"{unclassified} row(s) have a result that is not won/lost/draw")
    return result


__all__ = [
    "BATCH_SIZE",
    "SCHEMAS",
    "Column",
    "IngestionResult",
    "TableSchema",
    "clean_cell",
    "detect_delimiter",
    "filter_blank_rows",
    "ingest_csv",
    "insert_batches",
    "is_blank",
    "normalize_player_name",
    "parse_csv",
    "parse_float",
    "parse_int",
]
