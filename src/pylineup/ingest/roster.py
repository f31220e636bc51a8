"""Helpers to load roster CSVs and emit canonical player records."""

from __future__ import annotations

import csv
import logging
import re
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, List, Mapping, Optional, Sequence

from pydantic import BaseModel

from pylineup.models.player import InjuryStatus, PlayerRecord, Role


logger = logging.getLogger(__name__)

TEAM_ALIASES: Dict[str, str] = {
    "GNB": "GB",
    "JAC": "JAX",
    "KAN": "KC",
    "LA": "LAR",
    "STL": "LAR",
    "SD": "LAC",
    "OAK": "LV",
    "LVR": "LV",
    "NWE": "NE",
    "NOR": "NO",
    "SFO": "SF",
    "TAM": "TB",
    "WSH": "WAS",
}

_INJURY_TOKENS: Dict[str, InjuryStatus] = {
    "": InjuryStatus.HEALTHY,
    "A": InjuryStatus.HEALTHY,
    "ACTIVE": InjuryStatus.HEALTHY,
    "HEALTHY": InjuryStatus.HEALTHY,
    "Q": InjuryStatus.QUESTIONABLE,
    "QUESTIONABLE": InjuryStatus.QUESTIONABLE,
    "D": InjuryStatus.DOUBTFUL,
    "DOUBTFUL": InjuryStatus.DOUBTFUL,
    "O": InjuryStatus.OUT,
    "OUT": InjuryStatus.OUT,
    "IR": InjuryStatus.IR,
    "IL": InjuryStatus.IR,
    "INJ": InjuryStatus.IR,
}


class RosterRow(BaseModel):
    raw_id: Optional[str] = None
    raw_name: str
    raw_team: str
    raw_opponent: Optional[str] = None
    raw_position: Optional[str] = None
    raw_projection: str
    raw_p10: Optional[str] = None
    raw_p50: Optional[str] = None
    raw_p90: Optional[str] = None
    raw_injury_status: Optional[str] = None
    raw_kickoff: Optional[str] = None
    raw_game_id: Optional[str] = None
    raw_in_lineup: Optional[str] = None

    @classmethod
    def from_mapping(cls, row: Mapping[str, str], mapping: Mapping[str, str]) -> "RosterRow":
        def extract(spec: Optional[str | Sequence[str]], *, default: Optional[str] = None) -> Optional[str]:
            if spec is None:
                return default
            if isinstance(spec, str):
                value = row.get(spec)
                return value.strip() if value is not None else default
            parts = [row.get(col, "").strip() for col in spec if row.get(col)]
            return " ".join(parts) if parts else default

        def parse_spec(key: str) -> Optional[str | Sequence[str]]:
            spec = mapping.get(key)
            if spec is None:
                return None
            if "|" in spec:
                return tuple(part.strip() for part in spec.split("|"))
            return spec

        return cls(
            raw_id=extract(parse_spec("player_id")),
            raw_name=extract(parse_spec("name"), default="") or "",
            raw_team=extract(parse_spec("team"), default="") or "",
            raw_opponent=extract(parse_spec("opponent")),
            raw_position=extract(parse_spec("position")),
            raw_projection=extract(parse_spec("projection"), default="") or "",
            raw_p10=extract(parse_spec("p10")),
            raw_p50=extract(parse_spec("p50")),
            raw_p90=extract(parse_spec("p90")),
            raw_injury_status=extract(parse_spec("injury_status")),
            raw_kickoff=extract(parse_spec("kickoff")),
            raw_game_id=extract(parse_spec("game_id")),
            raw_in_lineup=extract(parse_spec("in_lineup")),
        )


DEFAULT_ROSTER_MAPPING = {
    "player_id": "player_id",
    "name": "name",
    "team": "team",
    "opponent": "opponent",
    "position": "position",
    "projection": "projection",
    "p10": "p10",
    "p50": "p50",
    "p90": "p90",
    "injury_status": "injury_status",
    "kickoff": "kickoff",
    "game_id": "game_id",
    "in_lineup": "in_lineup",
}


def canonical_team(team: str) -> str:
    token = re.sub(r"[^A-Z0-9]", "", team.upper())
    return TEAM_ALIASES.get(token, token)


def _parse_float(raw: Optional[str], *, field: str, name: str) -> Optional[float]:
    if raw is None or not raw.strip():
        return None
    try:
        return float(raw.strip())
    except ValueError:
        raise ValueError(f"{field} '{raw}' for {name} is not numeric") from None


def _parse_injury(raw: Optional[str]) -> InjuryStatus:
    token = (raw or "").strip().upper()
    status = _INJURY_TOKENS.get(token)
    if status is None:
        logger.debug("Unrecognised injury status %r; treating as healthy", raw)
        return InjuryStatus.HEALTHY
    return status


def _parse_kickoff(raw: Optional[str]) -> Optional[datetime]:
    if raw is None or not raw.strip():
        return None
    text = raw.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    value = datetime.fromisoformat(text)
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value


def _parse_flag(value: Optional[str]) -> bool:
    if value is None:
        return False
    return value.strip().lower() in {"1", "true", "t", "yes", "y", "starter"}


def load_roster_csv(path: Path, *, mapping: Mapping[str, str] | None = None) -> List[RosterRow]:
    mapping = mapping or DEFAULT_ROSTER_MAPPING
    with path.open(newline="", encoding="utf-8") as f:
        reader = csv.DictReader(f)
        return [RosterRow.from_mapping(row, mapping) for row in reader]


def rows_to_records(rows: Sequence[RosterRow]) -> List[PlayerRecord]:
    records: List[PlayerRecord] = []
    for row in rows:
        if not row.raw_position:
            raise ValueError(f"Row for {row.raw_name or row.raw_id!r} has no position")
        role = Role.parse(row.raw_position.split("/")[0])
        projection = _parse_float(row.raw_projection, field="projection", name=row.raw_name)
        p50 = _parse_float(row.raw_p50, field="p50", name=row.raw_name)
        if projection is None:
            if p50 is None:
                raise ValueError(f"Row for {row.raw_name!r} has neither a projection nor a median")
            projection = p50
        metadata: Dict[str, object] = {}
        if row.raw_position:
            metadata["raw_position"] = row.raw_position
        records.append(
            PlayerRecord(
                player_id=row.raw_id or row.raw_name,
                name=row.raw_name,
                team=canonical_team(row.raw_team),
                opponent=canonical_team(row.raw_opponent) if row.raw_opponent else "",
                role=role,
                game_id=row.raw_game_id or None,
                projection=projection,
                p10=_parse_float(row.raw_p10, field="p10", name=row.raw_name),
                p50=p50,
                p90=_parse_float(row.raw_p90, field="p90", name=row.raw_name),
                injury_status=_parse_injury(row.raw_injury_status),
                kickoff=_parse_kickoff(row.raw_kickoff),
                in_lineup=_parse_flag(row.raw_in_lineup),
                metadata=metadata,
            )
        )
    return records


def load_records_from_csv(path: Path, *, mapping: Mapping[str, str] | None = None) -> List[PlayerRecord]:
    records = rows_to_records(load_roster_csv(path, mapping=mapping))
    logger.info("Loaded %d roster players from %s", len(records), path)
    return records


def load_bye_table(path: Path) -> Dict[str, int]:
    """Read a ``team,bye`` CSV into ``{team: period}``."""

    byes: Dict[str, int] = {}
    with path.open(newline="", encoding="utf-8") as f:
        for row in csv.DictReader(f):
            team = (row.get("team") or "").strip()
            period = (row.get("bye") or "").strip()
            if not team or not period:
                continue
            byes[canonical_team(team)] = int(period)
    return byes
