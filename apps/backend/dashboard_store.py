from __future__ import annotations

import json
import logging
import os
import re
import secrets
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from match_summary import BLUE_TEAM_ID, as_int, as_list, game_duration_seconds, match_info, participants

logger = logging.getLogger(__name__)

UNSAFE_ID_CHARS = re.compile(r"[^A-Za-z0-9_-]")

# snapshot field -> Riot participant field
PARTICIPANT_FIELDS = {
    "summoner_name": "summonerName",
    "riot_id_name": "riotIdGameName",
    "riot_id_tagline": "riotIdTagline",
    "champion_name": "championName",
    "champion_id": "championId",
    "team_id": "teamId",
    "team_position": "teamPosition",
    "role": "role",
    "win": "win",
    "kills": "kills",
    "deaths": "deaths",
    "assists": "assists",
    "total_damage_dealt_to_champions": "totalDamageDealtToChampions",
    "physical_damage_dealt": "physicalDamageDealtToChampions",
    "magic_damage_dealt": "magicDamageDealtToChampions",
    "true_damage_dealt": "trueDamageDealtToChampions",
    "total_damage_taken": "totalDamageTaken",
    "damage_self_mitigated": "damageSelfMitigated",
    "total_heal": "totalHeal",
    "total_shielded": "totalDamageShieldedOnTeammates",
    "double_kills": "doubleKills",
    "triple_kills": "tripleKills",
    "quadra_kills": "quadraKills",
    "penta_kills": "pentaKills",
    "largest_killing_spree": "largestKillingSpree",
    "largest_multi_kill": "largestMultiKill",
    "turret_kills": "turretKills",
    "inhibitor_kills": "inhibitorKills",
    "dragon_kills": "dragonKills",
    "baron_kills": "baronKills",
    "first_blood": "firstBloodKill",
    "first_tower": "firstTowerKill",
    "gold_earned": "goldEarned",
    "gold_spent": "goldSpent",
    "total_minions_killed": "totalMinionsKilled",
    "neutral_minions_killed": "neutralMinionsKilled",
    "vision_score": "visionScore",
    "wards_placed": "wardsPlaced",
    "wards_killed": "wardsKilled",
    "control_wards_bought": "visionWardsBoughtInGame",
    "item0": "item0",
    "item1": "item1",
    "item2": "item2",
    "item3": "item3",
    "item4": "item4",
    "item5": "item5",
    "item6": "item6",
    "total_time_spent_dead": "totalTimeSpentDead",
    "longest_time_spent_living": "longestTimeSpentLiving",
    "champ_level": "champLevel",
}
TEXT_FIELDS = {"summoner_name", "riot_id_name", "riot_id_tagline", "champion_name", "team_position", "role"}
FLAG_FIELDS = {"win", "first_blood", "first_tower"}


def now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def generate_dashboard_id() -> str:
    return secrets.token_hex(6)


def sanitize_dashboard_id(dashboard_id: str | None) -> str:
    cleaned = UNSAFE_ID_CHARS.sub("", str(dashboard_id or ""))
    return cleaned or generate_dashboard_id()


def region_from_match_id(match_id: str) -> str:
    prefix, sep, _ = str(match_id or "").partition("_")
    return prefix if sep and prefix else "unknown"


def convert_participant(participant: dict[str, Any]) -> dict[str, Any]:
    row: dict[str, Any] = {}
    for field, source in PARTICIPANT_FIELDS.items():
        value = participant.get(source)
        if field in TEXT_FIELDS:
            row[field] = str(value or "")
        elif field in FLAG_FIELDS:
            row[field] = bool(value)
        else:
            row[field] = as_int(value)
    if not row["riot_id_name"]:
        row["riot_id_name"] = str(participant.get("riotIdName") or "")
    return row


def convert_team_objectives(team: dict[str, Any]) -> dict[str, Any]:
    objectives = team.get("objectives") or {}

    def kills(name: str) -> int:
        return as_int((objectives.get(name) or {}).get("kills"))

    def first(name: str) -> bool:
        return bool((objectives.get(name) or {}).get("first"))

    return {
        "tower_kills": kills("tower"),
        "inhibitor_kills": kills("inhibitor"),
        "dragon_kills": kills("dragon"),
        "baron_kills": kills("baron"),
        "rift_herald_kills": kills("riftHerald"),
        "first_tower": first("tower"),
        "first_blood": first("champion"),
        "first_dragon": first("dragon"),
        "first_baron": first("baron"),
    }


def convert_riot_match(match: dict[str, Any], region: str) -> dict[str, Any]:
    info = match_info(match)
    snapshot: dict[str, Any] = {
        "match_id": str(((match or {}).get("metadata") or {}).get("matchId") or ""),
        "region": region,
        "saved_at": now_iso(),
        "game_mode": str(info.get("gameMode") or ""),
        "game_duration": game_duration_seconds(match),
        "game_version": str(info.get("gameVersion") or ""),
        "blue_team_win": False,
        "participants": [convert_participant(p) for p in participants(match)],
        "blue_team_objectives": convert_team_objectives({}),
        "red_team_objectives": convert_team_objectives({}),
    }
    for team in as_list(info.get("teams")):
        if as_int(team.get("teamId")) == BLUE_TEAM_ID:
            snapshot["blue_team_win"] = bool(team.get("win"))
            snapshot["blue_team_objectives"] = convert_team_objectives(team)
        else:
            snapshot["red_team_objectives"] = convert_team_objectives(team)
    return snapshot


def create_dashboard_match(match: dict[str, Any], dashboard_id: str, region: str) -> dict[str, Any]:
    snapshot = convert_riot_match(match, region)
    snapshot["dashboard_id"] = dashboard_id
    snapshot["riot_match"] = match
    return snapshot


class DashboardStore:
    """One JSON file per dashboard under ``base_path``."""

    def __init__(self, base_path: str | Path):
        self.base_path = Path(base_path)
        self._lock = threading.RLock()

    def dashboard_path(self, dashboard_id: str) -> Path:
        return self.base_path / f"{dashboard_id}.json"

    def load_dashboard(self, dashboard_id: str) -> dict[str, Any]:
        with self._lock:
            path = self.dashboard_path(dashboard_id)
            if not path.exists():
                created = now_iso()
                return {"dashboard_id": dashboard_id, "created_at": created, "updated_at": created, "matches": []}
            data = json.loads(path.read_text(encoding="utf-8"))
            if not isinstance(data, dict):
                raise ValueError(f"dashboard file {path.name} does not hold an object")
            data.setdefault("dashboard_id", dashboard_id)
            data["matches"] = as_list(data.get("matches"))
            return data

    def save_dashboard(self, dashboard: dict[str, Any]) -> None:
        with self._lock:
            dashboard["updated_at"] = now_iso()
            self.base_path.mkdir(parents=True, exist_ok=True)
            path = self.dashboard_path(dashboard["dashboard_id"])
            tmp_path = path.with_name(path.name + ".tmp")
            try:
                tmp_path.write_text(json.dumps(dashboard, indent=2), encoding="utf-8")
                os.replace(tmp_path, path)
            except OSError:
                tmp_path.unlink(missing_ok=True)
                raise

    def add_match(self, dashboard_id: str, match: dict[str, Any]) -> dict[str, Any]:
        with self._lock:
            dashboard = self.load_dashboard(dashboard_id)
            matches = dashboard["matches"]
            for index, existing in enumerate(matches):
                if (existing or {}).get("match_id") == match.get("match_id"):
                    matches[index] = match
                    break
            else:
                matches.append(match)
            self.save_dashboard(dashboard)
            logger.info("Saved match %s to dashboard %s (%d matches)", match.get("match_id"), dashboard_id, len(matches))
            return dashboard

    def list_dashboards(self) -> list[str]:
        with self._lock:
            if not self.base_path.is_dir():
                return []
            return sorted(path.stem for path in self.base_path.glob("*.json") if path.is_file())

    def summaries(self) -> list[dict[str, Any]]:
        out: list[dict[str, Any]] = []
        for dashboard_id in self.list_dashboards():
            try:
                data = self.load_dashboard(dashboard_id)
            except (OSError, ValueError) as error:
                logger.warning("Skipping unreadable dashboard %s: %s", dashboard_id, error)
                continue
            out.append({"id": dashboard_id, "match_count": len(data["matches"]), "last_updated": data.get("updated_at")})
        return out
