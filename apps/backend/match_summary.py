from __future__ import annotations

from dataclasses import dataclass
from typing import Any

BLUE_TEAM_ID = 100
RED_TEAM_ID = 200
TARGET_MARKER = " [TARGET FOR DEEP DIVE]"
ITEM_SLOTS = ("item0", "item1", "item2", "item3", "item4", "item5", "item6")

ANALYSIS_SYSTEM_PROMPT = """You are an expert League of Legends coach and analyst. Your task is to analyze match data and provide:
1. A comprehensive analysis of the match, highlighting key moments, strengths, and weaknesses
2. Specific, actionable suggestions for improvement
3. Coaching tips for future matches

Focus on practical advice that can help players improve their gameplay. Consider factors like:
- Team composition and synergy
- Objective control (dragons, barons, towers)
- Individual performance (K/D/A, CS, gold, damage)
- Game timing and decision-making
- Vision control and map awareness"""

DEEP_DIVE_SYSTEM_PROMPT = """You are an expert League of Legends coach specializing in detailed champion performance analysis.
Your task is to provide a comprehensive, in-depth analysis of a specific player's performance in a match.
Focus on:
- Champion-specific mechanics and execution
- Decision-making patterns throughout the game
- Itemization choices and build path effectiveness
- Positioning and map awareness
- Team fight participation and impact
- Farming patterns and resource management
- Vision control and warding patterns
- Comparison with expected performance for that champion/role
- Specific areas for improvement with actionable advice"""


@dataclass
class DeepDiveTarget:
    champion_filter: str
    summoner_filter: str
    label: str
    mode: str

    @property
    def has_filter(self) -> bool:
        return bool(self.champion_filter or self.summoner_filter)


def as_list(value: Any) -> list[Any]:
    return value if isinstance(value, list) else []


def as_int(value: Any) -> int:
    try:
        return int(value or 0)
    except (TypeError, ValueError):
        return 0


def yes_no(value: Any) -> str:
    return "Yes" if value else "No"


def match_info(match: dict[str, Any] | None) -> dict[str, Any]:
    return (match or {}).get("info") or {}


def participants(match: dict[str, Any] | None) -> list[dict[str, Any]]:
    return [p for p in as_list(match_info(match).get("participants")) if isinstance(p, dict)]


def game_duration_seconds(match: dict[str, Any] | None) -> int:
    info = match_info(match)
    duration = as_int(info.get("gameDuration"))
    # Pre-11.20 payloads report milliseconds and carry no gameEndTimestamp.
    if not info.get("gameEndTimestamp") and duration > 36000:
        return duration // 1000
    return duration


def per_minute(value: int | float, duration_seconds: int | float) -> float:
    minutes = float(duration_seconds) / 60.0
    if minutes <= 0:
        return 0.0
    return float(value) / minutes


def team_name(team_id: Any) -> str:
    return "Red" if as_int(team_id) == RED_TEAM_ID else "Blue"


def result_label(win: Any) -> str:
    return "Won" if win else "Lost"


def display_name(participant: dict[str, Any] | None) -> str:
    participant = participant or {}
    for key in ("summonerName", "riotIdGameName"):
        value = str(participant.get(key) or "").strip()
        if value:
            return value
    return "Unknown"


def riot_id(participant: dict[str, Any]) -> str:
    game_name = str(participant.get("riotIdGameName") or participant.get("riotIdName") or "").strip()
    tag_line = str(participant.get("riotIdTagline") or "").strip()
    if game_name and tag_line:
        return f"{game_name}#{tag_line}"
    return game_name


def matches_filter(participant: dict[str, Any], champion_filter: str = "", summoner_filter: str = "") -> bool:
    champion = champion_filter.strip().lower()
    if champion and str(participant.get("championName") or "").lower() == champion:
        return True
    summoner = summoner_filter.strip().lower()
    if not summoner:
        return False
    candidates = {
        str(participant.get("summonerName") or "").lower(),
        str(participant.get("riotIdGameName") or "").lower(),
        riot_id(participant).lower(),
    }
    candidates.discard("")
    return summoner in candidates


def find_target(match: dict[str, Any] | None, champion_filter: str = "", summoner_filter: str = "") -> dict[str, Any] | None:
    """Last participant matching either filter, mirroring how the summary marks it."""
    if not champion_filter.strip() and not summoner_filter.strip():
        return None
    target = None
    for participant in participants(match):
        if matches_filter(participant, champion_filter, summoner_filter):
            target = participant
    return target


def format_match_for_analysis(match: dict[str, Any] | None, champion_filter: str = "", summoner_filter: str = "") -> str:
    """Render a match as the plain-text brief handed to the coaching model.

    When a participant matches ``champion_filter`` or ``summoner_filter`` it is
    marked in the roster and three extra sections (detailed stats, opponent
    composition, item build) are appended for it.
    """
    if not match:
        return ""

    info = match_info(match)
    duration = game_duration_seconds(match)
    lines = [
        f"Match ID: {((match.get('metadata') or {}).get('matchId')) or ''}",
        f"Game Mode: {info.get('gameMode') or ''}",
        f"Game Duration: {duration} seconds ({duration / 60.0:.2f} minutes)",
        f"Game Version: {info.get('gameVersion') or ''}",
        "",
        "Teams:",
    ]
    for team in as_list(info.get("teams")):
        objectives = team.get("objectives") or {}
        lines.append(
            f"- Team {team_name(team.get('teamId'))} ({result_label(team.get('win'))}): "
            f"{as_int((objectives.get('tower') or {}).get('kills'))} turrets destroyed, "
            f"{as_int((objectives.get('dragon') or {}).get('kills'))} dragons, "
            f"{as_int((objectives.get('baron') or {}).get('kills'))} barons"
        )

    lines.extend(["", "Participants:"])
    target = None
    has_filter = bool(champion_filter.strip() or summoner_filter.strip())
    for participant in participants(match):
        is_target = has_filter and matches_filter(participant, champion_filter, summoner_filter)
        if is_target:
            target = participant
        lines.append(
            f"- {display_name(participant)} ({participant.get('championName') or ''}, "
            f"{team_name(participant.get('teamId'))}, {result_label(participant.get('win'))})"
            f"{TARGET_MARKER if is_target else ''}: "
            f"K/D/A: {as_int(participant.get('kills'))}/{as_int(participant.get('deaths'))}/{as_int(participant.get('assists'))}, "
            f"CS: {as_int(participant.get('totalMinionsKilled'))}, "
            f"Gold: {as_int(participant.get('goldEarned'))}, "
            f"Damage: {as_int(participant.get('totalDamageDealtToChampions'))}"
        )

    summary = "\n".join(lines) + "\n"
    if target is not None:
        summary += "\n=== DETAILED STATS FOR TARGET PLAYER ===\n"
        summary += format_participant_deep_dive(target, duration)
        summary += "\n=== OPPONENT COMPOSITION ===\n"
        summary += format_opponent_composition(match, target)
        summary += "\n=== ITEM BUILD TIMELINE ===\n"
        summary += format_item_build_timeline(target, duration)
    return summary


def format_opponent_composition(match: dict[str, Any] | None, target: dict[str, Any]) -> str:
    target_team = as_int(target.get("teamId"))
    ally_team = team_name(target_team)
    opponent_team = "Blue" if ally_team == "Red" else "Red"
    position = str(target.get("teamPosition") or "")

    lines = [f"Your Team ({ally_team}):"]
    for participant in participants(match):
        if as_int(participant.get("teamId")) == target_team:
            lines.append(f"- {display_name(participant)} ({participant.get('championName') or ''}) - {participant.get('teamPosition') or ''}")

    lines.extend(["", f"Opponent Team ({opponent_team}):"])
    for participant in participants(match):
        if as_int(participant.get("teamId")) == target_team:
            continue
        lines.append(f"- {display_name(participant)} ({participant.get('championName') or ''}) - {participant.get('teamPosition') or ''}")
        if position and participant.get("teamPosition") == position:
            lines.append(f"  -> LANE OPPONENT: {target.get('championName') or ''} vs {participant.get('championName') or ''}")
            lines.append(
                f"     Result: {as_int(target.get('kills'))}/{as_int(target.get('deaths'))}/{as_int(target.get('assists'))} (You) "
                f"vs {as_int(participant.get('kills'))}/{as_int(participant.get('deaths'))}/{as_int(participant.get('assists'))} (Opponent)"
            )
            lines.append(f"     CS: {as_int(target.get('totalMinionsKilled'))} (You) vs {as_int(participant.get('totalMinionsKilled'))} (Opponent)")
            lines.append(f"     Gold: {as_int(target.get('goldEarned'))} (You) vs {as_int(participant.get('goldEarned'))} (Opponent)")
    return "\n".join(lines) + "\n"


def format_item_build_timeline(participant: dict[str, Any], duration_seconds: int) -> str:
    lines = [f"Total Items Purchased: {as_int(participant.get('itemsPurchased'))}", "Final Build:"]
    for slot, key in enumerate(ITEM_SLOTS):
        item_id = as_int(participant.get(key))
        if not item_id:
            continue
        if slot == 6:
            lines.append(f"- Trinket: Item ID {item_id} (Trinket)")
        else:
            lines.append(f"- Item {slot + 1}: Item ID {item_id}")
    lines.append("")
    lines.append(f"Gold Income: {per_minute(as_int(participant.get('goldEarned')), duration_seconds):.0f} gold/minute")
    lines.append("Note: Exact item purchase times require timeline data from Riot API match timeline endpoint")
    return "\n".join(lines) + "\n"


def format_participant_deep_dive(participant: dict[str, Any] | None, duration_seconds: int) -> str:
    if not participant:
        return ""
    p = participant
    kills, deaths, assists = as_int(p.get("kills")), as_int(p.get("deaths")), as_int(p.get("assists"))
    cs = as_int(p.get("totalMinionsKilled"))
    gold = as_int(p.get("goldEarned"))

    lines = [
        f"Summoner: {display_name(p)} ({riot_id(p) or 'no Riot ID'})",
        f"Champion: {p.get('championName') or ''} (Level {as_int(p.get('champLevel'))})",
        f"Team Position: {p.get('teamPosition') or ''} (Lane: {p.get('lane') or ''}, Role: {p.get('role') or ''})",
        f"Result: {'Victory' if p.get('win') else 'Defeat'}",
        "",
        "Performance Metrics:",
        f"- K/D/A: {kills}/{deaths}/{assists} (KDA Ratio: {(kills + assists) / max(deaths, 1):.2f})",
        f"- CS: {cs} ({per_minute(cs, duration_seconds):.1f} CS/min)",
        f"- Gold Earned: {gold} (Gold/min: {per_minute(gold, duration_seconds):.0f})",
        f"- Gold Spent: {as_int(p.get('goldSpent'))}",
        "",
        "Combat Stats:",
        f"- Total Damage to Champions: {as_int(p.get('totalDamageDealtToChampions'))}",
        f"- Physical Damage: {as_int(p.get('physicalDamageDealtToChampions'))}",
        f"- Magic Damage: {as_int(p.get('magicDamageDealtToChampions'))}",
        f"- True Damage: {as_int(p.get('trueDamageDealtToChampions'))}",
        f"- Damage Taken: {as_int(p.get('totalDamageTaken'))}",
        f"- Damage Self Mitigated: {as_int(p.get('damageSelfMitigated'))}",
        f"- Total Heal: {as_int(p.get('totalHeal'))}",
        f"- Total Shields on Teammates: {as_int(p.get('totalDamageShieldedOnTeammates'))}",
        "",
        "Objective Control:",
        f"- Turret Kills: {as_int(p.get('turretKills'))}",
        f"- Inhibitor Kills: {as_int(p.get('inhibitorKills'))}",
        f"- Dragon Kills: {as_int(p.get('dragonKills'))}",
        f"- Baron Kills: {as_int(p.get('baronKills'))}",
        f"- First Blood: {yes_no(p.get('firstBloodKill'))}",
        f"- First Tower: {yes_no(p.get('firstTowerKill'))}",
        "",
        "Vision & Map Control:",
        f"- Vision Score: {as_int(p.get('visionScore'))}",
        f"- Wards Placed: {as_int(p.get('wardsPlaced'))}",
        f"- Wards Killed: {as_int(p.get('wardsKilled'))}",
        f"- Control Wards Purchased: {as_int(p.get('visionWardsBoughtInGame'))}",
        f"- Detector Wards Placed: {as_int(p.get('detectorWardsPlaced'))}",
        "",
        "Special Achievements:",
        f"- Largest Killing Spree: {as_int(p.get('largestKillingSpree'))}",
        f"- Killing Sprees: {as_int(p.get('killingSprees'))}",
        f"- Double Kills: {as_int(p.get('doubleKills'))}",
        f"- Triple Kills: {as_int(p.get('tripleKills'))}",
        f"- Quadra Kills: {as_int(p.get('quadraKills'))}",
        f"- Penta Kills: {as_int(p.get('pentaKills'))}",
        f"- Unreal Kills: {as_int(p.get('unrealKills'))}",
        f"- Largest Multi Kill: {as_int(p.get('largestMultiKill'))}",
        "",
        "Item Build:",
    ]
    for slot, key in enumerate(ITEM_SLOTS):
        item_id = as_int(p.get(key))
        if item_id:
            lines.append(f"- {'Trinket' if slot == 6 else 'Item'} {slot + 1}: {item_id}")
    lines.extend(
        [
            f"- Total Items Purchased: {as_int(p.get('itemsPurchased'))}",
            "",
            "Summoner Spells:",
            f"- Summoner Spell 1 (ID {as_int(p.get('summoner1Id'))}): Used {as_int(p.get('summoner1Casts'))} times",
            f"- Summoner Spell 2 (ID {as_int(p.get('summoner2Id'))}): Used {as_int(p.get('summoner2Casts'))} times",
            "",
            "Game Impact:",
            f"- Time Spent Dead: {as_int(p.get('totalTimeSpentDead'))} seconds",
            f"- Longest Time Spent Living: {as_int(p.get('longestTimeSpentLiving'))} seconds",
            f"- Time CC'd Others: {as_int(p.get('timeCCingOthers'))} seconds",
            f"- Total Time CC'd: {as_int(p.get('totalTimeCCDealt'))} seconds",
        ]
    )
    return "\n".join(lines) + "\n"


def impact_score(participant: dict[str, Any]) -> float:
    p = participant
    objectives = as_int(p.get("turretKills")) + as_int(p.get("dragonKills")) + as_int(p.get("baronKills"))
    return (
        3 * as_int(p.get("kills"))
        + 2 * as_int(p.get("assists"))
        - 2 * as_int(p.get("deaths"))
        + as_int(p.get("totalDamageDealtToChampions")) / 1000.0
        + as_int(p.get("visionScore")) / 10.0
        + 2 * objectives
    )


def select_default_participant(match: dict[str, Any] | None) -> dict[str, Any] | None:
    best = None
    best_score = None
    for participant in participants(match):
        score = impact_score(participant)
        if best_score is None or score > best_score:
            best, best_score = participant, score
    return best


def resolve_deep_dive_target(match: dict[str, Any] | None, champion_filter: str = "", summoner_filter: str = "") -> DeepDiveTarget:
    champion_filter = (champion_filter or "").strip()
    summoner_filter = (summoner_filter or "").strip()
    if champion_filter or summoner_filter:
        return DeepDiveTarget(champion_filter, summoner_filter, summoner_filter or champion_filter, "requested")

    target = select_default_participant(match)
    if target is None:
        return DeepDiveTarget("", "", "Match Overview", "match")

    name = display_name(target)
    champion = str(target.get("championName") or "").strip()
    label = f"{name} ({champion})"
    if not (str(target.get("summonerName") or "").strip() or str(target.get("riotIdGameName") or "").strip()):
        # nameless participant, "Unknown" would match nobody
        return DeepDiveTarget(champion, "", label, "auto")
    return DeepDiveTarget("", name, label, "auto")


def compose_match_summary(match: dict[str, Any] | None, target: DeepDiveTarget) -> str:
    summary = format_match_for_analysis(match, target.champion_filter, target.summoner_filter)
    if target.mode == "auto" and target.label:
        summary = f"AUTO-SELECTED DEEP DIVE TARGET: {target.label} (based on match impact)\n\n{summary}"
    return summary


def normalize_focus_areas(value: Any) -> list[str]:
    if isinstance(value, str):
        tokens = value.split(",")
    else:
        tokens = [str(token) for token in as_list(value) if token is not None]
    out: list[str] = []
    for token in tokens:
        cleaned = token.strip()
        if cleaned and cleaned not in out:
            out.append(cleaned)
    return out


def build_analysis_prompt(summary: str, focus_areas: list[str] | None = None) -> str:
    prompt = (
        "Please analyze this League of Legends match data and provide detailed coaching advice:\n\n"
        f"{summary}\n\n"
        "Provide your analysis, suggestions, and coaching tips."
    )
    if focus_areas:
        prompt += f"\n\nPay particular attention to these focus areas: {', '.join(focus_areas)}."
    return prompt


def build_deep_dive_prompt(summary: str, target_name: str) -> str:
    return (
        'Please provide a detailed deep dive analysis for the player/champion marked as "[TARGET FOR DEEP DIVE]" '
        "in the following match data:\n\n"
        f"{summary}\n\n"
        f"Focus specifically on {target_name}'s performance. Provide insights on:\n"
        "1. What they did well\n"
        "2. Critical mistakes or missed opportunities\n"
        "3. Champion-specific mechanics and combos\n"
        "4. Item build analysis\n"
        "5. Specific coaching points for improvement\n"
        "6. Role-specific recommendations"
    )


def stat(label: str, value: Any, context: str | None = None) -> dict[str, Any]:
    row: dict[str, Any] = {"label": label, "value": str(value)}
    if context:
        row["context"] = context
    return row


def build_key_statistics(match: dict[str, Any] | None, target: dict[str, Any] | None = None) -> dict[str, list[dict[str, Any]]]:
    duration = game_duration_seconds(match)
    if target is None:
        teams = as_list(match_info(match).get("teams"))
        combat, objectives, economy, vision = [], [], [], []
        for team in teams:
            name = team_name(team.get("teamId"))
            members = [p for p in participants(match) if as_int(p.get("teamId")) == as_int(team.get("teamId"))]
            team_objectives = team.get("objectives") or {}
            combat.append(stat(f"{name} kills", sum(as_int(p.get("kills")) for p in members), result_label(team.get("win"))))
            objectives.append(
                stat(
                    f"{name} objectives",
                    f"{as_int((team_objectives.get('tower') or {}).get('kills'))} towers / "
                    f"{as_int((team_objectives.get('dragon') or {}).get('kills'))} dragons / "
                    f"{as_int((team_objectives.get('baron') or {}).get('kills'))} barons",
                )
            )
            economy.append(stat(f"{name} gold", sum(as_int(p.get("goldEarned")) for p in members)))
            vision.append(stat(f"{name} vision score", sum(as_int(p.get("visionScore")) for p in members)))
        return {"combat": combat, "objectives": objectives, "economy": economy, "vision": vision}

    team_id = as_int(target.get("teamId"))
    team_kills = sum(as_int(p.get("kills")) for p in participants(match) if as_int(p.get("teamId")) == team_id)
    team_damage = sum(as_int(p.get("totalDamageDealtToChampions")) for p in participants(match) if as_int(p.get("teamId")) == team_id)
    kills, deaths, assists = as_int(target.get("kills")), as_int(target.get("deaths")), as_int(target.get("assists"))
    damage = as_int(target.get("totalDamageDealtToChampions"))
    cs = as_int(target.get("totalMinionsKilled")) + as_int(target.get("neutralMinionsKilled"))

    combat = [
        stat("K/D/A", f"{kills}/{deaths}/{assists}", f"KDA {(kills + assists) / max(deaths, 1):.2f}"),
        stat("Damage to champions", damage, f"{100.0 * damage / team_damage:.1f}% of team" if team_damage else None),
    ]
    if team_kills:
        combat.append(stat("Kill participation", f"{100.0 * (kills + assists) / team_kills:.1f}%"))
    objectives = [
        stat("Turret kills", as_int(target.get("turretKills"))),
        stat("Dragon kills", as_int(target.get("dragonKills"))),
        stat("Baron kills", as_int(target.get("baronKills"))),
        stat("First blood", yes_no(target.get("firstBloodKill"))),
    ]
    economy = [
        stat("Gold earned", as_int(target.get("goldEarned")), f"{per_minute(as_int(target.get('goldEarned')), duration):.0f}/min"),
        stat("CS", cs, f"{per_minute(cs, duration):.1f}/min"),
    ]
    vision = [
        stat("Vision score", as_int(target.get("visionScore")), f"{per_minute(as_int(target.get('visionScore')), duration):.2f}/min"),
        stat("Wards placed", as_int(target.get("wardsPlaced"))),
        stat("Wards killed", as_int(target.get("wardsKilled"))),
    ]
    return {"combat": combat, "objectives": objectives, "economy": economy, "vision": vision}
