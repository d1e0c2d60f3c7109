from __future__ import annotations

import json
from typing import Any

import httpx
import pytest


def participant(name: str, champion: str, team_id: int, position: str, kda: tuple[int, int, int], cs: int, gold: int, damage: int, **extra: Any) -> dict[str, Any]:
    kills, deaths, assists = kda
    row = {
        "summonerName": name,
        "riotIdGameName": name,
        "riotIdTagline": "NA1",
        "championName": champion,
        "teamId": team_id,
        "teamPosition": position,
        "lane": position,
        "role": "SOLO",
        "win": team_id == 100,
        "kills": kills,
        "deaths": deaths,
        "assists": assists,
        "totalMinionsKilled": cs,
        "neutralMinionsKilled": 0,
        "goldEarned": gold,
        "goldSpent": gold - 500,
        "totalDamageDealtToChampions": damage,
        "visionScore": 20,
        "wardsPlaced": 10,
        "wardsKilled": 3,
        "champLevel": 16,
        "itemsPurchased": 20,
        "item0": 3031,
        "item1": 0,
        "item6": 3340,
        "summoner1Id": 4,
        "summoner1Casts": 5,
        "summoner2Id": 14,
        "summoner2Casts": 3,
    }
    row.update(extra)
    return row


def build_match() -> dict[str, Any]:
    return {
        "metadata": {"matchId": "NA1_5000000001", "participants": []},
        "info": {
            "gameMode": "CLASSIC",
            "gameDuration": 1800,
            "gameEndTimestamp": 1700001800000,
            "gameVersion": "14.3.558.1234",
            "teams": [
                {
                    "teamId": 100,
                    "win": True,
                    "objectives": {
                        "tower": {"first": True, "kills": 9},
                        "dragon": {"first": True, "kills": 3},
                        "baron": {"first": True, "kills": 1},
                        "champion": {"first": True, "kills": 24},
                        "inhibitor": {"first": True, "kills": 2},
                        "riftHerald": {"first": False, "kills": 1},
                    },
                },
                {
                    "teamId": 200,
                    "win": False,
                    "objectives": {
                        "tower": {"first": False, "kills": 3},
                        "dragon": {"first": False, "kills": 1},
                        "baron": {"first": False, "kills": 0},
                    },
                },
            ],
            "participants": [
                participant("BlueTop", "Garen", 100, "TOP", (2, 3, 4), 180, 10000, 15000),
                participant("BlueJungle", "LeeSin", 100, "JUNGLE", (5, 2, 8), 40, 11000, 14000, dragonKills=3),
                participant("BlueMid", "Ahri", 100, "MIDDLE", (10, 1, 6), 220, 14000, 30000, turretKills=2, firstBloodKill=True),
                participant("BlueBot", "Jinx", 100, "BOTTOM", (6, 4, 5), 240, 13000, 22000),
                participant("BlueSupport", "Thresh", 100, "UTILITY", (1, 5, 15), 30, 8000, 6000),
                participant("RedTop", "Darius", 200, "TOP", (3, 4, 1), 170, 9500, 13000),
                participant("RedJungle", "Vi", 200, "JUNGLE", (2, 6, 3), 35, 8500, 9000),
                participant("RedMid", "Zed", 200, "MIDDLE", (4, 7, 2), 190, 9000, 16000),
                participant("RedBot", "Caitlyn", 200, "BOTTOM", (2, 5, 3), 210, 9800, 15000),
                participant("", "Lulu", 200, "UTILITY", (0, 2, 6), 25, 6000, 5000, riotIdGameName="RedSupport"),
            ],
        },
    }


def openai_message(arguments: dict[str, Any] | None = None, content: str = "") -> dict[str, Any]:
    message: dict[str, Any] = {"role": "assistant", "content": content}
    if arguments is not None:
        message["tool_calls"] = [
            {"id": "call_1", "type": "function", "function": {"name": "analyze_match", "arguments": json.dumps(arguments)}}
        ]
    return {"choices": [{"index": 0, "message": message}]}


ANALYSIS_ARGUMENTS = {
    "analysis": "Blue side snowballed mid lane into early dragons.",
    "suggestions": ["Ward the river before dragon spawns"],
    "coaching_tips": ["Track the enemy jungler's first clear"],
    "structured_insights": {
        "what_went_well": [{"title": "Early First Blood", "description": "Ahri killed Zed at 3:10", "impact": "Lane priority", "data": ["1/0 at 5:00"], "category": "combat"}],
    },
}


class FakeUpstreams:
    """Serves canned Riot and OpenAI responses and records every request."""

    def __init__(self) -> None:
        self.match = build_match()
        self.riot_status = 200
        self.openai_status = 200
        self.deep_dive_status = 200
        self.requests: list[httpx.Request] = []

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if request.url.host.endswith("api.riotgames.com"):
            if self.riot_status != 200:
                return httpx.Response(self.riot_status, json={"status": {"message": "Data not found", "status_code": self.riot_status}})
            return httpx.Response(200, json=self.match)
        body = json.loads(request.content)
        if "tools" in body:
            if self.openai_status != 200:
                return httpx.Response(self.openai_status, json={"error": {"message": "boom"}})
            return httpx.Response(200, json=openai_message(ANALYSIS_ARGUMENTS))
        if self.deep_dive_status != 200:
            return httpx.Response(self.deep_dive_status, json={"error": {"message": "rate limited"}})
        return httpx.Response(200, json=openai_message(content="Ahri played the lane perfectly."))

    def riot_requests(self) -> list[httpx.Request]:
        return [r for r in self.requests if r.url.host.endswith("api.riotgames.com")]

    def openai_bodies(self) -> list[dict[str, Any]]:
        return [json.loads(r.content) for r in self.requests if r.url.host == "api.openai.com"]


@pytest.fixture
def match_payload() -> dict[str, Any]:
    return build_match()


@pytest.fixture
def upstreams() -> FakeUpstreams:
    return FakeUpstreams()


@pytest.fixture
def client(monkeypatch, tmp_path, upstreams):
    from fastapi.testclient import TestClient

    import main
    from dashboard_store import DashboardStore
    from request_analytics import RequestTracker

    monkeypatch.setattr(main, "RIOT_API_KEY", "riot-test-key")
    monkeypatch.setattr(main, "OPENAI_API_KEY", "openai-test-key")
    monkeypatch.setattr(main, "OPENAI_BASE_URL", "https://api.openai.com/v1")
    monkeypatch.setattr(main, "ANALYTICS_KEY", "")
    monkeypatch.setattr(main, "ALLOWED_ORIGINS", [])
    monkeypatch.setattr(main, "FRONTEND_DIR", tmp_path / "frontend")
    monkeypatch.setattr(main, "http_client", httpx.AsyncClient(transport=httpx.MockTransport(upstreams.handler)))
    monkeypatch.setattr(main, "analytics_tracker", RequestTracker(tmp_path / "analytics.json"))
    monkeypatch.setattr(main, "dashboard_store", DashboardStore(tmp_path / "dashboards"))
    return TestClient(main.app)
