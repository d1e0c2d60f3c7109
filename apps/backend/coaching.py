from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Any

import httpx

from match_summary import (
    ANALYSIS_SYSTEM_PROMPT,
    DEEP_DIVE_SYSTEM_PROMPT,
    as_list,
    build_analysis_prompt,
    build_deep_dive_prompt,
)

logger = logging.getLogger(__name__)

FALLBACK_SUGGESTIONS = ["Review the detailed analysis above for specific suggestions"]
FALLBACK_TIPS = ["Focus on the key areas mentioned in the analysis"]

_SPECIFIC_EVENT = {
    "type": "object",
    "properties": {
        "title": {"type": "string"},
        "description": {"type": "string"},
        "impact": {"type": "string"},
        "data": {"type": "array", "items": {"type": "string"}},
        "category": {"type": "string", "description": "objective, combat, vision, farming, ..."},
    },
}

_CRITICAL_MOMENT = {
    "type": "object",
    "properties": {
        "title": {"type": "string"},
        "description": {"type": "string"},
        "outcome": {"type": "string"},
        "impact": {"type": "string"},
        "data": {"type": "array", "items": {"type": "string"}},
    },
}

ANALYZE_MATCH_FUNCTION: dict[str, Any] = {
    "name": "analyze_match",
    "description": "Analyzes a League of Legends match and provides detailed coaching advice, suggestions, and tips",
    "parameters": {
        "type": "object",
        "properties": {
            "analysis": {
                "type": "string",
                "description": "A comprehensive analysis of the match performance, key moments, and overall game flow",
            },
            "suggestions": {
                "type": "array",
                "description": "List of actionable suggestions for improvement based on match data",
                "items": {"type": "string"},
            },
            "coaching_tips": {
                "type": "array",
                "description": "List of coaching tips and strategies for future matches",
                "items": {"type": "string"},
            },
            "structured_insights": {
                "type": "object",
                "description": "Concrete, data-backed insights tied to events in this match",
                "properties": {
                    "what_went_well": {"type": "array", "items": _SPECIFIC_EVENT},
                    "what_went_wrong": {"type": "array", "items": _SPECIFIC_EVENT},
                    "critical_moments": {"type": "array", "items": _CRITICAL_MOMENT},
                    "item_analysis": {
                        "type": "object",
                        "properties": {
                            "build_path": {
                                "type": "array",
                                "items": {
                                    "type": "object",
                                    "properties": {
                                        "item_id": {"type": "integer"},
                                        "item_name": {"type": "string"},
                                        "time_bought": {"type": "string"},
                                        "context": {"type": "string"},
                                    },
                                },
                            },
                            "timing_analysis": {"type": "string"},
                            "opponent_matchup": {"type": "string"},
                            "recommendations": {"type": "array", "items": {"type": "string"}},
                        },
                    },
                    "matchup_analysis": {
                        "type": "object",
                        "properties": {
                            "lane_matchup": {"type": "string"},
                            "team_composition": {"type": "string"},
                            "synergies": {"type": "array", "items": {"type": "string"}},
                            "counters": {"type": "array", "items": {"type": "string"}},
                            "win_conditions": {"type": "array", "items": {"type": "string"}},
                        },
                    },
                },
            },
        },
        "required": ["analysis", "suggestions", "coaching_tips"],
    },
}


@dataclass
class CoachingSettings:
    api_key: str
    model: str = "gpt-4o-mini"
    base_url: str = "https://api.openai.com/v1"
    timeout_seconds: float = 60.0


def build_chat_request(
    model: str,
    system_prompt: str,
    user_prompt: str,
    function: dict[str, Any] | None = None,
    temperature: float = 0.7,
) -> dict[str, Any]:
    body: dict[str, Any] = {
        "model": model,
        "messages": [
            {"role": "system", "content": system_prompt},
            {"role": "user", "content": user_prompt},
        ],
        "temperature": temperature,
    }
    if function:
        body["tools"] = [{"type": "function", "function": function}]
        body["tool_choice"] = {"type": "function", "function": {"name": function["name"]}}
    return body


def string_list(value: Any) -> list[str]:
    return [item if isinstance(item, str) else "" for item in as_list(value)]


def extract_from_content(content: Any) -> dict[str, Any]:
    return {
        "analysis": str(content or ""),
        "suggestions": list(FALLBACK_SUGGESTIONS),
        "coaching_tips": list(FALLBACK_TIPS),
    }


def function_arguments(message: dict[str, Any]) -> str:
    for call in as_list(message.get("tool_calls")):
        arguments = ((call or {}).get("function") or {}).get("arguments")
        if arguments:
            return str(arguments)
    legacy = message.get("function_call") or {}
    return str(legacy.get("arguments") or "")


def parse_analysis_choice(message: dict[str, Any] | None) -> dict[str, Any]:
    """Turn the assistant message of a forced function call into a response fragment.

    Falls back to treating the plain content as the analysis when the model
    did not return usable function arguments.
    """
    message = message or {}
    raw_arguments = function_arguments(message)
    if not raw_arguments:
        return extract_from_content(message.get("content"))
    try:
        arguments = json.loads(raw_arguments)
    except json.JSONDecodeError:
        logger.warning("Could not decode analyze_match arguments, using message content instead")
        return extract_from_content(message.get("content"))
    if not isinstance(arguments, dict):
        return extract_from_content(message.get("content"))

    result: dict[str, Any] = {
        "analysis": arguments.get("analysis") if isinstance(arguments.get("analysis"), str) else "",
        "suggestions": string_list(arguments.get("suggestions")),
        "coaching_tips": string_list(arguments.get("coaching_tips")),
    }
    if isinstance(arguments.get("structured_insights"), dict):
        result["structured_insights"] = arguments["structured_insights"]
    return result


async def chat_completion(http_client: httpx.AsyncClient, settings: CoachingSettings, body: dict[str, Any]) -> dict[str, Any]:
    if not settings.api_key:
        raise RuntimeError("OPENAI_API_KEY is missing on the server. Add it to your .env file.")
    response = await http_client.post(
        f"{settings.base_url.rstrip('/')}/chat/completions",
        headers={"Authorization": f"Bearer {settings.api_key}", "Content-Type": "application/json"},
        content=json.dumps(body),
        timeout=settings.timeout_seconds,
    )
    if response.status_code >= 400:
        error = RuntimeError(f"OpenAI request failed ({response.status_code}).")
        setattr(error, "status", response.status_code)
        setattr(error, "body", response.text)
        setattr(error, "retry_after", response.headers.get("Retry-After"))
        raise error
    payload = response.json()
    if not isinstance(payload, dict):
        raise RuntimeError("OpenAI returned an unexpected response body.")
    choices = as_list(payload.get("choices"))
    if not choices:
        raise RuntimeError("no choices in response")
    return (choices[0] or {}).get("message") or {}


async def analyze_deep_dive(
    http_client: httpx.AsyncClient,
    settings: CoachingSettings,
    match_summary: str,
    champion_filter: str = "",
    summoner_filter: str = "",
) -> str:
    target_name = summoner_filter or champion_filter
    body = build_chat_request(settings.model, DEEP_DIVE_SYSTEM_PROMPT, build_deep_dive_prompt(match_summary, target_name))
    message = await chat_completion(http_client, settings, body)
    return str(message.get("content") or "")


async def analyze_match(
    http_client: httpx.AsyncClient,
    settings: CoachingSettings,
    match_summary: str,
    champion_filter: str = "",
    summoner_filter: str = "",
    focus_areas: list[str] | None = None,
) -> dict[str, Any]:
    body = build_chat_request(
        settings.model,
        ANALYSIS_SYSTEM_PROMPT,
        build_analysis_prompt(match_summary, focus_areas),
        function=ANALYZE_MATCH_FUNCTION,
    )
    message = await chat_completion(http_client, settings, body)
    result = parse_analysis_choice(message)

    if champion_filter or summoner_filter:
        try:
            result["champion_deep_dive"] = await analyze_deep_dive(http_client, settings, match_summary, champion_filter, summoner_filter)
        except (httpx.HTTPError, RuntimeError, ValueError) as error:
            logger.warning("Deep dive analysis failed: %s", error)
            result["champion_deep_dive"] = f"Failed to generate deep dive analysis: {error}"
    return result
