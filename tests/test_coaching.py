import asyncio
import json

import httpx
import pytest

from coaching import (
    ANALYZE_MATCH_FUNCTION,
    FALLBACK_SUGGESTIONS,
    CoachingSettings,
    analyze_match,
    build_chat_request,
    parse_analysis_choice,
)
from conftest import ANALYSIS_ARGUMENTS, openai_message

SETTINGS = CoachingSettings(api_key="sk-test", model="gpt-4o-mini", base_url="https://api.openai.com/v1", timeout_seconds=5)


def run_analysis(handler, settings=SETTINGS, **kwargs):
    async def go():
        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            return await analyze_match(client, settings, "SUMMARY", **kwargs)

    return asyncio.run(go())


def test_chat_request_forces_function_call():
    body = build_chat_request("gpt-4o-mini", "system", "user", function=ANALYZE_MATCH_FUNCTION)

    assert body["messages"] == [{"role": "system", "content": "system"}, {"role": "user", "content": "user"}]
    assert body["temperature"] == 0.7
    assert body["tools"][0]["function"]["name"] == "analyze_match"
    assert body["tool_choice"] == {"type": "function", "function": {"name": "analyze_match"}}
    assert ANALYZE_MATCH_FUNCTION["parameters"]["required"] == ["analysis", "suggestions", "coaching_tips"]

    plain = build_chat_request("gpt-4o-mini", "system", "user")
    assert "tools" not in plain


def test_parse_tool_call_arguments():
    message = openai_message(ANALYSIS_ARGUMENTS)["choices"][0]["message"]
    parsed = parse_analysis_choice(message)

    assert parsed["analysis"] == ANALYSIS_ARGUMENTS["analysis"]
    assert parsed["suggestions"] == ["Ward the river before dragon spawns"]
    assert parsed["coaching_tips"] == ["Track the enemy jungler's first clear"]
    assert parsed["structured_insights"]["what_went_well"][0]["title"] == "Early First Blood"


def test_parse_legacy_function_call():
    message = {"content": None, "function_call": {"name": "analyze_match", "arguments": json.dumps({"analysis": "ok", "suggestions": ["a", 3], "coaching_tips": []})}}
    parsed = parse_analysis_choice(message)

    assert parsed == {"analysis": "ok", "suggestions": ["a", ""], "coaching_tips": []}


def test_parse_falls_back_to_content():
    broken = {"content": "Free-form review", "tool_calls": [{"function": {"name": "analyze_match", "arguments": "{not json"}}]}
    parsed = parse_analysis_choice(broken)
    assert parsed["analysis"] == "Free-form review"
    assert parsed["suggestions"] == FALLBACK_SUGGESTIONS

    assert parse_analysis_choice({"content": "Only text"})["analysis"] == "Only text"


def test_analyze_match_runs_deep_dive_for_target():
    seen = []

    def handler(request):
        body = json.loads(request.content)
        seen.append(body)
        assert request.headers["Authorization"] == "Bearer sk-test"
        if "tools" in body:
            return httpx.Response(200, json=openai_message(ANALYSIS_ARGUMENTS))
        return httpx.Response(200, json=openai_message(content="Deep dive text"))

    result = run_analysis(handler, summoner_filter="BlueMid", focus_areas=["vision"])

    assert result["analysis"] == ANALYSIS_ARGUMENTS["analysis"]
    assert result["champion_deep_dive"] == "Deep dive text"
    assert len(seen) == 2
    assert "Pay particular attention to these focus areas: vision." in seen[0]["messages"][1]["content"]
    assert "Focus specifically on BlueMid's performance." in seen[1]["messages"][1]["content"]


def test_analyze_match_skips_deep_dive_without_target():
    calls = []

    def handler(request):
        calls.append(request)
        return httpx.Response(200, json=openai_message(ANALYSIS_ARGUMENTS))

    result = run_analysis(handler)
    assert "champion_deep_dive" not in result
    assert len(calls) == 1


def test_deep_dive_failure_is_reported_inline():
    def handler(request):
        if "tools" in json.loads(request.content):
            return httpx.Response(200, json=openai_message(ANALYSIS_ARGUMENTS))
        return httpx.Response(429, json={"error": {"message": "slow down"}})

    result = run_analysis(handler, champion_filter="Ahri")
    assert result["champion_deep_dive"] == "Failed to generate deep dive analysis: OpenAI request failed (429)."
    assert result["suggestions"] == ANALYSIS_ARGUMENTS["suggestions"]


def test_main_call_errors_propagate():
    with pytest.raises(RuntimeError, match="OpenAI request failed \\(500\\)"):
        run_analysis(lambda request: httpx.Response(500, text="down"))

    with pytest.raises(RuntimeError, match="no choices in response"):
        run_analysis(lambda request: httpx.Response(200, json={"choices": []}))


def test_missing_api_key_is_rejected_before_calling():
    def handler(request):
        raise AssertionError("should not be called")

    with pytest.raises(RuntimeError, match="OPENAI_API_KEY is missing"):
        run_analysis(handler, settings=CoachingSettings(api_key=""))


def test_parse_keeps_item_and_matchup_analysis():
    insights = {
        "item_analysis": {"build_path": [{"item_id": 3031, "item_name": "Infinity Edge"}], "timing_analysis": "Late second item"},
        "matchup_analysis": {"lane_matchup": "Ahri into Zed", "win_conditions": ["Group for dragon"]},
    }
    arguments = dict(ANALYSIS_ARGUMENTS, structured_insights=insights)
    parsed = parse_analysis_choice(openai_message(arguments)["choices"][0]["message"])

    assert parsed["structured_insights"] == insights


def test_non_object_reply_is_an_error():
    with pytest.raises(RuntimeError, match="unexpected response body"):
        run_analysis(lambda request: httpx.Response(200, json=["not", "an", "object"]))
