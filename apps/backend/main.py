from __future__ import annotations

import logging
import os
import time
from pathlib import Path
from typing import Any
from urllib.parse import quote

import httpx
from dotenv import load_dotenv
from fastapi import FastAPI, Query, Request
from fastapi.responses import FileResponse, JSONResponse, Response
from fastapi.staticfiles import StaticFiles
from starlette.concurrency import run_in_threadpool
from starlette.middleware.base import BaseHTTPMiddleware

from coaching import CoachingSettings, analyze_match
from dashboard_store import DashboardStore, create_dashboard_match, region_from_match_id, sanitize_dashboard_id
from match_summary import build_key_statistics, compose_match_summary, find_target, normalize_focus_areas, resolve_deep_dive_target
from request_analytics import RequestTracker, build_analytics_report, client_ip

BASE_DIR = Path(__file__).resolve().parent
load_dotenv(BASE_DIR / ".env", override=False)


def env_int(name: str, default: int) -> int:
    try:
        return int(os.getenv(name, str(default)).strip() or default)
    except ValueError:
        return default


LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").strip().upper() or "INFO"
logging.basicConfig(level=LOG_LEVEL, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
logger = logging.getLogger(__name__)

RIOT_API_KEY = os.getenv("RIOT_API_KEY", "").strip()
RIOT_API_REGION = os.getenv("RIOT_API_REGION", "americas").strip().lower() or "americas"
OPENAI_API_KEY = os.getenv("OPENAI_API_KEY", "").strip()
OPENAI_MODEL = os.getenv("OPENAI_MODEL", "gpt-4o-mini").strip() or "gpt-4o-mini"
OPENAI_BASE_URL = os.getenv("OPENAI_BASE_URL", "https://api.openai.com/v1").strip().rstrip("/")
OPENAI_TIMEOUT_MS = max(3000, env_int("OPENAI_TIMEOUT_MS", 60000))
ALLOWED_ORIGINS = [token.strip() for token in os.getenv("ALLOWED_ORIGINS", "").split(",") if token.strip()]
ANALYTICS_ENABLED = os.getenv("ANALYTICS_ENABLED", "1").strip() != "0"
ANALYTICS_DATA_PATH = Path(os.getenv("ANALYTICS_DATA_PATH", str(Path.cwd() / "data" / "analytics.json")))
ANALYTICS_MAX_DAYS = env_int("ANALYTICS_MAX_DAYS", 0)
ANALYTICS_MAX_RECORDS = env_int("ANALYTICS_MAX_RECORDS", 0)
ANALYTICS_KEY = os.getenv("ANALYTICS_KEY", "").strip()
DASHBOARD_DATA_PATH = Path(os.getenv("DASHBOARD_DATA_PATH", str(Path.cwd() / "data" / "dashboards")))
FRONTEND_DIR = Path(os.getenv("FRONTEND_DIR", str(Path.cwd() / "frontend")))

ROUTING_REGIONS = {"americas", "europe", "asia", "sea"}
PLATFORM_TO_ROUTING = {
    "na1": "americas", "br1": "americas", "la1": "americas", "la2": "americas",
    "euw1": "europe", "eun1": "europe", "tr1": "europe", "ru": "europe", "me1": "europe",
    "kr": "asia", "jp1": "asia",
    "oc1": "sea", "ph2": "sea", "sg2": "sea", "th2": "sea", "tw2": "sea", "vn2": "sea",
}
FRONTEND_ASSETS = {"style.css", "script.js", "logo.png"}

http_client = httpx.AsyncClient(timeout=httpx.Timeout(30.0, connect=10.0))
analytics_tracker: RequestTracker | None = (
    RequestTracker(ANALYTICS_DATA_PATH, 100, ANALYTICS_MAX_DAYS, ANALYTICS_MAX_RECORDS) if ANALYTICS_ENABLED else None
)
dashboard_store = DashboardStore(DASHBOARD_DATA_PATH)


def normalize_routing_region(value: Any) -> str:
    token = str(value or "").strip().lower()
    if token in ROUTING_REGIONS:
        return token
    return PLATFORM_TO_ROUTING.get(token, "")


def routing_region_from_match_id(match_id: str) -> str:
    prefix, sep, _ = str(match_id or "").partition("_")
    return normalize_routing_region(prefix) if sep else ""


def resolve_routing_region(match_id: str, region: Any = "") -> str:
    return normalize_routing_region(region) or routing_region_from_match_id(match_id) or RIOT_API_REGION


def coaching_settings() -> CoachingSettings:
    return CoachingSettings(api_key=OPENAI_API_KEY, model=OPENAI_MODEL, base_url=OPENAI_BASE_URL, timeout_seconds=OPENAI_TIMEOUT_MS / 1000.0)


def wants_html(request: Request, browser_default: bool = False) -> bool:
    """True when the caller looks like a browser rather than an API client.

    With ``browser_default`` an empty Accept header, or ``*/*`` without
    ``application/json``, also counts as a browser.
    """
    if request.query_params.get("format") == "json":
        return False
    accept = request.headers.get("accept", "")
    if "text/html" in accept:
        return True
    if not browser_default:
        return False
    return not accept or ("*/*" in accept and "application/json" not in accept)


def frontend_file(name: str) -> Path | None:
    path = (FRONTEND_DIR / name).resolve()
    if FRONTEND_DIR.resolve() not in path.parents or not path.is_file():
        return None
    return path


class CorsAndAnalyticsMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        origin = request.headers.get("origin", "")
        is_allowed = (not origin) or (not ALLOWED_ORIGINS) or (origin in ALLOWED_ORIGINS)
        started = time.perf_counter()

        if request.method == "OPTIONS":
            if not is_allowed:
                return JSONResponse({"error": "Origin not allowed."}, status_code=403)
            response = Response(status_code=204)
            apply_cors_headers(response, origin)
            return response

        if not is_allowed:
            response = JSONResponse({"error": "Origin not allowed."}, status_code=403)
        else:
            response = await call_next(request)
            apply_cors_headers(response, origin)

        tracker = analytics_tracker
        if tracker is not None:
            await run_in_threadpool(
                tracker.track,
                ip=client_ip(request.headers, request.client.host if request.client else None),
                user_agent=request.headers.get("user-agent", ""),
                method=request.method,
                path=request.url.path,
                referer=request.headers.get("referer", ""),
                status_code=response.status_code,
                response_time_ms=int((time.perf_counter() - started) * 1000),
            )
        return response


def apply_cors_headers(response, origin: str) -> None:
    if origin:
        response.headers["Access-Control-Allow-Origin"] = origin
        response.headers["Vary"] = "Origin"
    else:
        response.headers["Access-Control-Allow-Origin"] = "*"
    response.headers["Access-Control-Allow-Methods"] = "GET,POST,OPTIONS"
    response.headers["Access-Control-Allow-Headers"] = "Content-Type, Authorization"


app = FastAPI(title="Match Coach API")
app.add_middleware(CorsAndAnalyticsMiddleware)

if FRONTEND_DIR.is_dir():
    app.mount("/static", StaticFiles(directory=str(FRONTEND_DIR)), name="static")


async def riot_request(url: str) -> Any:
    if not RIOT_API_KEY:
        raise RuntimeError("RIOT_API_KEY is missing on the server. Add it to your .env file.")
    response = await http_client.get(url, headers={"X-Riot-Token": RIOT_API_KEY})
    if response.status_code >= 400:
        error = RuntimeError(f"Riot API request failed ({response.status_code}).")
        setattr(error, "status", response.status_code)
        setattr(error, "body", response.text)
        setattr(error, "retry_after", response.headers.get("Retry-After"))
        raise error
    return response.json()


def riot_routing_url(routing_region: str, pathname: str) -> str:
    return f"https://{routing_region}.api.riotgames.com{pathname}"


async def fetch_match(match_id: str, routing_region: str) -> dict[str, Any]:
    logger.info("Fetching match data for match ID: %s (%s)", match_id, routing_region)
    match = await riot_request(riot_routing_url(routing_region, f"/lol/match/v5/matches/{quote(match_id)}"))
    if not isinstance(match, dict):
        raise RuntimeError("Riot API returned an unexpected match payload.")
    return match


def error_response(match_id: str, message: str, status: int) -> JSONResponse:
    return JSONResponse({"match_id": match_id or None, "error": message}, status_code=status)


async def run_match_analysis(match_id: str, region: Any, champion_name: Any, summoner_name: Any, focus_areas: list[str]) -> JSONResponse:
    try:
        match = await fetch_match(match_id, resolve_routing_region(match_id, region))
    except (httpx.HTTPError, RuntimeError, ValueError) as error:
        logger.error("Error fetching match %s: %s", match_id, error)
        return error_response(match_id, f"Failed to fetch match data: {error}", int(getattr(error, "status", 500)))

    target = resolve_deep_dive_target(match, str(champion_name or ""), str(summoner_name or ""))
    summary = compose_match_summary(match, target)
    if target.mode == "requested":
        logger.info("Deep dive requested for %s", target.label)
    else:
        logger.info("Deep dive target auto-selected: %s (%s)", target.label, target.mode)
    if focus_areas:
        logger.info("Focus areas requested: %s", focus_areas)

    try:
        result = await analyze_match(
            http_client, coaching_settings(), summary, target.champion_filter, target.summoner_filter, focus_areas
        )
    except (httpx.HTTPError, RuntimeError, ValueError) as error:
        logger.error("Error analyzing match %s: %s", match_id, error)
        return error_response(match_id, f"Failed to analyze match: {error}", 500)

    insights = result.pop("structured_insights", None) or {}
    insights.setdefault("what_went_well", [])
    insights.setdefault("what_went_wrong", [])
    insights.setdefault("critical_moments", [])
    insights["key_statistics"] = build_key_statistics(match, find_target(match, target.champion_filter, target.summoner_filter))

    payload: dict[str, Any] = {
        "match_id": match_id,
        "analysis": result.get("analysis", ""),
        "suggestions": result.get("suggestions", []),
        "coaching_tips": result.get("coaching_tips", []),
        "deep_dive_target": target.label,
        "deep_dive_mode": target.mode,
        "structured_insights": insights,
    }
    if result.get("champion_deep_dive"):
        payload["champion_deep_dive"] = result["champion_deep_dive"]
    return JSONResponse(payload)


@app.on_event("shutdown")
async def shutdown_event() -> None:
    if analytics_tracker is not None:
        analytics_tracker.flush()
    await http_client.aclose()


@app.get("/health")
async def health() -> dict[str, bool]:
    return {"ok": True}


@app.post("/analyze-match")
async def analyze_match_post(request: Request):
    try:
        body = await request.json()
    except ValueError:
        return error_response("", "Invalid request body", 400)
    if not isinstance(body, dict):
        return error_response("", "Invalid request body", 400)
    match_id = str(body.get("match_id") or "").strip()
    if not match_id:
        return error_response("", "match_id is required", 400)
    return await run_match_analysis(
        match_id,
        body.get("region"),
        body.get("champion_name"),
        body.get("summoner_name"),
        normalize_focus_areas(body.get("focus_areas")),
    )


@app.get("/analyze-match-get")
async def analyze_match_get(
    match_id: str = "",
    region: str = "",
    champion_name: str = "",
    summoner_name: str = "",
    focus_areas: str = "",
):
    if not match_id.strip():
        return error_response("", "match_id query parameter is required", 400)
    return await run_match_analysis(match_id.strip(), region, champion_name, summoner_name, normalize_focus_areas(focus_areas))


@app.get("/analytics")
async def analytics(request: Request, key: str = "", all_: str = Query("", alias="all")):
    if analytics_tracker is None:
        return JSONResponse({"error": "Analytics tracking is disabled."}, status_code=404)
    if ANALYTICS_KEY and key != ANALYTICS_KEY:
        return JSONResponse({"error": "Unauthorized"}, status_code=401)
    if wants_html(request, browser_default=True):
        page = frontend_file("analytics.html")
        if page is not None:
            return FileResponse(page)
    return build_analytics_report(analytics_tracker.get_stats(), include_all=all_ == "true")


@app.post("/dashboard-save")
async def dashboard_save(request: Request):
    try:
        body = await request.json()
    except ValueError:
        return JSONResponse({"success": False, "error": "Invalid request body"}, status_code=400)
    body = body if isinstance(body, dict) else {}
    match_id = str(body.get("match_id") or "").strip()
    if not match_id:
        return JSONResponse({"success": False, "error": "match_id is required"}, status_code=400)

    dashboard_id = sanitize_dashboard_id(str(body.get("dashboard_id") or "").strip())
    try:
        match = await fetch_match(match_id, resolve_routing_region(match_id, body.get("region")))
    except (httpx.HTTPError, RuntimeError, ValueError) as error:
        logger.error("Error fetching match %s for dashboard %s: %s", match_id, dashboard_id, error)
        return JSONResponse({"success": False, "error": f"Failed to fetch match: {error}"}, status_code=int(getattr(error, "status", 500)))

    snapshot = create_dashboard_match(match, dashboard_id, region_from_match_id(match_id))
    try:
        dashboard_store.add_match(dashboard_id, snapshot)
    except (OSError, ValueError) as error:
        logger.error("Error saving dashboard %s: %s", dashboard_id, error)
        return JSONResponse({"success": False, "error": f"Failed to save match: {error}"}, status_code=500)
    return {"success": True, "dashboard_id": dashboard_id, "message": "Match saved with ALL data from Riot API"}


@app.get("/dashboards")
async def dashboards():
    summaries = dashboard_store.summaries()
    return {"dashboards": summaries, "total": len(summaries)}


async def serve_dashboard(request: Request, dashboard_id: str = ""):
    if wants_html(request):
        page = frontend_file("dashboard.html")
        if page is not None:
            return FileResponse(page)
    if not dashboard_id.strip():
        return JSONResponse({"error": "dashboard_id is required. Use /d/YOUR_ID or /dashboard/YOUR_ID"}, status_code=400)
    try:
        return dashboard_store.load_dashboard(sanitize_dashboard_id(dashboard_id))
    except (OSError, ValueError) as error:
        return JSONResponse({"error": f"Failed to load dashboard: {error}"}, status_code=500)


@app.get("/dashboard")
async def dashboard_index(request: Request):
    return await serve_dashboard(request)


@app.get("/dashboard/{dashboard_id}")
async def dashboard_by_id(request: Request, dashboard_id: str):
    return await serve_dashboard(request, dashboard_id)


@app.get("/d/{dashboard_id}")
async def dashboard_short(request: Request, dashboard_id: str):
    return await serve_dashboard(request, dashboard_id)


@app.get("/riot.txt")
async def riot_verification():
    path = frontend_file("riot.txt") or (Path.cwd() / "riot.txt")
    if not path.is_file():
        return JSONResponse({"error": "Not found."}, status_code=404)
    return FileResponse(path, media_type="text/plain")


@app.exception_handler(404)
async def not_found(_request: Request, _exc: Exception):
    return JSONResponse({"error": "Not found."}, status_code=404)


@app.api_route("/{full_path:path}", methods=["GET", "POST", "PUT", "PATCH", "DELETE"])
async def frontend(request: Request, full_path: str):
    if request.method not in ("GET", "HEAD"):
        return JSONResponse({"error": "Not found."}, status_code=404)
    name = full_path.strip("/")
    if name in FRONTEND_ASSETS:
        asset = frontend_file(name)
    elif name == "whitepaper":
        asset = frontend_file("whitepaper.html")
    else:
        asset = frontend_file("index.html")
    if asset is None:
        return JSONResponse({"error": "Not found."}, status_code=404)
    return FileResponse(asset)


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("main:app", host="0.0.0.0", port=env_int("PORT", 8080), reload=False)
