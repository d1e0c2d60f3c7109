from __future__ import annotations

import copy
import json
import logging
import os
import threading
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Mapping

logger = logging.getLogger(__name__)

PRUNE_EVERY = 100
SAMPLE_SIZE = 50


def empty_analytics() -> dict[str, Any]:
    return {
        "total_requests": 0,
        "unique_ips": {},
        "requests_by_path": {},
        "requests_by_method": {},
        "requests_by_day": {},
        "user_agents": {},
        "recent_requests": [],
        "all_requests": [],
        "first_request": None,
        "last_request": None,
    }


def parse_timestamp(value: Any) -> datetime | None:
    try:
        parsed = datetime.fromisoformat(str(value))
    except (TypeError, ValueError):
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


class AnalyticsStorage:
    """JSON file holding the analytics counters, written via temp file + rename."""

    def __init__(self, path: str | Path):
        self.path = Path(path)

    def load(self) -> dict[str, Any]:
        if not self.path.exists():
            return empty_analytics()
        data = json.loads(self.path.read_text(encoding="utf-8"))
        if not isinstance(data, dict):
            raise ValueError(f"analytics file {self.path} does not hold an object")
        merged = empty_analytics()
        for key, default in merged.items():
            value = data.get(key)
            if value is None:
                continue
            if default is None or isinstance(value, type(default)):
                merged[key] = value
        return merged

    def save(self, data: dict[str, Any]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self.path.with_name(self.path.name + ".tmp")
        try:
            tmp_path.write_text(json.dumps(data, indent=2), encoding="utf-8")
            os.replace(tmp_path, self.path)
        except OSError:
            tmp_path.unlink(missing_ok=True)
            raise


class RequestTracker:
    def __init__(
        self,
        storage_path: str | Path,
        max_recent: int = 100,
        max_days: int = 0,
        max_records: int = 0,
        save_every: int = 10,
    ):
        self.storage = AnalyticsStorage(storage_path)
        self.max_recent = max(1, max_recent)
        self.max_days = max_days
        self.max_records = max_records
        self.save_every = max(1, save_every)
        self._lock = threading.Lock()
        try:
            self.data = self.storage.load()
        except (OSError, ValueError) as error:
            logger.warning("Could not load analytics from %s, starting empty: %s", self.storage.path, error)
            self.data = empty_analytics()
        if max_days > 0 or max_records > 0:
            self._prune()

    def track(
        self,
        ip: str,
        user_agent: str,
        method: str,
        path: str,
        referer: str = "",
        status_code: int = 200,
        response_time_ms: int = 0,
        now: datetime | None = None,
    ) -> None:
        now = now or datetime.now(timezone.utc)
        user_agent = user_agent or "Unknown"
        record = {
            "timestamp": now.isoformat(),
            "ip": ip,
            "user_agent": user_agent,
            "method": method,
            "path": path,
            "referer": referer,
            "status_code": status_code,
            "response_time_ms": response_time_ms,
        }
        with self._lock:
            data = self.data
            data["total_requests"] = int(data.get("total_requests") or 0) + 1
            bump(data["unique_ips"], ip)
            bump(data["requests_by_path"], path)
            bump(data["requests_by_method"], method)
            bump(data["requests_by_day"], now.strftime("%Y-%m-%d"))
            bump(data["user_agents"], simplify_user_agent(user_agent))
            if not data.get("first_request"):
                data["first_request"] = record["timestamp"]
            data["last_request"] = record["timestamp"]

            data["recent_requests"].append(record)
            if len(data["recent_requests"]) > self.max_recent:
                data["recent_requests"] = data["recent_requests"][-self.max_recent:]
            data["all_requests"].append(record)
            if len(data["all_requests"]) % PRUNE_EVERY == 0:
                self._prune(now)

            if data["total_requests"] % self.save_every == 0:
                self._save_locked()

    def get_stats(self) -> dict[str, Any]:
        with self._lock:
            return copy.deepcopy(self.data)

    def flush(self) -> None:
        with self._lock:
            self._save_locked()

    def _save_locked(self) -> None:
        try:
            self.storage.save(self.data)
        except (OSError, TypeError, ValueError) as error:
            logger.error("Failed to save analytics to %s: %s", self.storage.path, error)

    def _prune(self, now: datetime | None = None) -> None:
        if self.max_days <= 0 and self.max_records <= 0:
            return
        records = self.data["all_requests"]
        if self.max_days > 0:
            cutoff = (now or datetime.now(timezone.utc)) - timedelta(days=self.max_days)
            records = [r for r in records if (parse_timestamp(r.get("timestamp")) or cutoff) >= cutoff]
        if self.max_records > 0 and len(records) > self.max_records:
            records = records[-self.max_records:]
        self.data["all_requests"] = records


def bump(counter: dict[str, int], key: str) -> None:
    counter[key] = int(counter.get(key) or 0) + 1


def contains_any(value: str, *needles: str) -> bool:
    lowered = value.lower()
    return any(needle.lower() in lowered for needle in needles)


def simplify_user_agent(user_agent: str) -> str:
    if not user_agent or user_agent == "Unknown":
        return "Unknown"
    if contains_any(user_agent, "Mobile", "Android", "iPhone", "iPad"):
        if contains_any(user_agent, "Chrome"):
            return "Mobile Chrome"
        if contains_any(user_agent, "Safari"):
            return "Mobile Safari"
        if contains_any(user_agent, "Firefox"):
            return "Mobile Firefox"
        return "Mobile Other"
    if contains_any(user_agent, "Chrome") and not contains_any(user_agent, "Edg"):
        return "Desktop Chrome"
    if contains_any(user_agent, "Firefox"):
        return "Desktop Firefox"
    if contains_any(user_agent, "Safari") and not contains_any(user_agent, "Chrome"):
        return "Desktop Safari"
    if contains_any(user_agent, "Edg"):
        return "Desktop Edge"
    if contains_any(user_agent, "Opera"):
        return "Desktop Opera"
    if contains_any(user_agent, "bot", "crawler", "spider", "scraper"):
        return "Bot/Crawler"
    return "Other"


def client_ip(headers: Mapping[str, str], fallback: str | None = None) -> str:
    forwarded = (headers.get("x-forwarded-for") or "").split(",")[0].strip()
    if forwarded:
        return forwarded
    real_ip = (headers.get("x-real-ip") or "").strip()
    if real_ip:
        return real_ip
    return fallback or "unknown"


def top_n(counts: dict[str, int], n: int) -> dict[str, int]:
    ranked = sorted(counts.items(), key=lambda row: (-int(row[1]), row[0]))
    return dict(ranked[:n])


def build_analytics_report(stats: dict[str, Any], include_all: bool = False) -> dict[str, Any]:
    all_requests = stats.get("all_requests") or []
    report: dict[str, Any] = {
        "summary": {
            "total_requests": stats.get("total_requests", 0),
            "unique_ips": len(stats.get("unique_ips") or {}),
            "total_stored": len(all_requests),
            "first_request": stats.get("first_request"),
            "last_request": stats.get("last_request"),
        },
        "by_path": stats.get("requests_by_path") or {},
        "by_method": stats.get("requests_by_method") or {},
        "by_day": stats.get("requests_by_day") or {},
        "user_agents": stats.get("user_agents") or {},
        "top_ips": top_n(stats.get("unique_ips") or {}, 10),
        "recent_requests": stats.get("recent_requests") or [],
        "all_requests_count": len(all_requests),
    }
    if include_all:
        report["all_requests"] = all_requests
    elif all_requests:
        report["all_requests_sample"] = all_requests[-SAMPLE_SIZE:]
        report["all_requests_note"] = f"Showing last {SAMPLE_SIZE} requests. Use ?all=true to get all requests."
    return report
