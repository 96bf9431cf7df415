"""Audit and metrics helpers.

Two sinks:
- `write_audit` adds an AuditLog row in the caller's session (committed
  with the business change it describes)
- `record_metric` appends compact JSONL events under LOGS_DIR for quick
  local inspection of LLM/Telegram call latency and outcomes
"""
from __future__ import annotations

import json
import logging
import os
import time
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict

from fastapi.encoders import jsonable_encoder
from sqlalchemy import inspect
from sqlalchemy.orm import Session

from api.models import AuditLog

logger = logging.getLogger(__name__)


def _logs_dir() -> Path:
    """
    Get logs directory with date-based rotation.

    Returns:
        Path to logs/metrics/YYYY-MM-DD/
    """
    base = os.getenv("LOGS_DIR", "logs")
    today = datetime.now(timezone.utc).strftime("%Y-%m-%d")
    p = Path(base) / "metrics" / today
    p.mkdir(parents=True, exist_ok=True)
    return p


def record_metric(
    kind: str,
    fields: Dict[str, Any] | None = None,
    outcome: str | None = None,
    model: str | None = None,
    provider: str | None = None,
    latency_ms: float | None = None,
) -> None:
    """Append a single metric event to logs/metrics/<date>/api.jsonl.

    Args:
        kind: Short event kind, e.g. "llm.chat", "telegram.send", "provider.test".
        fields: Arbitrary dict with event fields (ids, sizes, etc.).
        outcome: Optional outcome: ok|error|filtered.
        model: LLM model name.
        provider: Provider type (openai, anthropic, ...).
        latency_ms: Upstream call latency in milliseconds.
    """
    entry = {
        "ts": datetime.now(timezone.utc).isoformat(),
        "kind": kind,
        "fields": fields or {},
    }
    if outcome:
        entry["outcome"] = outcome
    if model:
        entry["model"] = model
    if provider:
        entry["provider"] = provider
    if latency_ms is not None:
        entry["latency_ms"] = round(latency_ms, 2)
    try:
        out = _logs_dir() / "api.jsonl"
        with out.open("a", encoding="utf-8") as f:
            f.write(json.dumps(entry, ensure_ascii=False, default=str) + "\n")
    except OSError as e:
        logger.warning(f"Metric {kind} not written: {e}")


def model_to_dict(obj) -> dict:
    """Column values of an ORM row as JSON-safe dict (for old/new audit values)."""
    if obj is None:
        return {}
    mapper = inspect(obj).mapper
    return jsonable_encoder({attr.key: getattr(obj, attr.key) for attr in mapper.column_attrs})


def write_audit(
    db: Session,
    action: str,
    user_id: int | None = None,
    table_name: str | None = None,
    record_id: Any = None,
    old_values: dict | None = None,
    new_values: dict | None = None,
) -> AuditLog:
    """Stage an audit row; the caller's commit persists it."""
    entry = AuditLog(
        user_id=user_id,
        action=action,
        table_name=table_name,
        record_id=str(record_id) if record_id is not None else None,
        old_values=jsonable_encoder(old_values) if old_values is not None else None,
        new_values=jsonable_encoder(new_values) if new_values is not None else None,
    )
    db.add(entry)
    return entry


def track_llm_call(intent: str, provider: str, model: str | None = None) -> "LLMCallTracker":
    """Context manager for tracking upstream LLM calls with latency.

    Usage:
        with track_llm_call("chat", provider="openai", model="gpt-4o-mini") as tracker:
            result = await call_vendor(...)
            tracker.set_outcome("ok")
    """
    return LLMCallTracker(intent, provider, model)


class LLMCallTracker:
    """Helper context manager for tracking LLM calls."""

    def __init__(self, intent: str, provider: str, model: str | None):
        self.intent = intent
        self.provider = provider
        self.model = model
        self.start_time: float | None = None
        self.outcome: str | None = None
        self.fields: Dict[str, Any] = {}

    def __enter__(self):
        self.start_time = time.monotonic()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        latency_ms = (time.monotonic() - (self.start_time or 0)) * 1000
        if exc_type is not None:
            self.outcome = "error"
            self.fields["error"] = str(exc_val)
        record_metric(
            kind=f"llm.{self.intent}",
            fields=self.fields,
            outcome=self.outcome,
            model=self.model,
            provider=self.provider,
            latency_ms=latency_ms,
        )
        return False  # Don't suppress exceptions

    @property
    def elapsed_ms(self) -> int:
        return int((time.monotonic() - (self.start_time or time.monotonic())) * 1000)

    def set_outcome(self, outcome: str):
        """Set outcome: ok|error|filtered."""
        self.outcome = outcome
