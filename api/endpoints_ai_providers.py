"""AI provider configuration, connection test and health monitoring.

Health fields on the provider row (last_status, last_tested_at,
last_response_time_ms, last_error) are written by both the manual test
and the monitor sweep.
"""
import logging
from collections import defaultdict
from datetime import datetime, timezone

import httpx
from fastapi import APIRouter, Depends, HTTPException, status
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from api import llm_client, notifications
from api.db import get_db
from api.deps_auth import SecureAuth, require_admin
from api.models import AIProvider
from api.schemas_ai import ProviderCreateIn, ProviderOut, ProviderTestIn, ProviderUpdateIn
from api.utils.audit import model_to_dict, write_audit

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/ai/providers", tags=["ai-providers"])


def get_provider_or_404(db: Session, provider_id: int) -> AIProvider:
    provider = db.query(AIProvider).filter(AIProvider.id == provider_id).first()
    if not provider:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="AI provider not found"
        )
    return provider


def record_health(provider: AIProvider, success: bool, response_time_ms: int, error: str = None) -> None:
    provider.last_status = "healthy" if success else "down"
    provider.last_tested_at = datetime.now(timezone.utc)
    provider.last_response_time_ms = response_time_ms
    provider.last_error = None if success else error


async def ping_target(target: llm_client.ProviderTarget) -> dict:
    """Ping one vendor; upstream failures become {success: False, error}."""
    started = datetime.now(timezone.utc)
    try:
        return await llm_client.ping_provider(target)
    except (httpx.HTTPStatusError, httpx.RequestError, llm_client.ProviderResponseError) as e:
        elapsed = int((datetime.now(timezone.utc) - started).total_seconds() * 1000)
        error = f"{target.provider_type} API ошибка: {llm_client.describe_error(e)}"
        logger.warning(f"Provider check failed: {error}")
        return {"success": False, "error": error, "response_time_ms": elapsed}


@router.get("", response_model=list[ProviderOut])
async def list_providers(
    auth: SecureAuth = Depends(require_admin),
    db: Session = Depends(get_db)
):
    return db.query(AIProvider).order_by(AIProvider.priority, AIProvider.id).all()


@router.post("", response_model=ProviderOut, status_code=status.HTTP_201_CREATED)
async def create_provider(
    data: ProviderCreateIn,
    auth: SecureAuth = Depends(require_admin),
    db: Session = Depends(get_db)
):
    provider = AIProvider(**data.model_dump(), created_by=auth.user_id)
    db.add(provider)
    db.flush()
    write_audit(db, "AI_PROVIDER_CREATE", auth.user_id, "ai_providers", provider.id,
                new_values=model_to_dict(provider))
    db.commit()
    db.refresh(provider)
    return provider


@router.put("/{provider_id}", response_model=ProviderOut)
async def update_provider(
    provider_id: int,
    data: ProviderUpdateIn,
    auth: SecureAuth = Depends(require_admin),
    db: Session = Depends(get_db)
):
    provider = get_provider_or_404(db, provider_id)
    old_values = model_to_dict(provider)
    for field, value in data.model_dump(exclude_unset=True).items():
        setattr(provider, field, value)
    write_audit(db, "AI_PROVIDER_UPDATE", auth.user_id, "ai_providers", provider.id,
                old_values=old_values, new_values=model_to_dict(provider))
    db.commit()
    db.refresh(provider)
    return provider


@router.delete("/{provider_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_provider(
    provider_id: int,
    auth: SecureAuth = Depends(require_admin),
    db: Session = Depends(get_db)
):
    provider = get_provider_or_404(db, provider_id)
    snapshot = model_to_dict(provider)
    db.delete(provider)
    write_audit(db, "AI_PROVIDER_DELETE", auth.user_id, "ai_providers", provider_id, old_values=snapshot)
    db.commit()
    return None


@router.post("/test")
async def check_provider(
    data: ProviderTestIn,
    auth: SecureAuth = Depends(require_admin),
    db: Session = Depends(get_db)
):
    """
    Minimal round-trip against one vendor.

    Missing key (or Azure without endpoint) → 400 {success: false, error}.
    Upstream failures are reported as {success: false, error} with 200.
    """
    provider = get_provider_or_404(db, data.provider_id) if data.provider_id is not None else None

    try:
        target = llm_client.ProviderTarget.resolve(
            data.provider_type,
            api_endpoint=data.api_endpoint,
            model_name=data.model_name,
        )
    except llm_client.ProviderConfigError as e:
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content={"success": False, "error": str(e)}
        )

    result = await ping_target(target)

    if provider is not None:
        record_health(provider, result["success"], result["response_time_ms"], result.get("error"))
    write_audit(db, "AI_PROVIDER_TEST", auth.user_id, "ai_providers", data.provider_id, new_values={
        "provider_type": data.provider_type,
        "test_result": result,
        "response_time_ms": result["response_time_ms"],
    })
    if not result["success"]:
        notifications.notify_admins(
            db, "AI_PROVIDER_FAILURE",
            f"Провайдер {provider.name if provider else data.provider_type} не прошел проверку: {result['error']}",
            meta={"provider_id": data.provider_id, "severity": "high"},
        )
    db.commit()
    return result


@router.post("/monitor")
async def monitor_providers(
    auth: SecureAuth = Depends(require_admin),
    db: Session = Depends(get_db)
):
    """
    Ping every active provider in turn and record their health.

    Each failing provider raises an AI_PROVIDER_FAILURE notification
    (severity high) for all active admins; when every provider of one
    type is down an AI_FAILOVER_ALERT (critical) follows.
    """
    providers = llm_client.active_providers(db)
    results = []
    by_type = defaultdict(list)

    for provider in providers:
        try:
            target = llm_client.ProviderTarget.from_provider(provider)
        except llm_client.ProviderConfigError as e:
            result = {"success": False, "error": str(e), "response_time_ms": 0}
        else:
            result = await ping_target(target)

        record_health(provider, result["success"], result["response_time_ms"], result.get("error"))
        by_type[provider.provider_type].append(result["success"])
        results.append({
            "provider_id": provider.id,
            "name": provider.name,
            "provider_type": provider.provider_type,
            "status": provider.last_status,
            "response_time_ms": result["response_time_ms"],
            "error": result.get("error"),
        })

        if not result["success"]:
            notifications.notify_admins(
                db, "AI_PROVIDER_FAILURE",
                f"AI провайдер {provider.name} недоступен: {result['error']}",
                meta={"provider_id": provider.id, "severity": "high"},
            )

    failed_types = [ptype for ptype, oks in by_type.items() if not any(oks)]
    for ptype in failed_types:
        notifications.notify_admins(
            db, "AI_FAILOVER_ALERT",
            f"Все провайдеры типа {ptype} недоступны",
            meta={"provider_type": ptype, "severity": "critical"},
        )

    healthy = sum(1 for r in results if r["status"] == "healthy")
    summary = {
        "total": len(results),
        "healthy": healthy,
        "down": len(results) - healthy,
        "failed_types": failed_types,
    }
    write_audit(db, "AI_PROVIDER_MONITOR", auth.user_id, "ai_providers", new_values=summary)
    db.commit()

    logger.info(f"AI monitor: {healthy}/{len(results)} providers healthy")
    return {"summary": summary, "providers": results, "checked_at": datetime.now(timezone.utc).isoformat()}
