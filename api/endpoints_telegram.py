"""Telegram webhook and outbound notification endpoints."""
import logging

from aiogram.exceptions import TelegramAPIError
from aiogram.types import Update
from fastapi import APIRouter, Body, Depends, Header, HTTPException, status
from pydantic import ValidationError
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from api import notifications, telegram_bot
from api.config import settings
from api.db import get_db
from api.deps_auth import SecureAuth, require_admin
from api.schemas_ai import NotifyIn
from api.utils.audit import write_audit

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/telegram", tags=["telegram"])


async def _reply(chat_id, text: str) -> None:
    try:
        await notifications.send_message(chat_id, text)
    except (TelegramAPIError, notifications.TelegramNotConfigured) as e:
        logger.error(f"Telegram reply to {chat_id} failed: {e}")


@router.post("/webhook")
async def telegram_webhook(
    payload: dict = Body(...),
    secret_token: str | None = Header(default=None, alias="X-Telegram-Bot-Api-Secret-Token"),
    db: Session = Depends(get_db)
):
    """
    Telegram update receiver.

    Always answers 200 once the caller is trusted, so Telegram does not
    redeliver; processing errors are reported to the chat instead.
    """
    if settings.TELEGRAM_WEBHOOK_SECRET and secret_token != settings.TELEGRAM_WEBHOOK_SECRET:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid webhook secret"
        )

    try:
        update = Update.model_validate(payload)
    except ValidationError as e:
        logger.warning(f"Malformed Telegram update: {e.error_count()} error(s)")
        return {"ok": False}

    message = update.message
    if message is None:
        return {"ok": True}

    logger.info(f"Telegram update {update.update_id} from chat {message.chat.id}")
    try:
        reply = await telegram_bot.handle_message(db, message)
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"Telegram update {update.update_id} failed: {e}")
        reply = telegram_bot.PROCESSING_ERROR
    except Exception:
        db.rollback()
        logger.exception(f"Telegram update {update.update_id} crashed")
        reply = telegram_bot.PROCESSING_ERROR

    await _reply(message.chat.id, reply)
    return {"ok": True}


@router.post("/notify")
async def send_notification(
    req: NotifyIn,
    auth: SecureAuth = Depends(require_admin),
    db: Session = Depends(get_db)
):
    """
    Render a notification template and send it to Telegram.

    The attempt is logged in notifications_log as sent or failed.
    """
    try:
        text = notifications.render_notification(req.action, req.data)
    except KeyError:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Unknown notification action: {req.action}"
        )

    chat_id = req.chat_id or settings.TELEGRAM_CHAT_ID
    if not chat_id or not settings.TELEGRAM_BOT_TOKEN:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Telegram is not configured"
        )

    try:
        message_id = await notifications.send_message(chat_id, text)
    except TelegramAPIError as e:
        notifications.log_notification(db, req.action, chat_id, text, status="failed", meta={"error": str(e)})
        db.commit()
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail=f"Telegram error: {str(e)}"
        )

    row = notifications.log_notification(db, req.action, chat_id, text, meta={"message_id": message_id})
    db.flush()
    write_audit(db, "TELEGRAM_NOTIFY", auth.user_id, "notifications_log", row.id,
                new_values={"action": req.action, "chat_id": str(chat_id)})
    db.commit()

    return {"success": True, "message_id": message_id, "action": req.action}
