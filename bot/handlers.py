"""Polling-mode message handler; replies come from the shared command engine."""
import logging

from aiogram import Router
from aiogram.types import Message
from sqlalchemy.exc import SQLAlchemyError

from api import telegram_bot
from api.db import SessionLocal

logger = logging.getLogger(__name__)
router = Router()


@router.message()
async def on_message(message: Message):
    db = SessionLocal()
    try:
        reply = await telegram_bot.handle_message(db, message)
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"Message {message.message_id} in chat {message.chat.id} failed: {e}")
        reply = telegram_bot.PROCESSING_ERROR
    except Exception:
        db.rollback()
        logger.exception(f"Message {message.message_id} in chat {message.chat.id} crashed")
        reply = telegram_bot.PROCESSING_ERROR
    finally:
        db.close()

    await message.answer(reply)
