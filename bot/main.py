"""StroyManager bot - polling entry point."""
import asyncio
import logging

from bot.config import BOT_LOG_DIR, TELEGRAM_BOT_TOKEN

from aiogram import Bot, Dispatcher
from aiogram.client.default import DefaultBotProperties
from aiogram.enums import ParseMode
from aiogram.types import BotCommand

from api.utils.audit import record_metric
from bot.handlers import router as message_router

BOT_LOG_DIR.mkdir(parents=True, exist_ok=True)

logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    handlers=[
        logging.StreamHandler(),
        logging.FileHandler(BOT_LOG_DIR / "bot.log", encoding='utf-8')
    ]
)
logger = logging.getLogger(__name__)

COMMANDS = [
    BotCommand(command="start", description="🏠 Начало работы"),
    BotCommand(command="help", description="🔧 Все команды"),
    BotCommand(command="status", description="📊 Статус системы"),
    BotCommand(command="workers", description="👷 Список работников"),
    BotCommand(command="attendance", description="📅 Посещаемость за сегодня"),
    BotCommand(command="payments", description="💰 Последние выплаты"),
    BotCommand(command="expense", description="🧾 Последние расходы"),
    BotCommand(command="reports", description="📈 Отчеты"),
    BotCommand(command="chatid", description="🆔 Мой chat id"),
]


async def main():
    if not TELEGRAM_BOT_TOKEN:
        logger.error("TELEGRAM_BOT_TOKEN not set")
        return
    logger.info("Starting bot")
    record_metric("bot.startup", {})

    bot = Bot(token=TELEGRAM_BOT_TOKEN, default=DefaultBotProperties(parse_mode=ParseMode.HTML))
    await bot.set_my_commands(COMMANDS)
    # Polling and a registered webhook are mutually exclusive
    await bot.delete_webhook(drop_pending_updates=False)

    dp = Dispatcher()
    dp.include_router(message_router)

    try:
        await dp.start_polling(bot)
    finally:
        await bot.session.close()


if __name__ == "__main__":
    asyncio.run(main())
