"""Bot configuration. Import before any api module so .env.bot reaches api.config."""
import os
from pathlib import Path

from dotenv import load_dotenv

# Load .env.bot from the project root
env_path = Path(__file__).parent.parent / ".env.bot"
load_dotenv(env_path)

TELEGRAM_BOT_TOKEN = os.getenv("TELEGRAM_BOT_TOKEN", "")
BOT_LOG_DIR = Path(os.getenv("BOT_LOG_DIR", "logs/bot"))
