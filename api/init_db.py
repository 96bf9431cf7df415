"""Create all tables on the configured DB_PATH (dev bootstrap; production uses Alembic)."""
import logging

from api import models_users  # noqa: F401  registers users/user_roles/user_2fa
from api.db import SessionLocal, db_url, engine
from api.models import Base, ExpenseCategory

logger = logging.getLogger(__name__)

DEFAULT_CATEGORIES = (
    ("Материалы", "materials"),
    ("Оборудование", "equipment"),
    ("Транспорт", "transport"),
    ("Работа", "labor"),
    ("Прочее", "other"),
)


def init_db() -> None:
    Base.metadata.create_all(bind=engine)

    db = SessionLocal()
    try:
        if db.query(ExpenseCategory).count() == 0:
            for name, category_type in DEFAULT_CATEGORIES:
                db.add(ExpenseCategory(name=name, type=category_type))
            db.commit()
            logger.info(f"Seeded {len(DEFAULT_CATEGORIES)} expense categories")
    finally:
        db.close()

    logger.info(f"Schema ready at {db_url}")


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO, format="%(asctime)s - %(name)s - %(levelname)s - %(message)s")
    init_db()
