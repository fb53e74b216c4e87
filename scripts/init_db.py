import logging

from univance_rewards.core.config import settings
from univance_rewards.core.logging import configure_logging
from univance_rewards.db.base import Base
from univance_rewards.db.session import engine

logger = logging.getLogger("init_db")


def init() -> list[str]:
    Base.metadata.create_all(bind=engine)
    return sorted(Base.metadata.tables)


if __name__ == "__main__":
    configure_logging()
    tables = init()
    logger.info(f"Rewards schema ready on {settings.DATABASE_URL}: {', '.join(tables)}")
