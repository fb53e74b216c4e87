"""Seed the system reward categories and attach legacy rewards to them.

Rewards created before categories existed only carry the ``category`` and
``subcategory`` enum pair; they are linked by ``type-subcategory`` key.
"""
from univance_rewards.core.logging import configure_logging
from univance_rewards.db.session import engine, SessionLocal
from univance_rewards.db.base import Base
from univance_rewards.services.category_service import migrate_legacy_rewards


def migrate():
    Base.metadata.create_all(bind=engine)
    db = SessionLocal()
    try:
        return migrate_legacy_rewards(db)
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


if __name__ == "__main__":
    configure_logging()
    summary = migrate()
    print("Migration completed.")
    print(f"  Categories: {summary['created']} created, {summary['skipped']} already existed")
    print(f"  Rewards: {summary['updated']} updated, {summary['failed']} failed")
