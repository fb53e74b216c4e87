from univance_rewards.core.logging import configure_logging
from univance_rewards.db.session import SessionLocal
from univance_rewards.services.redemption_service import expire_stale_redemptions


def run() -> int:
    db = SessionLocal()
    try:
        return expire_stale_redemptions(db)
    finally:
        db.close()


if __name__ == "__main__":
    configure_logging()
    print(f"Expired {run()} pending redemptions.")
