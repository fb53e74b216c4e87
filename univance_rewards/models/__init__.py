from datetime import datetime, timezone
def utcnow():
    return datetime.now(timezone.utc)

def as_utc(dt: datetime | None) -> datetime | None:
    # normalize tz to avoid "offset-naive vs offset-aware" (SQLite drops tzinfo)
    if dt is None:
        return None
    return dt.replace(tzinfo=timezone.utc) if dt.tzinfo is None else dt.astimezone(timezone.utc)
from .reward_category import RewardCategory
from .reward import Reward, RewardParentHide
from .redemption import RewardRedemption
from .wishlist import RewardWishlist
