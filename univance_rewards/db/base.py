from ..models.reward_category import RewardCategory, CategoryType, SubcategoryType, CategoryVisibility
from ..models.reward import Reward, RewardParentHide, CreatorType
from ..models.redemption import RewardRedemption, RedemptionStatus
from ..models.wishlist import RewardWishlist
from ..db.base_class import Base
