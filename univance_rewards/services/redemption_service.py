import logging
from datetime import datetime

from sqlalchemy import select
from sqlalchemy.orm import Session, selectinload

from ..clients import NotificationClient, PointsServiceClient, UserServiceClient
from ..errors import InsufficientPointsError, ServiceClientError
from ..models import utcnow
from ..models.redemption import RewardRedemption, RedemptionStatus
from ..models.reward import Reward, CreatorType
from ..schemas.redemption import StudentInfo
from .pagination import paginate, sort_column

logger = logging.getLogger(__name__)

SORTABLE = {
    "redemptionDate": RewardRedemption.redemption_date,
    "redemption_date": RewardRedemption.redemption_date,
    "createdAt": RewardRedemption.created_at,
    "created_at": RewardRedemption.created_at,
    "pointsSpent": RewardRedemption.points_spent,
    "points_spent": RewardRedemption.points_spent,
    "status": RewardRedemption.status,
}


class InvalidSortError(ValueError):
    pass


def _notify(notifier: NotificationClient, type: str, recipient_id: str, data: dict) -> None:
    try:
        notifier.send(type, recipient_id, data)
    except ServiceClientError as e:
        logger.error(f"Failed to send {type} notification to {recipient_id}: {e}")


def get_redemption(db: Session, redemption_id: str) -> RewardRedemption | None:
    return db.execute(
        select(RewardRedemption)
        .options(selectinload(RewardRedemption.reward))
        .where(RewardRedemption.id == redemption_id)
    ).scalar_one_or_none()


def redeem_reward(
    db: Session,
    reward: Reward,
    *,
    student_id: str,
    awarded_by: str,
    awarded_by_role: str | None,
    points: PointsServiceClient,
    notifier: NotificationClient,
) -> RewardRedemption:
    """Debit the student and record a pending redemption.

    Raises InsufficientPointsError when the balance is short and lets
    ServiceClientError from the points service propagate.
    """
    balance = points.get_balance(student_id)
    if balance < reward.points_cost:
        raise InsufficientPointsError(current_balance=balance, required=reward.points_cost)

    points.create_transaction({
        "studentId": student_id,
        "amount": reward.points_cost,
        "type": "spent",
        "source": "redemption",
        "sourceId": reward.id,
        "description": f"Redeemed reward: {reward.title}",
        "awardedBy": awarded_by,
        "awardedByRole": awarded_by_role,
        "metadata": {
            "rewardCategory": reward.category,
            "rewardSubcategory": reward.subcategory,
        },
    })

    redemption = RewardRedemption(
        reward=reward,
        student_id=student_id,
        points_spent=reward.points_cost,
        status=RedemptionStatus.PENDING.value,
        extra={
            "rewardCategory": reward.category,
            "rewardCreatorType": reward.creator_type,
            "rewardCreatorId": reward.creator_id,
        },
    )
    db.add(redemption)
    reward.decrement_quantity()
    try:
        db.commit()
    except Exception:
        db.rollback()
        logger.error(f"Redemption of reward {reward.id} for student {student_id} failed after debit")
        raise
    db.refresh(redemption)
    logger.info(
        f"Redemption created: id={redemption.id}, reward={reward.id}, "
        f"student={student_id}, points={reward.points_cost}"
    )

    _notify(notifier, "reward_redeemed", student_id, {
        "redemptionId": redemption.id,
        "rewardId": reward.id,
        "rewardTitle": reward.title,
        "pointsSpent": reward.points_cost,
        "redemptionCode": redemption.redemption_code,
    })
    _notify(notifier, "reward_redemption_pending", reward.creator_id, {
        "redemptionId": redemption.id,
        "rewardId": reward.id,
        "rewardTitle": reward.title,
        "studentId": student_id,
        "redemptionCode": redemption.redemption_code,
    })
    return redemption


def fulfill_redemption(
    db: Session,
    redemption: RewardRedemption,
    *,
    fulfiller_id: str | None,
    feedback: str | None,
    notifier: NotificationClient,
) -> RewardRedemption:
    redemption.fulfill(fulfiller_id, feedback)
    db.commit()
    db.refresh(redemption)
    logger.info(f"Redemption fulfilled: id={redemption.id}, by={fulfiller_id}")

    reward = redemption.reward
    _notify(notifier, "reward_fulfilled", redemption.student_id, {
        "redemptionId": redemption.id,
        "rewardId": reward.id,
        "rewardTitle": reward.title,
        "feedback": feedback,
    })
    return redemption


def cancel_redemption(
    db: Session,
    redemption: RewardRedemption,
    *,
    cancelled_by: str | None,
    role: str | None,
    reason: str | None,
    points: PointsServiceClient,
    notifier: NotificationClient,
) -> RewardRedemption:
    """Cancel a pending redemption, refund its points and restock the reward."""
    reward = redemption.reward
    redemption.cancel(cancelled_by, reason)
    reward.restore_quantity()
    db.commit()
    db.refresh(redemption)
    logger.info(f"Redemption cancelled: id={redemption.id}, by={cancelled_by}")

    try:
        points.create_transaction({
            "studentId": redemption.student_id,
            "amount": redemption.points_spent,
            "type": "earned",
            "source": "redemption",
            "sourceId": redemption.id,
            "description": f"Refund for cancelled redemption: {reward.title}",
            "awardedBy": cancelled_by,
            "awardedByRole": role,
            "metadata": {
                "redemptionId": redemption.id,
                "rewardId": reward.id,
                "cancellationReason": reason,
            },
        })
        logger.info(f"Refunded {redemption.points_spent} points to student {redemption.student_id}")
    except ServiceClientError as e:
        logger.error(f"Failed to refund points for redemption {redemption.id}: {e}")

    _notify(notifier, "reward_cancelled", redemption.student_id, {
        "redemptionId": redemption.id,
        "rewardId": reward.id,
        "rewardTitle": reward.title,
        "pointsRefunded": redemption.points_spent,
        "cancellationReason": reason,
    })
    return redemption


def redemption_history(
    db: Session,
    *,
    student_ids: list[str] | None = None,
    school_id: str | None = None,
    school_creator_types: tuple[str, ...] | None = None,
    class_ids: list[str] | None = None,
    reward_id: str | None = None,
    status: str | None = None,
    start_date: datetime | None = None,
    end_date: datetime | None = None,
    page: int = 1,
    limit: int = 20,
    sort: str = "redemptionDate",
    order: str = "desc",
) -> tuple[list[RewardRedemption], int]:
    """Redemptions matching a scope and the optional filters.

    ``student_ids`` limits to those students. ``school_id`` with
    ``school_creator_types`` limits to rewards of those creator types in the
    school. ``class_ids`` limits to teacher rewards of those classes.
    """
    column = sort_column(SORTABLE, sort, order)
    if column is None:
        raise InvalidSortError(f"Invalid sort field: {sort}")

    stmt = (
        select(RewardRedemption)
        .join(Reward, RewardRedemption.reward_id == Reward.id)
        .options(selectinload(RewardRedemption.reward))
    )
    if student_ids is not None:
        stmt = stmt.where(RewardRedemption.student_id.in_(student_ids))
    if school_creator_types is not None:
        stmt = stmt.where(Reward.creator_type.in_(school_creator_types), Reward.school_id == school_id)
    if class_ids is not None:
        stmt = stmt.where(Reward.creator_type == CreatorType.TEACHER.value, Reward.class_id.in_(class_ids))
    if reward_id:
        stmt = stmt.where(RewardRedemption.reward_id == reward_id)
    if status:
        stmt = stmt.where(RewardRedemption.status == status)
    if start_date:
        stmt = stmt.where(RewardRedemption.redemption_date >= start_date)
    if end_date:
        stmt = stmt.where(RewardRedemption.redemption_date <= end_date)
    return paginate(db, stmt, page=page, limit=limit, order_by=[column, RewardRedemption.id.asc()])


def pending_redemptions(
    db: Session,
    *,
    creator_id: str | None = None,
    school_id: str | None = None,
    page: int = 1,
    limit: int = 20,
) -> tuple[list[RewardRedemption], int]:
    stmt = (
        select(RewardRedemption)
        .join(Reward, RewardRedemption.reward_id == Reward.id)
        .options(selectinload(RewardRedemption.reward))
        .where(RewardRedemption.status == RedemptionStatus.PENDING.value)
    )
    if creator_id is not None:
        stmt = stmt.where(Reward.creator_id == creator_id)
    if school_id is not None:
        stmt = stmt.where(Reward.creator_type == CreatorType.SCHOOL.value, Reward.school_id == school_id)
    return paginate(
        db, stmt, page=page, limit=limit,
        order_by=[RewardRedemption.redemption_date.desc(), RewardRedemption.id.asc()],
    )


def expire_stale_redemptions(db: Session, now: datetime | None = None) -> int:
    """Move pending redemptions of expired rewards to ``expired``."""
    now = now or utcnow()
    stale = db.execute(
        select(RewardRedemption)
        .join(Reward, RewardRedemption.reward_id == Reward.id)
        .where(
            RewardRedemption.status == RedemptionStatus.PENDING.value,
            Reward.expiry_date.is_not(None),
            Reward.expiry_date < now,
        )
    ).scalars().all()
    for redemption in stale:
        redemption.mark_expired()
    db.commit()
    if stale:
        logger.info(f"Expired {len(stale)} pending redemptions")
    return len(stale)


class StudentDirectory:
    """Per-request cache of student details used to enrich redemptions."""

    def __init__(self, users: UserServiceClient):
        self.users = users
        self._cache: dict[str, StudentInfo | None] = {}

    def info(self, student_id: str) -> StudentInfo | None:
        if student_id not in self._cache:
            try:
                details = self.users.get_student(student_id)
            except ServiceClientError as e:
                logger.warning(f"Failed to get student details for {student_id}: {e}")
                details = None
            self._cache[student_id] = StudentInfo.from_details(details)
        return self._cache[student_id]
