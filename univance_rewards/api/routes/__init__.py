from fastapi import FastAPI
from . import categories, redemptions, rewards

API_PREFIX = "/api/rewards"


def include_routers(app: FastAPI, prefix: str = API_PREFIX) -> None:
    # static segments must be registered before /{reward_id}
    app.include_router(categories.router, prefix=f"{prefix}/categories", tags=["Categories"])
    app.include_router(redemptions.router, prefix=prefix, tags=["Redemptions"])
    app.include_router(rewards.router, prefix=prefix, tags=["Rewards"])
