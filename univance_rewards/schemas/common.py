import math
from typing import Any
from pydantic import AliasChoices, BaseModel, ConfigDict, Field


class ORMModel(BaseModel):
    model_config = ConfigDict(from_attributes=True)


# ORM rows keep free-form metadata in the ``extra`` attribute
def metadata_field() -> Any:
    return Field(default_factory=dict, validation_alias=AliasChoices("extra", "metadata"))


class Pagination(BaseModel):
    total: int
    page: int
    limit: int
    pages: int

    @classmethod
    def build(cls, total: int, page: int, limit: int) -> "Pagination":
        return cls(total=total, page=page, limit=limit, pages=math.ceil(total / limit) if limit else 0)
