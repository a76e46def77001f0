import uuid
from datetime import datetime
from decimal import Decimal
from pydantic import BaseModel, ConfigDict, Field, field_validator

from quotagate.models.plan import FEATURES, UNLIMITED

# Base properties
class PlanBase(BaseModel):
    name: str
    features: list[str] = Field(default_factory=list)
    limits: dict[str, int] = Field(default_factory=dict)
    price: Decimal = Decimal("0")
    is_active: bool = True

    @field_validator("features")
    @classmethod
    def features_in_vocabulary(cls, value: list[str]) -> list[str]:
        unknown = sorted(set(value) - set(FEATURES))
        if unknown:
            raise ValueError(f"Unknown features: {', '.join(unknown)}")
        return sorted(set(value), key=FEATURES.index)

    @field_validator("limits")
    @classmethod
    def limits_valid(cls, value: dict[str, int]) -> dict[str, int]:
        for key, limit in value.items():
            if limit < UNLIMITED:
                raise ValueError(f"Limit '{key}' must be -1 (unlimited) or non-negative")
        return value

    @field_validator("price")
    @classmethod
    def price_non_negative(cls, value: Decimal) -> Decimal:
        if value < 0:
            raise ValueError("Price must not be negative")
        return value

# Properties to receive on creation
class PlanCreate(PlanBase):
    pass

# Properties stored in DB
class PlanInDB(PlanBase):
    id: uuid.UUID
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)

# Properties to return to client
class Plan(PlanInDB):
    pass
