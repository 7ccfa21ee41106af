from datetime import datetime
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel


class KYCDocument(BaseModel):
    type: str = Field(min_length=1)
    number: str | None = None


class PendingKYCRequest(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="allow")

    id: str
    user_id: str
    user_name: str = ""
    user_email: str = ""
    level: Literal[1, 2, 3]
    documents: list[KYCDocument] = Field(min_length=1)
    status: Literal["pending"] = "pending"
    date: datetime

    @field_validator("level", mode="before")
    @classmethod
    def _level_from_str(cls, v):
        # Forms submit the level as "1".."3"
        if isinstance(v, str) and v.strip().isdigit():
            return int(v)
        return v


class CompletedKYCRequest(PendingKYCRequest):
    status: Literal["completed"] = "completed"
    completed_date: datetime
