from datetime import datetime
from decimal import Decimal
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class PendingTransaction(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="allow")

    id: str
    user_id: str
    user_name: str = ""
    type: Literal["deposit", "withdrawal"]
    amount: Decimal = Field(gt=0)
    status: Literal["pending"] = "pending"
    date: datetime


class CompletedTransaction(BaseModel):
    """Entry of the append-only transactions log."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="allow")

    id: str
    user_id: str
    user_name: str = ""
    type: Literal["deposit", "withdrawal"]
    amount: Decimal
    status: Literal["completed", "rejected"]
    date: datetime
    completed_date: datetime
