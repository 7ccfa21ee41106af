from datetime import date, datetime
from decimal import Decimal

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel


class UserRecord(BaseModel):
    """Account record persisted in the users slot and its backups."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="allow")

    id: str
    name: str = ""
    email: str
    password_hash: str | None = Field(
        default=None,
        validation_alias=AliasChoices("password_hash", "passwordHash", "password"),
        serialization_alias="passwordHash",
    )
    account_id: str = ""
    account_type: str = "Standard"
    join_date: date | None = None
    cash_balance: Decimal = Decimal("0")
    kyc_verified: bool = False
    kyc_level: int | None = None
    kyc_approved_date: datetime | None = None
    two_factor_enabled: bool = False
    is_admin: bool = False

    @field_validator("cash_balance", mode="after")
    @classmethod
    def _clamp_balance(cls, v: Decimal) -> Decimal:
        return v if v >= 0 else Decimal("0")

    @property
    def normalized_email(self) -> str:
        return self.email.strip().lower()

    def public_dict(self) -> dict:
        """Serialized form without the password hash."""
        return self.model_dump(mode="json", by_alias=True, exclude={"password_hash"})
