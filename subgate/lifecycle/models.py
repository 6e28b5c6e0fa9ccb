"""
Sweep results. Field names are snake_case in Python and camelCase on the wire.
"""
from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field, computed_field
from pydantic.alias_generators import to_camel


class ExpiringSubscription(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    subscription_id: str
    product_id: str
    product_name: str | None = None
    customer_phone: str
    current_period_end: datetime
    days_left: int


class SweepResult(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    marked_past_due: int = 0
    marked_expired: int = 0
    expiring_notifications_sent: int = 0
    expired_notifications_sent: int = 0
    expiring_soon: list[ExpiringSubscription] = Field(default_factory=list)
    errors: list[str] = Field(default_factory=list)
    skipped: bool = False
    # A status transition step raised; set alongside its entry in errors.
    transitions_failed: bool = Field(False, exclude=True)

    @computed_field(alias="processed")
    @property
    def processed(self) -> int:
        """Lifecycle actions applied: status transitions plus notices sent."""
        return (
            self.marked_past_due
            + self.marked_expired
            + self.expiring_notifications_sent
            + self.expired_notifications_sent
        )

    @computed_field(alias="statusUpdates")
    @property
    def status_updates(self) -> dict[str, int]:
        return {"expired": self.marked_expired, "past_due": self.marked_past_due}


class PlatformSweepResult(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    trials_expired: int = 0
    marked_past_due: int = 0
    marked_expired: int = 0
    errors: list[str] = Field(default_factory=list)
    skipped: bool = False

    @computed_field(alias="processed")
    @property
    def processed(self) -> int:
        return self.trials_expired + self.marked_past_due + self.marked_expired
