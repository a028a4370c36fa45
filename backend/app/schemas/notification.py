"""
Notification Schemas.

NotificationData is a closed union discriminated by ``kind``; the kind of a
payload must equal the type of the notification carrying it.
"""

from datetime import date, datetime, time, timezone
from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, Field, TypeAdapter, ValidationError, field_validator, model_validator

from backend.app.core.exceptions import NotificationValidationError
from backend.app.models.enums import NotificationType


class MessageData(BaseModel):
    kind: Literal["message"] = "message"
    sender_id: str
    sender_name: Optional[str] = None
    sender_avatar: Optional[str] = None
    conversation_id: Optional[str] = None
    redirect_url: Optional[str] = None


class ReservationData(BaseModel):
    kind: Literal["reservation"] = "reservation"
    reservation_id: str
    reservation_status: Optional[str] = None
    experience_id: Optional[str] = None
    experience_title: Optional[str] = None
    attender_id: Optional[str] = None
    attender_name: Optional[str] = None
    redirect_url: Optional[str] = None


class ReviewData(BaseModel):
    kind: Literal["review"] = "review"
    review_id: str
    rating: int = Field(ge=1, le=5)
    experience_id: Optional[str] = None
    experience_title: Optional[str] = None
    redirect_url: Optional[str] = None


class PaymentData(BaseModel):
    kind: Literal["payment"] = "payment"
    payment_id: str
    amount: float
    currency: str
    payment_status: str
    redirect_url: Optional[str] = None


class SystemData(BaseModel):
    kind: Literal["system"] = "system"
    redirect_url: Optional[str] = None
    extra: Dict[str, Any] = Field(default_factory=dict)


class MarketingData(BaseModel):
    kind: Literal["marketing"] = "marketing"
    redirect_url: Optional[str] = None
    campaign_id: Optional[str] = None
    # Marketing has no default email template; campaigns name theirs here.
    template_id: Optional[str] = None
    extra: Dict[str, Any] = Field(default_factory=dict)


NotificationData = Annotated[
    Union[MessageData, ReservationData, ReviewData, PaymentData, SystemData, MarketingData],
    Field(discriminator="kind"),
]

_data_adapter = TypeAdapter(NotificationData)


def parse_notification_data(type: NotificationType, data: Any) -> Optional[BaseModel]:
    """
    Coerce a producer payload into the variant for ``type``.

    Accepts None, an already-built variant, or a plain mapping (``kind`` is
    filled in from the type when missing).

    Raises:
        NotificationValidationError: payload does not match the type
    """
    if data is None:
        return None
    if isinstance(data, BaseModel):
        data = data.model_dump()
    if not isinstance(data, dict):
        raise NotificationValidationError("Notification data must be an object")
    payload = {"kind": NotificationType(type).value, **data}
    if payload["kind"] != NotificationType(type).value:
        raise NotificationValidationError(
            f"Payload kind '{payload['kind']}' does not match notification type '{NotificationType(type).value}'"
        )
    try:
        return _data_adapter.validate_python(payload)
    except ValidationError as e:
        raise NotificationValidationError(
            "Invalid notification data",
            details={"errors": e.errors(include_url=False, include_context=False)}
        )


def stringify_data(data: Optional[BaseModel]) -> Dict[str, str]:
    """Flatten a payload into the string map push backends expect."""
    if data is None:
        return {}
    flat: Dict[str, str] = {}
    for key, value in data.model_dump(exclude_none=True, exclude={"kind"}).items():
        if isinstance(value, dict):
            for extra_key, extra_value in value.items():
                flat[extra_key] = str(extra_value)
        else:
            flat[key] = str(value)
    return flat


class NotificationCreate(BaseModel):
    """A notification before the store assigns id and created_at."""
    user_id: str = Field(min_length=1)
    type: NotificationType
    title: str
    message: str
    data: Optional[NotificationData] = None
    is_read: bool = False

    @model_validator(mode="after")
    def check_data_kind(self):
        if self.data is not None and self.data.kind != self.type.value:
            raise ValueError(f"data.kind '{self.data.kind}' does not match type '{self.type.value}'")
        return self


class NotificationRecord(BaseModel):
    id: str
    type: NotificationType
    title: str
    message: str
    created_at: datetime
    is_read: bool = False
    user_id: str
    data: Optional[NotificationData] = None
    read_at: Optional[datetime] = None
    clicked_at: Optional[datetime] = None


def as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def normalize_bound(value: Any, end_of_day: bool) -> Optional[datetime]:
    """
    Turn a date/datetime/ISO string into an aware UTC datetime.

    Date-only values cover the whole day: start bounds begin at midnight,
    end bounds stop at the last microsecond of that day.
    """
    if value is None or value == "":
        return None
    if isinstance(value, str):
        text = value.strip()
        try:
            if len(text) == 10:
                value = date.fromisoformat(text)
            else:
                value = datetime.fromisoformat(text.replace("Z", "+00:00"))
        except ValueError:
            raise NotificationValidationError(f"Invalid date: {value!r}")
    if isinstance(value, datetime):
        return as_utc(value)
    if isinstance(value, date):
        clock = time.max if end_of_day else time.min
        return datetime.combine(value, clock, tzinfo=timezone.utc)
    raise NotificationValidationError(f"Invalid date: {value!r}")


def check_range(start: Optional[datetime], end: Optional[datetime]) -> None:
    if start is not None and end is not None and start > end:
        raise NotificationValidationError(
            "start_date must not be after end_date",
            details={"start_date": start.isoformat(), "end_date": end.isoformat()}
        )


class NotificationFilter(BaseModel):
    """All supplied fields are AND-combined; ``types`` is OR-combined."""
    types: List[NotificationType] = Field(default_factory=list)
    read: Optional[bool] = None
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    limit: Optional[int] = Field(default=None, ge=1)

    @field_validator("start_date", mode="before")
    @classmethod
    def _start(cls, value):
        return normalize_bound(value, end_of_day=False)

    @field_validator("end_date", mode="before")
    @classmethod
    def _end(cls, value):
        return normalize_bound(value, end_of_day=True)

    @model_validator(mode="after")
    def _range(self):
        check_range(self.start_date, self.end_date)
        return self

    def matches(self, record: NotificationRecord) -> bool:
        if self.types and record.type not in self.types:
            return False
        if self.read is not None and record.is_read != self.read:
            return False
        if self.start_date is not None and record.created_at < self.start_date:
            return False
        if self.end_date is not None and record.created_at > self.end_date:
            return False
        return True


class DispatchRequest(BaseModel):
    """Event trigger sent by producer subsystems."""
    user_id: str = Field(min_length=1)
    type: NotificationType
    title: str
    message: str
    data: Optional[Dict[str, Any]] = None


class UnreadCountResponse(BaseModel):
    count: int
    badge: Optional[str]


class MarkAllReadResponse(BaseModel):
    status: str = "success"
    count: int


class DeleteResponse(BaseModel):
    deleted: bool
