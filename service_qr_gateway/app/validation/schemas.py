"""
Request body schemas for the QR gateway routes.

Validation collects every violation; business logic never sees a body that
fails here. Unknown top-level keys are ignored.
"""

from typing import Any, Dict, List, Literal, Optional, Type, TypeVar

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic import ValidationError as PydanticValidationError

from shared.errors import ValidationError

Priority = Literal["low", "normal", "high", "urgent"]
PaymentMethod = Literal["cash", "card", "wallet"]

MAX_PAYMENT_AMOUNT = 1_000_000

BodyModel = TypeVar("BodyModel", bound=BaseModel)


class GatewayBody(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore", str_strip_whitespace=True)


class ValidateSessionBody(GatewayBody):
    qr_token: str = Field(alias="qrToken", min_length=8, max_length=128, pattern=r"^[A-Za-z0-9_-]+$")
    device_info: Optional[Dict[str, Any]] = Field(default=None, alias="deviceInfo")


class CreateRequestBody(GatewayBody):
    session_id: str = Field(alias="sessionId", min_length=1, max_length=128)
    request_type: str = Field(alias="requestType", min_length=2, max_length=50, pattern=r"^[a-z0-9_-]+$")
    request_data: Dict[str, Any] = Field(alias="requestData")
    priority: Priority = "normal"


class ServiceRequestBody(GatewayBody):
    """Body for the per-service shortcuts, where the path names the request type."""

    session_id: Optional[str] = Field(default=None, alias="sessionId", min_length=1, max_length=128)
    request_data: Dict[str, Any] = Field(default_factory=dict, alias="requestData")
    priority: Priority = "normal"


class PaymentChargeBody(GatewayBody):
    amount: float = Field(gt=0, le=MAX_PAYMENT_AMOUNT)
    payment_method: PaymentMethod = Field(alias="paymentMethod")
    reference: Optional[str] = Field(default=None, max_length=100)
    notes: Optional[str] = Field(default=None, max_length=500)

    @field_validator("amount", mode="before")
    @classmethod
    def _amount_is_number(cls, value: Any) -> Any:
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            raise ValueError("amount must be a number")
        return value


class RequestMessageBody(GatewayBody):
    message: str = Field(min_length=1, max_length=1000)
    payload: Dict[str, Any] = Field(default_factory=dict)


def format_errors(exc: PydanticValidationError) -> List[str]:
    """Flatten pydantic errors into ``field: message`` strings."""
    details = []
    for error in exc.errors():
        location = ".".join(str(part) for part in error["loc"]) or "body"
        details.append(f"{location}: {error['msg']}")
    return details


def parse_body(model: Type[BodyModel], body: Any) -> BodyModel:
    """Validate ``body`` against ``model`` or raise with every violation."""
    try:
        return model.model_validate(body)
    except PydanticValidationError as exc:
        raise ValidationError("Validation failed", errors=format_errors(exc))
