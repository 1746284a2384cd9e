"""
Inbound payload validation (shape) and sanitization (content).
"""

from .schemas import (
    CreateRequestBody,
    PaymentChargeBody,
    RequestMessageBody,
    ServiceRequestBody,
    ValidateSessionBody,
    parse_body,
)
from .sanitizer import (
    PAYMENT_TEXT_LIMITS,
    PayloadSanitizer,
    device_info_sanitizer,
    message_payload_sanitizer,
    request_data_sanitizer,
    sanitize_string,
)

__all__ = [
    "CreateRequestBody",
    "PAYMENT_TEXT_LIMITS",
    "PaymentChargeBody",
    "PayloadSanitizer",
    "RequestMessageBody",
    "ServiceRequestBody",
    "ValidateSessionBody",
    "device_info_sanitizer",
    "message_payload_sanitizer",
    "parse_body",
    "request_data_sanitizer",
    "sanitize_string",
]
