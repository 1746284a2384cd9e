"""
Content sanitization for payloads that are persisted or echoed back.

Sanitizing never fails: it truncates strings, strips ``<`` and ``>``, and
drops anything outside the allow-list. It is idempotent.
"""

from typing import Any, Dict, List, Mapping, Optional

MAX_DEPTH = 5

DEVICE_INFO_FIELDS: Mapping[str, int] = {
    "userAgent": 500,
    "language": 20,
    "platform": 100,
    "timezone": 64,
    "screenWidth": 10,
    "screenHeight": 10,
    "timestamp": 64,
}

REQUEST_DATA_FIELDS: Mapping[str, int] = {
    "description": 1000,
    "message": 1000,
    "notes": 500,
    "specialInstructions": 500,
    "special_instructions": 500,
    "category": 100,
    "location": 200,
    "preferredTime": 64,
    "preferred_time": 64,
    "guestName": 100,
    "guest_name": 100,
    "contactNumber": 32,
    "roomNumber": 20,
    "items": 200,
    "name": 200,
    "itemId": 64,
    "menuItemId": 64,
    "quantity": 10,
    "price": 20,
    "totalAmount": 20,
    "total_amount": 20,
    "rating": 10,
    "comment": 1000,
    "eventId": 64,
    "deviceType": 100,
    "issueType": 100,
    "urgency": 20,
    "test": 10,
}

MESSAGE_PAYLOAD_FIELDS: Mapping[str, int] = {
    "attachmentUrl": 500,
    "replyTo": 64,
    "language": 20,
}

PAYMENT_TEXT_LIMITS: Mapping[str, int] = {
    "reference": 100,
    "notes": 500,
}


def sanitize_string(value: str, max_length: int) -> str:
    """Truncate ``value`` and remove angle brackets."""
    return value[:max_length].replace("<", "").replace(">", "")


class PayloadSanitizer:
    """Sanitize JSON-like payloads against a field allow-list.

    ``allowed_fields`` maps each permitted key to the maximum length of its
    string content. Nested objects are checked against the same allow-list.
    """

    def __init__(self, allowed_fields: Mapping[str, int], max_depth: int = MAX_DEPTH):
        self.allowed_fields = dict(allowed_fields)
        self.max_depth = max_depth

    def sanitize(self, payload: Optional[Mapping[str, Any]]) -> Dict[str, Any]:
        if not isinstance(payload, Mapping):
            return {}
        return self._sanitize_object(payload, depth=0)

    def _sanitize_object(self, payload: Mapping[str, Any], depth: int) -> Dict[str, Any]:
        cleaned: Dict[str, Any] = {}
        for key, value in payload.items():
            max_length = self.allowed_fields.get(key)
            if max_length is None:
                continue
            sanitized = self._sanitize_value(value, max_length, depth + 1)
            if sanitized is not _DROP:
                cleaned[key] = sanitized
        return cleaned

    def _sanitize_value(self, value: Any, max_length: int, depth: int) -> Any:
        if value is None or isinstance(value, (bool, int, float)):
            return value
        if isinstance(value, str):
            return sanitize_string(value, max_length)
        if depth > self.max_depth:
            return _DROP
        if isinstance(value, Mapping):
            return self._sanitize_object(value, depth)
        if isinstance(value, list):
            return self._sanitize_list(value, max_length, depth)
        return _DROP

    def _sanitize_list(self, values: List[Any], max_length: int, depth: int) -> List[Any]:
        cleaned = []
        for item in values:
            sanitized = self._sanitize_value(item, max_length, depth + 1)
            if sanitized is not _DROP:
                cleaned.append(sanitized)
        return cleaned


_DROP = object()

device_info_sanitizer = PayloadSanitizer(DEVICE_INFO_FIELDS)
request_data_sanitizer = PayloadSanitizer(REQUEST_DATA_FIELDS)
message_payload_sanitizer = PayloadSanitizer(MESSAGE_PAYLOAD_FIELDS)
