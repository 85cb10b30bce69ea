"""
Content Errors - Recoverable Fill Failures

Every failure the fill handler can hit is one of these. None of them is fatal:
the handler catches ContentError at the top of each message, logs it and shows
its `notification` to the user.
"""

from typing import Any, Dict, Optional


class ContentError(Exception):
    """
    Base class for recoverable content failures.

    Carries a stable `code` (mirrors the plugin's structured error codes),
    the user-facing `notification` text and optional `details`.
    """

    code = "content_error"

    def __init__(self, notification: str, details: Optional[Dict[str, Any]] = None):
        self.notification = notification
        self.details: Dict[str, Any] = details or {}
        super().__init__(notification)

    @property
    def payload(self) -> Dict[str, Any]:
        return {"code": self.code, "message": self.notification, "details": self.details}


class InvalidCategory(ContentError):
    code = "invalid_category"

    def __init__(self, category: Any):
        self.category = category
        super().__init__(f"Invalid category: {category}", {"category": category})


class EmptySelection(ContentError):
    code = "empty_selection"


class WrongNodeType(ContentError):
    code = "invalid_node_type"

    def __init__(self, notification: str, node_type: Optional[str] = None):
        self.node_type = node_type
        super().__init__(notification, {"node_type": node_type})


class FontLoadFailure(ContentError):
    code = "font_load_failed"

    def __init__(self, notification: str, node_id: Optional[str] = None, cause: Optional[BaseException] = None):
        self.node_id = node_id
        self.cause = cause
        super().__init__(notification, {"node_id": node_id, "error": str(cause) if cause else None})


class EmptyDataset(ContentError):
    code = "empty_dataset"

    def __init__(self, category: str, chunk: Optional[str] = None):
        self.category = category
        self.chunk = chunk
        super().__init__(f'No data available for category "{category}"', {"category": category, "chunk": chunk})


class UnknownMessageType(ContentError):
    code = "unknown_message_type"

    def __init__(self, message_type: Any):
        self.message_type = message_type
        super().__init__(f"Unknown message type: {message_type}", {"type": message_type})
