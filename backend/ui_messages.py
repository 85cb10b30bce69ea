"""
UI Messages - Plugin Panel Message Contract

Typed models for everything the plugin UI panel can send, plus the single
payload the backend posts back to it.
"""

from enum import Enum
from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter

from content_errors import InvalidCategory, UnknownMessageType


# Message type constants to avoid stringly-typed conditionals
MESSAGE_TYPE_GET_CONTENT = "get-content"
MESSAGE_TYPE_INJECT_CONTENT = "inject-content"
MESSAGE_TYPE_FILL_CATEGORY = "fill-category"
MESSAGE_TYPE_CLOSE_PLUGIN = "close-plugin"
MESSAGE_TYPE_CONTENT_DATA = "content-data"

UI_MESSAGE_TYPES = frozenset({
    MESSAGE_TYPE_GET_CONTENT,
    MESSAGE_TYPE_INJECT_CONTENT,
    MESSAGE_TYPE_FILL_CATEGORY,
    MESSAGE_TYPE_CLOSE_PLUGIN,
})

# Figma UI wraps posted messages as { pluginMessage: ... }
ENVELOPE_KEY = "pluginMessage"

DEFAULT_CHUNK = "a"


class ContentCategory(str, Enum):
    NAMES = "names"
    EMAILS = "emails"
    PHONES = "phones"
    ADDRESSES = "addresses"
    DATES = "dates"

    @property
    def is_synthetic(self) -> bool:
        """Dates are computed per fill, never looked up."""
        return self is ContentCategory.DATES

    @classmethod
    def parse(cls, value: Any) -> "ContentCategory":
        if isinstance(value, cls):
            return value
        try:
            return cls(value)
        except ValueError:
            raise InvalidCategory(value) from None

    @classmethod
    def lookup_categories(cls) -> List["ContentCategory"]:
        return [c for c in cls if not c.is_synthetic]


class _UIMessage(BaseModel):
    model_config = ConfigDict(extra="ignore", frozen=True)


class GetContentMessage(_UIMessage):
    type: Literal["get-content"]
    category: Optional[str] = None


class InjectContentMessage(_UIMessage):
    type: Literal["inject-content"]
    content: str


class FillCategoryMessage(_UIMessage):
    type: Literal["fill-category"]
    # Kept as a raw string; the handler validates it after the selection check
    category: str
    chunk: Optional[str] = None


class ClosePluginMessage(_UIMessage):
    type: Literal["close-plugin"]


UIMessage = Annotated[
    Union[GetContentMessage, InjectContentMessage, FillCategoryMessage, ClosePluginMessage],
    Field(discriminator="type"),
]

_ui_message_adapter: TypeAdapter = TypeAdapter(UIMessage)


class ContentDataMessage(BaseModel):
    """Reply to get-content."""

    type: Literal["content-data"] = MESSAGE_TYPE_CONTENT_DATA
    category: Optional[str] = None
    data: List[str] = Field(default_factory=list)
    chunks: List[str] = Field(default_factory=list)


def unwrap_envelope(raw: Dict[str, Any]) -> Dict[str, Any]:
    """Return the inner message if `raw` is a pluginMessage envelope."""
    if isinstance(raw, dict) and ENVELOPE_KEY in raw and isinstance(raw[ENVELOPE_KEY], dict):
        return raw[ENVELOPE_KEY]
    return raw


def is_ui_message(raw: Dict[str, Any]) -> bool:
    inner = unwrap_envelope(raw)
    return isinstance(inner, dict) and inner.get("type") in UI_MESSAGE_TYPES


def parse_ui_message(raw: Dict[str, Any]):
    """
    Unwrap and validate a UI message.

    Raises:
        UnknownMessageType: `type` is missing or not part of the contract
        pydantic.ValidationError: a known type with malformed fields
    """
    message = unwrap_envelope(raw)
    msg_type = message.get("type") if isinstance(message, dict) else None
    if msg_type not in UI_MESSAGE_TYPES:
        raise UnknownMessageType(msg_type)
    return _ui_message_adapter.validate_python(message)
