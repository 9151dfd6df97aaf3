"""
enrichment.py — Inbound request → NotificationEnvelope.

Inbound shape (from the HTTP / CLI caller):

    { "id"?: str, "priority"?: str, "channels"?: [str], "payload": any }

Defaults applied:
    id        — generated ("NTF-XXXXXXXXXXXX"), also when the given id is unusable
    priority  — configured default (normal); unknown or mistyped values fall back
    channels  — ["email"]; non-string entries dropped, duplicates collapsed,
                first occurrence wins

Optional fields never cause a rejection. Only a missing (or null) payload,
or a request that is not an object at all, raises InvalidNotification.
"""

from __future__ import annotations

import copy
import logging
from typing import Any, List, Mapping, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator

from notification_engine.app.core.errors import InvalidNotification
from notification_engine.app.notifications.models import (
    NotificationEnvelope,
    Priority,
    normalise_channels,
)

logger = logging.getLogger(__name__)


class NotificationRequest(BaseModel):
    """
    Inbound notification request.

    The optional fields are coerced rather than validated strictly: a value
    of the wrong type is logged and replaced by its default.
    """

    model_config = ConfigDict(extra="ignore")

    id: Optional[str] = Field(None, examples=["order-1234"])
    priority: Optional[str] = Field(
        None, examples=["high"],
        description="low / normal / high / critical",
    )
    channels: Optional[List[str]] = Field(None, examples=[["email", "push"]])
    payload: Any = Field(
        None,
        examples=[{"title": "Order shipped", "message": "Your order is on its way."}],
        description="Opaque content; required",
    )

    @field_validator("id", mode="before")
    @classmethod
    def _lenient_id(cls, value: Any) -> Any:
        if value is None or isinstance(value, str):
            return value
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            return str(value)
        logger.warning("Ignoring unusable notification id %r, generating one", value)
        return None

    @field_validator("priority", mode="before")
    @classmethod
    def _lenient_priority(cls, value: Any) -> Any:
        if value is None or isinstance(value, str):
            return value
        # _parse_priority falls back to the default for anything unrecognised
        return repr(value)

    @field_validator("channels", mode="before")
    @classmethod
    def _lenient_channels(cls, value: Any) -> Any:
        if value is None:
            return None
        if isinstance(value, str):
            return [value]
        if not isinstance(value, (list, tuple)):
            logger.warning("Ignoring malformed channels %r, using defaults", value)
            return None
        kept = [name for name in value if isinstance(name, str)]
        if len(kept) != len(value):
            logger.warning(
                "Dropped %d non-string channel entries from %r",
                len(value) - len(kept), value,
            )
        return kept


def _parse_priority(value: Optional[str], default: Priority) -> Priority:
    if value is None or not value.strip():
        return default
    try:
        return Priority(value.strip().lower())
    except ValueError:
        logger.warning(
            "Unknown priority %s, using default '%s'", value, default.value,
        )
        return default


def enrich(
    raw: Union[NotificationRequest, Mapping[str, Any]],
    *,
    default_priority: Union[Priority, str] = Priority.NORMAL,
    max_retries: int = 3,
) -> NotificationEnvelope:
    """
    Build a NotificationEnvelope from an inbound request.

    Parameters
    ----------
    raw : NotificationRequest or mapping
        The caller's request.
    default_priority : Priority or str
        Used when the request carries no (or an unusable) priority.
    max_retries : int
        Per-channel retry cap copied into the envelope.

    Returns
    -------
    NotificationEnvelope

    Raises
    ------
    InvalidNotification
        Payload missing / null, or the request is not a mapping.
    """
    if isinstance(raw, NotificationRequest):
        request = raw
    elif isinstance(raw, Mapping):
        request = NotificationRequest.model_validate(
            {key: value for key, value in raw.items() if isinstance(key, str)}
        )
    else:
        raise InvalidNotification(
            f"Notification request must be an object, got {type(raw).__name__}",
        )

    if request.payload is None:
        raise InvalidNotification("Notification payload is required", field="payload")

    default = Priority(default_priority)
    kwargs = {}
    if request.id and request.id.strip():
        kwargs["id"] = request.id

    return NotificationEnvelope(
        payload=copy.deepcopy(request.payload),
        priority=_parse_priority(request.priority, default),
        target_channels=normalise_channels(request.channels),
        max_retries=max_retries,
        **kwargs,
    )
