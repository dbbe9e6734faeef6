"""Encoding of the OAuth ``state`` parameter.

The state carries the flow kind (popup or redirect) and the form the grant
should be linked to, as JSON: ``{"type": "popup", "refKey": "abc"}``. Older
clients sent the bare flow kind (``popup``); anything that does not decode to
a JSON object is read that way.
"""

from __future__ import annotations

import json
import logging
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict

logger = logging.getLogger(__name__)


class FlowKind(str, Enum):
    POPUP = "popup"
    REDIRECT = "redirect"


class OAuthState(BaseModel):
    model_config = ConfigDict(frozen=True)

    flow_kind: FlowKind = FlowKind.REDIRECT
    target_resource_id: Optional[str] = None

    @property
    def is_popup(self) -> bool:
        return self.flow_kind is FlowKind.POPUP


def encode_state(state: OAuthState) -> str:
    return json.dumps(
        {"type": state.flow_kind.value, "refKey": state.target_resource_id},
        separators=(",", ":"),
    )


def _legacy_state(raw: str) -> OAuthState:
    flow_kind = FlowKind.POPUP if raw == FlowKind.POPUP.value else FlowKind.REDIRECT
    return OAuthState(flow_kind=flow_kind)


def decode_state(raw: Optional[str]) -> OAuthState:
    """Decode a state value returned by the provider.

    Args:
        raw: The ``state`` query parameter, possibly missing

    Returns:
        OAuthState; never raises
    """
    if not raw:
        return OAuthState()

    try:
        payload = json.loads(raw)
    except ValueError:
        return _legacy_state(raw)

    if not isinstance(payload, dict):
        return _legacy_state(raw)

    flow_kind = FlowKind.POPUP if payload.get("type") == FlowKind.POPUP.value else FlowKind.REDIRECT
    ref_key = payload.get("refKey")
    if ref_key is not None and not isinstance(ref_key, str):
        logger.warning(f"Ignoring non-string refKey in OAuth state: {type(ref_key).__name__}")
        ref_key = None

    return OAuthState(flow_kind=flow_kind, target_resource_id=ref_key or None)
