"""Transport rendering for OAuth callback outcomes.

Popup flows get a tiny HTML page that reports back to the opener window with
``postMessage`` and closes itself, so the builder page owns error display.
Redirect flows land back on the builder with a ``google_auth`` query flag.
"""

from __future__ import annotations

import json
from typing import Any

from fastapi.responses import HTMLResponse, RedirectResponse, Response

from .callback import CallbackOutcome, PopupError, PopupSuccess, RedirectError, RedirectSuccess

BUILDER_PATH = "/builder"

SUCCESS_MESSAGE = "GOOGLE_AUTH_SUCCESS"
ERROR_MESSAGE = "GOOGLE_AUTH_ERROR"

_POPUP_TEMPLATE = """<html>
  <body>
    <script>
      window.opener && window.opener.postMessage({{
        type: '{message_type}',
        {field}: {value}
      }}, '*');
      window.close();
    </script>
  </body>
</html>
"""


def script_json(value: Any) -> str:
    """JSON-encode a value for inline use inside a <script> element."""
    return (
        json.dumps(value)
        .replace("<", "\\u003c")
        .replace(">", "\\u003e")
        .replace("&", "\\u0026")
    )


def popup_page(message_type: str, field: str, value: Any) -> str:
    return _POPUP_TEMPLATE.format(message_type=message_type, field=field, value=script_json(value))


def builder_redirect_url(flag: str, base_url: str = "") -> str:
    return f"{base_url.rstrip('/')}{BUILDER_PATH}?google_auth={flag}"


def render_outcome(outcome: CallbackOutcome, base_url: str = "") -> Response:
    """Map a callback outcome to its HTTP response.

    Args:
        outcome: Result of OAuthCallbackHandler.handle_callback
        base_url: Optional absolute prefix for builder redirects

    Returns:
        HTMLResponse for popup outcomes, RedirectResponse (302) otherwise
    """
    if isinstance(outcome, PopupSuccess):
        user = outcome.user.model_dump()
        return HTMLResponse(popup_page(SUCCESS_MESSAGE, "user", user))

    if isinstance(outcome, PopupError):
        return HTMLResponse(popup_page(ERROR_MESSAGE, "error", outcome.error))

    if isinstance(outcome, RedirectSuccess):
        return RedirectResponse(builder_redirect_url("success", base_url), status_code=302)

    if isinstance(outcome, RedirectError):
        return RedirectResponse(builder_redirect_url(outcome.flag, base_url), status_code=302)

    raise TypeError(f"Unknown OAuth callback outcome: {type(outcome).__name__}")
