from __future__ import annotations

import html
import json

_PAGE = """<!DOCTYPE html>
<html>
  <head>
    <meta charset="utf-8">
    <title>{title}</title>
    <meta http-equiv="refresh" content="1;url={target_attr}">
  </head>
  <body>
    <h1>{title}</h1>
    <p>{message}</p>
    <script>
      (function () {{
        var target = {target_js};
        var sessionId = {session_js};
        if (window.opener && sessionId) {{
          window.opener.postMessage({{ type: "bexio-oauth-complete", sessionId: sessionId }}, "*");
          window.close();
          return;
        }}
        window.location.replace(target);
        {close_js}
      }})();
    </script>
  </body>
</html>
"""


def _js(value: str | None) -> str:
    return json.dumps(value).replace("<", "\\u003c")


def _render(title: str, message: str, target: str, session_id: str | None, close: bool) -> str:
    return _PAGE.format(
        title=html.escape(title),
        message=html.escape(message),
        target_attr=html.escape(target, quote=True),
        target_js=_js(target),
        session_js=_js(session_id),
        close_js="setTimeout(function () { window.close(); }, 500);" if close else "",
    )


def web_complete_page(target: str, session_id: str) -> str:
    """Popup/redirect variant: notify the opener, otherwise redirect."""
    return _render(
        "Connected to bexio",
        "Authentication complete. You can return to the app.",
        target,
        session_id,
        close=False,
    )


def mobile_complete_page(target: str, session_id: str) -> str:
    """In-app browser variant: hand off through the deep link, then close."""
    return _render(
        "Connected to bexio",
        "Authentication complete. Returning to the app...",
        target,
        session_id,
        close=True,
    )
