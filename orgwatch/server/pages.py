"""HTML served to the login popup by the callback endpoint.

The page posts its result to ``window.opener`` (target origin pinned to
its own origin, which is the opener's) and closes itself. Opened outside
a popup it falls back to navigating to the return URL.
"""

from __future__ import annotations

import html
import json
import secrets

from fastapi.responses import HTMLResponse

from ..auth.browser import OAUTH_ERROR, OAUTH_SUCCESS


_PAGE = """<!DOCTYPE html>
<html>
<head><title>{title}</title>
<style>
  body {{ font-family: ui-monospace, SFMono-Regular, Menlo, Consolas, monospace;
         display: flex; align-items: center; justify-content: center;
         height: 100vh; margin: 0; background: #0a0a0a; color: #fafafa; }}
  .card {{ text-align: center; padding: 2rem 3rem; }}
  h1 {{ font-size: 1.25rem; margin-bottom: 0.5rem; color: {accent}; }}
  p {{ font-size: 0.75rem; color: #a1a1aa; }}
</style></head>
<body><div class="card">
  <h1>{heading}</h1>
  <p>{detail}</p>
</div>
<script nonce="{nonce}">
  (function () {{
    var message = {message};
    var fallback = {fallback};
    setTimeout(function () {{
      if (window.opener) {{
        window.opener.postMessage(message, window.location.origin);
        window.close();
      }} else {{
        window.location.href = fallback;
      }}
    }}, {delay});
  }})();
</script>
</body></html>"""


def _script_json(value: object) -> str:
    """JSON for embedding inside a <script> element."""
    return (
        json.dumps(value)
        .replace("<", "\\u003c")
        .replace(">", "\\u003e")
        .replace("&", "\\u0026")
        .replace("\u2028", "\\u2028")
        .replace("\u2029", "\\u2029")
    )


def _page_response(page: str, nonce: str, status_code: int = 200) -> HTMLResponse:
    return HTMLResponse(
        content=page,
        status_code=status_code,
        headers={
            "Cache-Control": "no-store",
            "Content-Security-Policy": (
                f"default-src 'none'; style-src 'unsafe-inline'; script-src 'nonce-{nonce}'"
            ),
            "X-Content-Type-Options": "nosniff",
        },
    )


def popup_success_page(return_url: str = "/dashboard", delay_ms: int = 1000) -> HTMLResponse:
    """Page that tells the opener the login succeeded."""
    nonce = secrets.token_urlsafe(16)
    page = _PAGE.format(
        title="Authentication Complete",
        accent="#22c55e",
        heading="// authenticated",
        detail="closing window...",
        nonce=nonce,
        message=_script_json({"type": OAUTH_SUCCESS}),
        fallback=_script_json(return_url),
        delay=int(delay_ms),
    )
    return _page_response(page, nonce)


def popup_error_page(error: str, return_url: str = "/dashboard") -> HTMLResponse:
    """Page that tells the opener the login failed with ``error``."""
    nonce = secrets.token_urlsafe(16)
    page = _PAGE.format(
        title="Authentication Error",
        accent="#ef4444",
        heading="// authentication failed",
        detail=html.escape(error),
        nonce=nonce,
        message=_script_json({"type": OAUTH_ERROR, "error": error}),
        fallback=_script_json(return_url),
        delay=0,
    )
    return _page_response(page, nonce)
