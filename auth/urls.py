from __future__ import annotations

import urllib.parse


def append_query_params(url: str, params: dict[str, str]) -> str:
    parsed = urllib.parse.urlparse(url)
    existing = urllib.parse.parse_qs(parsed.query, keep_blank_values=True)
    for key, value in params.items():
        existing[key] = [value]

    new_query = urllib.parse.urlencode(existing, doseq=True)
    return urllib.parse.urlunparse(parsed._replace(query=new_query))


def app_link(scheme: str, params: dict[str, str]) -> str:
    """Deep link back into the native app, e.g. ``bexio-sync://oauth-complete/?sessionId=...``."""
    return append_query_params(f"{scheme}://oauth-complete/", params)
