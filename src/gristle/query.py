"""Query-string construction for the records and attachments endpoints."""

from __future__ import annotations

from typing import Mapping


def build_query(params: Mapping[str, str]) -> str:
    """Return ``"?k=v&k2=v2"`` for the non-empty values, or ``""``.

    Values are expected to be serialised already and are not percent-encoded;
    the HTTP layer quotes whatever the URL requires. Callers must not rely on
    the parameter order.
    """

    parts = [f"{key}={value}" for key, value in params.items() if value != ""]
    if not parts:
        return ""
    return "?" + "&".join(parts)


__all__ = ["build_query"]
