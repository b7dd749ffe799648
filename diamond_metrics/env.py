from __future__ import annotations

import os

PRIMARY_PREFIX = "DIAMOND_METRICS_"


def get_env(name: str, default: str | None = None) -> str | None:
    """
    Resolve configuration environment variables.

    Only the `DIAMOND_METRICS_` prefix is consulted; empty values count as unset
    so a blank export in a shell profile does not override the defaults.
    """
    value = os.getenv(f"{PRIMARY_PREFIX}{name}")
    if value is None or not value.strip():
        return default
    return value
