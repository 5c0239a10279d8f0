"""
===========================================================================
config_loader.py — Configuration Loading Module
===========================================================================

PURPOSE:
    This file loads the application's settings from a JSON file called
    "config.json" and fills in anything that is missing with defaults.

    The config tells the app:
    - Where Redis lives (the indexed-URL set, history and context lists)
    - How session identifiers are derived (shared or per URL + cookie)
    - How pages are split into context chunks
    - Which local text model answers chat questions

HOW IT WORKS:
    1. Start from DEFAULT_CONFIG.
    2. If "config.json" (or $CONFIG_PATH) exists → merge it on top.
    3. Apply a few environment overrides (REDIS_URL, SESSION_POLICY).

USED BY:
    main.py, dependencies.py, models_loader.py
===========================================================================
"""

import copy
import json
import os

CONFIG_PATH = os.getenv("CONFIG_PATH", "config.json")

DEFAULT_CONFIG = {
    "redis_url": "redis://localhost:6379/0",
    "indexed_urls_key": "indexed-urls",
    "history_amount": 10,
    # "composite" = url + "--" + cookie token, "shared" = one constant id
    "session_policy": "composite",
    "shared_session_id": "mock-session",
    "session_cookie_name": "sessionId",
    "anonymous_session_token": "anonymous",
    # 0 disables the per-URL indexing lock
    "indexing_lock_seconds": 120,
    "context": {
        "namespace": "default",
        "chunk_size": 1000,
        "chunk_overlap": 100,
        "fetch_timeout": 30.0,
        "top_k": 4,
    },
    "text_models": [{"name": "Default", "path": "", "n_ctx": 2048}],
}


def _merge(base: dict, override: dict) -> dict:
    """Recursively merge ``override`` into a copy of ``base``."""
    merged = copy.deepcopy(base)
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def load_config(path: str = None) -> dict:
    """
    Load and return the application configuration.

    Args:
        path (str, optional): Config file to read. Defaults to CONFIG_PATH.

    Returns:
        dict: DEFAULT_CONFIG with the file contents and environment
              overrides applied. A missing file is not an error, the
              defaults are enough to start the app against a local Redis.
    """
    path = path or CONFIG_PATH
    config = copy.deepcopy(DEFAULT_CONFIG)

    if os.path.exists(path):
        with open(path, "r") as f:
            config = _merge(config, json.load(f))

    # Environment wins over the file (handy for containers)
    if os.getenv("REDIS_URL"):
        config["redis_url"] = os.environ["REDIS_URL"]
    if os.getenv("SESSION_POLICY"):
        config["session_policy"] = os.environ["SESSION_POLICY"]

    return config


# ---------------------------------------------------------------------------
# Load config once when this module is first imported
# ---------------------------------------------------------------------------
config = load_config()
