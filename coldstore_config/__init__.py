"""
coldstore_config -- single public entrypoint for engine settings.

Responsibility:
    ``get_active_settings()`` is the one way runtime code obtains settings.
    It loads the YAML file named by ``COLDSTORE_CONFIG`` (or the packaged
    ``defaults.yaml``), applies ``COLDSTORE_*`` environment overrides and
    caches the result.

Architecture position:
    Configuration -- sits beside ``coldstore_kernel``.  The kernel never
    imports from this package; services receive values from it.

Audit relevance:
    Every load emits a ``COLDSTORE_CONFIG_TRACE`` log entry with the source
    file and the settings checksum.
"""

from __future__ import annotations

import logging
import os
import threading
from pathlib import Path

from coldstore_config.loader import compute_checksum, load_settings
from coldstore_config.schema import EngineSettings

_logger = logging.getLogger("coldstore.config")

DEFAULT_CONFIG_FILE = Path(__file__).parent / "defaults.yaml"

_active: EngineSettings | None = None
_lock = threading.Lock()


def get_active_settings(reload: bool = False) -> EngineSettings:
    """Load (once) and return the active engine settings."""
    global _active
    with _lock:
        if _active is not None and not reload:
            return _active
        path = Path(os.environ.get("COLDSTORE_CONFIG", DEFAULT_CONFIG_FILE))
        settings = load_settings(path)
        _logger.info(
            "COLDSTORE_CONFIG_TRACE",
            extra={
                "source": str(path),
                "checksum": compute_checksum(settings.to_dict()),
            },
        )
        _active = settings
        return settings


def reset_active_settings() -> None:
    """Drop the cached settings. FOR TESTING ONLY."""
    global _active
    with _lock:
        _active = None


__all__ = [
    "EngineSettings",
    "get_active_settings",
    "load_settings",
    "reset_active_settings",
]
