"""Load-time configuration for the remote script."""

from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass
from typing import Any, Dict, Optional

logger = logging.getLogger("ArrangementMirror.config")

SELECTED_TRACK_BINDING = "live_set view selected_track"

_DEFAULT_BINDING = SELECTED_TRACK_BINDING
_DEFAULT_NOTE_STORE = "arrangement_notes"
_DEFAULT_PORT = 9878
_CONFIG_PATH = os.path.expanduser("~/.arrangement_mirror/config.json")


@dataclass(frozen=True)
class MirrorConfig:
    binding: str = _DEFAULT_BINDING
    note_store: str = _DEFAULT_NOTE_STORE
    port: int = _DEFAULT_PORT

    @property
    def follows_selection(self) -> bool:
        return " ".join(self.binding.split()) == SELECTED_TRACK_BINDING


def _load_optional_config(config_path: str) -> Dict[str, Any]:
    """Load optional JSON config payload from disk."""
    if not os.path.exists(config_path):
        return {}
    try:
        with open(config_path, "r", encoding="utf-8") as handle:
            payload = json.load(handle)
        if isinstance(payload, dict):
            return payload
    except Exception as e:
        logger.warning("Ignoring unreadable config %s: %s", config_path, e)
        return {}
    return {}


def _config_or_env(config_payload: Dict[str, Any], key: str, env_key: str, default: Any) -> Any:
    """Return environment override, config value, or default."""
    env_value = os.environ.get(env_key)
    if env_value is not None and str(env_value).strip():
        return env_value
    if isinstance(config_payload, dict) and key in config_payload:
        value = config_payload.get(key)
        if value is not None and (not isinstance(value, str) or value.strip()):
            return value
    return default


def _port_or_default(value: Any) -> int:
    try:
        port = int(value)
    except (TypeError, ValueError):
        return _DEFAULT_PORT
    if 0 < port < 65536:
        return port
    return _DEFAULT_PORT


def load_config(config_path: Optional[str] = None) -> MirrorConfig:
    payload = _load_optional_config(config_path or _CONFIG_PATH)
    binding = _config_or_env(payload, "binding", "ARRANGEMENT_MIRROR_BINDING", _DEFAULT_BINDING)
    note_store = _config_or_env(payload, "note_store", "ARRANGEMENT_MIRROR_NOTE_STORE", _DEFAULT_NOTE_STORE)
    port = _config_or_env(payload, "port", "ARRANGEMENT_MIRROR_PORT", _DEFAULT_PORT)
    return MirrorConfig(
        binding=str(binding).strip(),
        note_store=str(note_store).strip(),
        port=_port_or_default(port),
    )
