"""
Persisted CLI state: the multi-profile config file and where state lives.

Config shape (config.json):

    {
      "activeProfile": "default",
      "profiles": {
        "default": {"url": "...", "key": "...", "uiBaseUrl": "..."}
      }
    }

Older single-profile files (``{"url": ..., "key": ...}``) are read as a lone
"default" profile.
"""

import copy
import json
import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from n8n_errors import LocalIoError

logger = logging.getLogger(__name__)

DEFAULT_PROFILE = "default"
PROFILE_FIELDS = ("url", "key", "uiBaseUrl")


def default_home_dir() -> Path:
    return Path(os.environ.get("N8N_CLI_HOME") or Path.home() / ".n8n-cli")


@dataclass(frozen=True)
class StatePaths:
    home: Path
    versions: Path

    @classmethod
    def default(cls) -> "StatePaths":
        return cls(home=default_home_dir(), versions=Path("versions"))

    @property
    def config(self) -> Path:
        return self.home / "config.json"

    @property
    def favorites(self) -> Path:
        return self.home / "favorites.json"

    @property
    def webhook_history(self) -> Path:
        return self.home / "webhook-history.json"

    @property
    def backups(self) -> Path:
        return self.home / "backups"


def read_json(path: Path, default: Any = None) -> Any:
    """Read JSON from ``path``; missing, unreadable or corrupt files yield ``default``."""
    try:
        return json.loads(Path(path).read_text(encoding="utf-8"))
    except FileNotFoundError:
        return default
    except (OSError, ValueError) as e:
        logger.warning("Ignoring unreadable state file %s: %s", path, e)
        return default


def write_json(path: Path, obj: Any) -> None:
    """Write JSON via a temp file and atomic replace. Raises LocalIoError."""
    path = Path(path)
    tmp = path.with_suffix(path.suffix + f".tmp.{os.getpid()}")
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        tmp.write_text(json.dumps(obj, indent=2, ensure_ascii=False) + "\n", encoding="utf-8")
        tmp.replace(path)
    except OSError as e:
        raise LocalIoError(path, e) from e


def empty_profile() -> dict[str, str]:
    return {field: "" for field in PROFILE_FIELDS}


def default_state() -> dict[str, Any]:
    return {"activeProfile": DEFAULT_PROFILE, "profiles": {DEFAULT_PROFILE: empty_profile()}}


def normalize_state(raw: Any) -> dict[str, Any]:
    """Coerce whatever is on disk into the multi-profile shape."""
    if not isinstance(raw, dict):
        return default_state()

    state = dict(raw)
    profiles = state.get("profiles")
    if not isinstance(profiles, dict):
        # Flat {url, key} file from the single-profile layout
        legacy = empty_profile()
        for field in PROFILE_FIELDS:
            if isinstance(raw.get(field), str):
                legacy[field] = raw[field]
        profiles = {DEFAULT_PROFILE: legacy}

    cleaned = {}
    for name, profile in profiles.items():
        entry = empty_profile()
        if isinstance(profile, dict):
            for field in PROFILE_FIELDS:
                value = profile.get(field)
                if isinstance(value, str):
                    entry[field] = value
        cleaned[str(name)] = entry
    state["profiles"] = cleaned

    active = state.get("activeProfile")
    if not isinstance(active, str) or not active.strip():
        state["activeProfile"] = DEFAULT_PROFILE
    return state


class ProfileStore:
    """Named credential profiles plus an active-profile pointer in one JSON file.

    No locking: concurrent writers race and the last one wins.
    """

    def __init__(self, path: Path):
        self.path = Path(path)

    def read(self) -> dict[str, Any]:
        return normalize_state(read_json(self.path, default=None))

    def write(self, state: dict[str, Any]) -> dict[str, Any]:
        state = normalize_state(copy.deepcopy(state))
        # The active pointer must always name a real profile
        state["profiles"].setdefault(state["activeProfile"], empty_profile())
        write_json(self.path, state)
        return state

    def update(self, patch: dict[str, Any]) -> dict[str, Any]:
        """Shallow-merge ``patch`` into the top level of the stored state."""
        state = self.read()
        state.update(patch)
        return self.write(state)

    def ensure_profile(self, name: str) -> dict[str, Any]:
        state = self.read()
        if name in state["profiles"] and self.path.exists():
            return state
        state["profiles"].setdefault(name, empty_profile())
        logger.debug("Ensured profile '%s' in %s", name, self.path)
        return self.write(state)

    def active_profile(self) -> str:
        return self.read()["activeProfile"]

    def profile_names(self) -> list[str]:
        return sorted(self.read()["profiles"])

    def get_profile(self, name: str) -> dict[str, str]:
        return dict(self.read()["profiles"].get(name) or empty_profile())

    def set_active_profile(self, name: str) -> dict[str, Any]:
        state = self.read()
        state["profiles"].setdefault(name, empty_profile())
        state["activeProfile"] = name
        return self.write(state)

    def set_credentials(self, profile: str, url: str, key: str) -> dict[str, Any]:
        state = self.read()
        entry = state["profiles"].setdefault(profile, empty_profile())
        entry["url"] = url.strip()
        entry["key"] = key.strip()
        return self.write(state)

    def set_ui_base_url(self, profile: str, ui_base_url: str) -> dict[str, Any]:
        state = self.read()
        entry = state["profiles"].setdefault(profile, empty_profile())
        entry["uiBaseUrl"] = ui_base_url.strip()
        return self.write(state)

    def clear_credentials(self, profile: str) -> dict[str, Any]:
        return self.set_credentials(profile, "", "")
