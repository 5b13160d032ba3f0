"""
Credential resolution: CLI flags > environment > active profile, per field.
"""

import os
import re
from collections.abc import Mapping
from dataclasses import dataclass, field

from n8n_config import DEFAULT_PROFILE, ProfileStore
from n8n_errors import MissingCredential

URL_ENV_VARS = ("N8N_URL", "N8N_BASE_URL")
KEY_ENV_VARS = ("N8N_API_KEY",)


@dataclass(frozen=True)
class Environment:
    """Snapshot of environment variables handed to the resolver."""

    vars: Mapping[str, str] = field(default_factory=dict)

    @classmethod
    def from_os(cls) -> "Environment":
        return cls(dict(os.environ))

    def first(self, names: tuple[str, ...]) -> str:
        for name in names:
            value = (self.vars.get(name) or "").strip()
            if value:
                return value
        return ""


@dataclass(frozen=True)
class CredentialFlags:
    url: str | None = None
    key: str | None = None
    profile: str | None = None


@dataclass(frozen=True)
class ResolvedCredentials:
    url: str
    key: str
    profile: str
    ui_base_url: str = ""
    source: str = "none"

    def masked(self) -> dict[str, str]:
        return {
            "profile": self.profile,
            "source": self.source,
            "url": self.url or "(not set)",
            "key": "********" if self.key else "(not set)",
            "uiBaseUrl": self.ui_base_url or "(not set)",
        }


def resolve_credentials(
    flags: CredentialFlags,
    env: Environment,
    store: ProfileStore,
) -> ResolvedCredentials:
    """
    Merge flags, environment and the stored profile into one credential set.

    The selected profile is created in the store if it does not exist yet.
    ``url`` and ``key`` are resolved independently, so they may come from
    different tiers. ``source`` names the highest tier that supplied either.
    """
    state = store.read()
    profile = (flags.profile or "").strip() or state.get("activeProfile") or DEFAULT_PROFILE
    state = store.ensure_profile(profile)
    stored = state["profiles"].get(profile, {})

    url_flag = (flags.url or "").strip()
    key_flag = (flags.key or "").strip()
    url_env = env.first(URL_ENV_VARS)
    key_env = env.first(KEY_ENV_VARS)
    url_cfg = (stored.get("url") or "").strip()
    key_cfg = (stored.get("key") or "").strip()

    if url_flag or key_flag:
        source = "flags"
    elif url_env or key_env:
        source = "env"
    elif url_cfg or key_cfg:
        source = "config"
    else:
        source = "none"

    return ResolvedCredentials(
        url=url_flag or url_env or url_cfg,
        key=key_flag or key_env or key_cfg,
        profile=profile,
        ui_base_url=(stored.get("uiBaseUrl") or "").strip(),
        source=source,
    )


def assert_credentials(creds: ResolvedCredentials) -> ResolvedCredentials:
    """Raise MissingCredential unless both URL and key are present."""
    if not creds.url:
        raise MissingCredential("url", ["--url", " / ".join(URL_ENV_VARS), f"profile '{creds.profile}'"])
    if not creds.key:
        raise MissingCredential("key", ["--key", " / ".join(KEY_ENV_VARS), f"profile '{creds.profile}'"])
    return creds


def derive_base_url(creds: ResolvedCredentials) -> str:
    """UI/webhook base URL: configured uiBaseUrl, else the API URL minus /api[/v1]."""
    base = (creds.ui_base_url or creds.url or "").strip()
    base = re.sub(r"/api/v1/?$", "", base, flags=re.IGNORECASE)
    base = re.sub(r"/api/?$", "", base, flags=re.IGNORECASE)
    return base.rstrip("/")
