"""
Everything a command needs, built from the global CLI options.
"""

from dataclasses import dataclass, field

from n8n_auth import CredentialFlags, Environment, ResolvedCredentials, derive_base_url, resolve_credentials
from n8n_backup import BackupStore, VersionStore
from n8n_client import N8nClient
from n8n_config import ProfileStore, StatePaths
from n8n_manage import Favorites
from n8n_webhook import WebhookHistory, WebhookInvoker


@dataclass
class AppContext:
    flags: CredentialFlags = field(default_factory=CredentialFlags)
    env: Environment = field(default_factory=Environment.from_os)
    paths: StatePaths = field(default_factory=StatePaths.default)
    client_kwargs: dict = field(default_factory=dict)

    @property
    def store(self) -> ProfileStore:
        return ProfileStore(self.paths.config)

    def credentials(self) -> ResolvedCredentials:
        return resolve_credentials(self.flags, self.env, self.store)

    def client(self) -> N8nClient:
        """API client for the resolved credentials; raises MissingCredential first."""
        return N8nClient.from_credentials(self.credentials(), **self.client_kwargs)

    def base_url(self) -> str:
        return derive_base_url(self.credentials())

    def backups(self) -> BackupStore:
        return BackupStore(self.paths.backups)

    def versions(self) -> VersionStore:
        return VersionStore(self.paths.versions)

    def favorites(self) -> Favorites:
        return Favorites(self.paths.favorites)

    def history(self) -> WebhookHistory:
        return WebhookHistory(self.paths.webhook_history)

    def invoker(self) -> WebhookInvoker:
        return WebhookInvoker(self.history())
