import itertools
import tempfile
import unittest
from pathlib import Path

from n8n_auth import (
    CredentialFlags,
    Environment,
    ResolvedCredentials,
    assert_credentials,
    derive_base_url,
    resolve_credentials,
)
from n8n_config import ProfileStore
from n8n_errors import MissingCredential


class ResolveCredentialsTests(unittest.TestCase):
    def setUp(self) -> None:
        self._tmp = tempfile.TemporaryDirectory()
        self.store = ProfileStore(Path(self._tmp.name) / "config.json")

    def tearDown(self) -> None:
        self._tmp.cleanup()

    def test_each_field_takes_highest_non_empty_tier(self) -> None:
        for flag, env, cfg in itertools.product([None, "A"], [None, "B"], [None, "C"]):
            with self.subTest(flag=flag, env=env, cfg=cfg):
                self.store.set_credentials("default", cfg or "", "")
                creds = resolve_credentials(
                    CredentialFlags(url=flag),
                    Environment({"N8N_URL": env} if env else {}),
                    self.store,
                )
                self.assertEqual(creds.url, flag or env or cfg or "")

    def test_whitespace_flag_falls_through_to_env(self) -> None:
        self.store.set_credentials("default", "C", "KC")
        creds = resolve_credentials(CredentialFlags(url="   "), Environment({"N8N_URL": " B "}), self.store)
        self.assertEqual(creds.url, "B")
        self.assertEqual(creds.source, "env")

    def test_url_and_key_resolve_independently(self) -> None:
        self.store.set_credentials("default", "C", "KC")
        creds = resolve_credentials(CredentialFlags(url="A"), Environment({"N8N_API_KEY": "KB"}), self.store)
        self.assertEqual(creds.url, "A")
        self.assertEqual(creds.key, "KB")
        self.assertEqual(creds.source, "flags")

    def test_source_labels(self) -> None:
        creds = resolve_credentials(CredentialFlags(), Environment(), self.store)
        self.assertEqual(creds.source, "none")

        self.store.set_credentials("default", "C", "")
        creds = resolve_credentials(CredentialFlags(), Environment(), self.store)
        self.assertEqual(creds.source, "config")

    def test_base_url_alias_is_read_from_env(self) -> None:
        creds = resolve_credentials(CredentialFlags(), Environment({"N8N_BASE_URL": "http://h"}), self.store)
        self.assertEqual(creds.url, "http://h")

    def test_selected_profile_is_created(self) -> None:
        creds = resolve_credentials(CredentialFlags(profile="staging"), Environment(), self.store)
        self.assertEqual(creds.profile, "staging")
        self.assertIn("staging", self.store.profile_names())

    def test_active_profile_is_used_when_no_flag(self) -> None:
        self.store.set_credentials("prod", "http://prod", "kp")
        self.store.set_active_profile("prod")
        creds = resolve_credentials(CredentialFlags(), Environment(), self.store)
        self.assertEqual((creds.profile, creds.url, creds.key), ("prod", "http://prod", "kp"))

    def test_masked_hides_key(self) -> None:
        creds = ResolvedCredentials(url="http://h", key="secret", profile="default", source="flags")
        self.assertNotIn("secret", str(creds.masked()))


class AssertCredentialsTests(unittest.TestCase):
    def test_missing_url_reported_first(self) -> None:
        with self.assertRaises(MissingCredential) as cm:
            assert_credentials(ResolvedCredentials(url="", key="", profile="default"))
        self.assertEqual(cm.exception.field, "url")
        self.assertIn("N8N_URL", cm.exception.message)

    def test_missing_key(self) -> None:
        with self.assertRaises(MissingCredential) as cm:
            assert_credentials(ResolvedCredentials(url="http://h", key="", profile="default"))
        self.assertEqual(cm.exception.field, "key")

    def test_complete_credentials_pass(self) -> None:
        creds = ResolvedCredentials(url="http://h", key="k", profile="default")
        self.assertIs(assert_credentials(creds), creds)


class DeriveBaseUrlTests(unittest.TestCase):
    def test_strips_api_suffix(self) -> None:
        for url in ("http://h:5678/api/v1", "http://h:5678/api/v1/", "http://h:5678/api", "http://h:5678/"):
            with self.subTest(url=url):
                creds = ResolvedCredentials(url=url, key="k", profile="default")
                self.assertEqual(derive_base_url(creds), "http://h:5678")

    def test_ui_base_url_wins(self) -> None:
        creds = ResolvedCredentials(url="http://api/api/v1", key="k", profile="default", ui_base_url="https://ui/")
        self.assertEqual(derive_base_url(creds), "https://ui")


if __name__ == "__main__":
    unittest.main()
