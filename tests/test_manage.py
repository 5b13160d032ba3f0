import json
import tempfile
import unittest
from pathlib import Path

from n8n_backup import BackupStore, VersionStore
from n8n_errors import LocalIoError, RemoteApiError, ValidationError
from n8n_manage import Favorites, delete_workflows, edit_workflow, list_workflows, save_version
from tests.fakes import FakeN8n, RecordingBackups, unwritable_dir, workflow_doc


class ManageTestCase(unittest.TestCase):
    def setUp(self) -> None:
        self._tmp = tempfile.TemporaryDirectory()
        self.tmp = Path(self._tmp.name)
        self.events = []
        self.server = FakeN8n(
            [
                workflow_doc(41, "X", updatedAt="2024-01-01T00:00:00Z"),
                workflow_doc(42, "X", updatedAt="2024-03-01T00:00:00Z"),
                workflow_doc(43, "Old report", updatedAt="2024-02-01T00:00:00Z", active=True),
            ],
            events=self.events,
        )
        self.client = self.server.client()
        self.backups = RecordingBackups(self.tmp / "backups", self.events)

    def tearDown(self) -> None:
        self.client.close()
        self._tmp.cleanup()


class ListWorkflowsTests(ManageTestCase):
    def test_favorites_first_then_server_order(self) -> None:
        ids = [w["id"] for w in list_workflows(self.client, favorites=["43"])]
        self.assertEqual(ids, ["43", "41", "42"])

    def test_recent_orders_by_update_time(self) -> None:
        ids = [w["id"] for w in list_workflows(self.client, recent=True)]
        self.assertEqual(ids, ["42", "43", "41"])

    def test_search_and_limit(self) -> None:
        self.assertEqual([w["id"] for w in list_workflows(self.client, search="report")], ["43"])
        self.assertEqual(len(list_workflows(self.client, limit=2)), 2)


class DeleteTests(ManageTestCase):
    def test_backup_written_before_delete(self) -> None:
        fetched = json.loads(json.dumps(self.server.workflows["42"]))
        results = delete_workflows(self.client, self.backups, workflow_id="42")

        self.assertEqual([(r.workflow_id, r.action) for r in results], [("42", "deleted")])
        self.assertEqual(json.loads(results[0].backup.read_text(encoding="utf-8")), fetched)
        self.assertEqual(len(list((self.tmp / "backups").iterdir())), 1)
        self.assertLess(self.events.index(("snapshot", "42")), self.events.index(("DELETE", "/workflows/42")))
        self.assertNotIn("42", self.server.workflows)

    def test_failed_backup_blocks_delete(self) -> None:
        results = delete_workflows(self.client, BackupStore(unwritable_dir(self.tmp)), workflow_id="42")
        self.assertEqual(results[0].action, "failed")
        self.assertIn("delete not sent", results[0].error)
        self.assertEqual(self.server.mutations(), [])
        self.assertIn("42", self.server.workflows)

    def test_requires_a_selector(self) -> None:
        with self.assertRaises(ValidationError):
            delete_workflows(self.client, self.backups, search="   ")
        self.assertEqual(self.server.calls, [])

    def test_exact_name_selects_every_match(self) -> None:
        results = delete_workflows(self.client, self.backups, name="X")
        self.assertEqual(sorted(r.workflow_id for r in results), ["41", "42"])
        self.assertEqual(sorted(p for _, p in self.server.mutations()), ["/workflows/41", "/workflows/42"])

    def test_search_dry_run(self) -> None:
        results = delete_workflows(self.client, self.backups, search="REPORT", dry_run=True)
        self.assertEqual([(r.workflow_id, r.action) for r in results], [("43", "would-delete")])
        self.assertIsNotNone(results[0].backup)
        self.assertEqual(self.server.mutations(), [])
        self.assertFalse((self.tmp / "backups").exists())

    def test_remote_failure_is_recorded(self) -> None:
        self.server.fail("DELETE", "/workflows/41")
        results = delete_workflows(self.client, self.backups, name="X")
        self.assertEqual({r.workflow_id: r.action for r in results}, {"41": "failed", "42": "deleted"})


class EditTests(ManageTestCase):
    def test_rename_backs_up_then_puts(self) -> None:
        result = edit_workflow(self.client, self.backups, "42", name="Renamed")
        self.assertEqual(result.action, "updated")
        self.assertEqual(self.server.mutations(), [("PUT", "/workflows/42")])
        put_body = [b for m, _, b in self.server.calls if m == "PUT"][0]
        self.assertEqual(put_body["name"], "Renamed")
        self.assertNotIn("active", put_body)
        self.assertLess(self.events.index(("snapshot", "42")), self.events.index(("PUT", "/workflows/42")))

    def test_active_toggle_uses_endpoints(self) -> None:
        edit_workflow(self.client, self.backups, "42", active=True)
        edit_workflow(self.client, self.backups, "43", active=False)
        self.assertEqual(
            self.server.mutations(),
            [("POST", "/workflows/42/activate"), ("POST", "/workflows/43/deactivate")],
        )

    def test_active_unchanged_sends_nothing_but_backs_up(self) -> None:
        result = edit_workflow(self.client, self.backups, "43", active=True)
        self.assertEqual(self.server.mutations(), [])
        self.assertTrue(result.backup.exists())

    def test_dry_run(self) -> None:
        result = edit_workflow(self.client, self.backups, "42", name="Renamed", active=True, dry_run=True)
        self.assertEqual(result.action, "would-update")
        self.assertEqual(result.patch, {"name": "Renamed", "active": True})
        self.assertEqual(self.server.mutations(), [])

    def test_empty_patch_is_rejected_before_any_call(self) -> None:
        with self.assertRaises(ValidationError):
            edit_workflow(self.client, self.backups, "42", name="  ")
        self.assertEqual(self.server.calls, [])

    def test_failed_backup_blocks_edit(self) -> None:
        with self.assertRaises(LocalIoError):
            edit_workflow(self.client, BackupStore(unwritable_dir(self.tmp)), "42", name="Renamed")
        self.assertEqual(self.server.mutations(), [])

    def test_active_in_body_falls_back_when_rejected(self) -> None:
        self.server.reject_active_in_body = True
        result = edit_workflow(self.client, self.backups, "42", name="Renamed", active=True, active_in_body=True)
        self.assertTrue(result.active_dropped)
        self.assertEqual(
            self.server.mutations(),
            [("PUT", "/workflows/42"), ("PUT", "/workflows/42"), ("POST", "/workflows/42/activate")],
        )
        self.assertEqual(self.server.workflows["42"]["name"], "Renamed")
        self.assertTrue(self.server.workflows["42"]["active"])

    def test_missing_workflow(self) -> None:
        with self.assertRaises(RemoteApiError):
            edit_workflow(self.client, self.backups, "404", name="x")


class VersionAndFavoriteTests(ManageTestCase):
    def test_save_version(self) -> None:
        versions = VersionStore(self.tmp / "versions")
        path = save_version(self.client, versions, "43", comment="nightly")
        self.assertEqual(path.parent.name, "old_report")
        self.assertEqual(json.loads(path.read_text(encoding="utf-8"))["id"], "43")
        self.assertEqual(versions.list("Old report"), [path])

    def test_favorites_toggle(self) -> None:
        favorites = Favorites(self.tmp / "favorites.json")
        self.assertEqual(favorites.load(), [])
        self.assertTrue(favorites.toggle("42"))
        self.assertTrue(favorites.toggle(43))
        self.assertEqual(favorites.load(), ["42", "43"])
        self.assertFalse(favorites.toggle("42"))
        self.assertEqual(favorites.load(), ["43"])


if __name__ == "__main__":
    unittest.main()
