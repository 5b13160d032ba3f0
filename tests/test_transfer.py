import json
import tempfile
import unittest
import zipfile
from pathlib import Path

import httpx

from n8n_backup import BackupStore
from n8n_errors import RemoteApiError, SourceUnavailable, ValidationError
from n8n_transfer import (
    FALLBACK_NAME,
    choose_name,
    detect_source_name,
    export_workflows,
    import_workflows,
    load_sources,
    read_bundle,
)
from n8n_workflow import clean_workflow
from tests.fakes import FakeN8n, RecordingBackups, unwritable_dir, workflow_doc, write_json


class ImportTests(unittest.TestCase):
    def setUp(self) -> None:
        self._tmp = tempfile.TemporaryDirectory()
        self.tmp = Path(self._tmp.name)
        self.events = []
        self.server = FakeN8n([workflow_doc(42, "Invoice Sync"), workflow_doc(43, "Reports")], events=self.events)
        self.client = self.server.client()
        self.backups = RecordingBackups(self.tmp / "backups", self.events)

    def tearDown(self) -> None:
        self.client.close()
        self._tmp.cleanup()

    def source(self, doc, name="wf.json"):
        return str(write_json(self.tmp / "in" / name, doc))

    def test_upsert_updates_existing_by_exact_name(self) -> None:
        incoming = workflow_doc(999, "Invoice Sync", nodes=[{"name": "New", "type": "t"}])
        results = import_workflows(self.client, self.source(incoming), self.backups)

        self.assertEqual([(r.action, r.workflow_id) for r in results], [("updated", "42")])
        self.assertEqual(self.server.mutations(), [("PUT", "/workflows/42")])
        snapshots = list((self.tmp / "backups").iterdir())
        self.assertEqual(len(snapshots), 1)
        self.assertEqual(results[0].backup, snapshots[0])
        self.assertLess(self.events.index(("snapshot", "42")), self.events.index(("PUT", "/workflows/42")))

    def test_update_sends_cleaned_document(self) -> None:
        incoming = workflow_doc(999, "Invoice Sync")
        import_workflows(self.client, self.source(incoming), self.backups)
        put_body = [b for m, p, b in self.server.calls if m == "PUT"][0]
        self.assertEqual(put_body, clean_workflow(incoming))

    def test_snapshot_holds_pre_update_document(self) -> None:
        before = json.loads(json.dumps(self.server.workflows["42"]))
        results = import_workflows(self.client, self.source(workflow_doc(1, "Invoice Sync")), self.backups)
        self.assertEqual(json.loads(results[0].backup.read_text(encoding="utf-8")), before)

    def test_creates_when_no_name_matches(self) -> None:
        results = import_workflows(self.client, self.source(workflow_doc(7, "Brand New")), self.backups)
        self.assertEqual(results[0].action, "created")
        self.assertEqual(self.server.mutations(), [("POST", "/workflows")])
        post_body = self.server.calls[-1][2]
        self.assertNotIn("id", post_body)
        self.assertEqual(post_body["name"], "Brand New")
        self.assertFalse((self.tmp / "backups").exists())

    def test_without_upsert_always_creates(self) -> None:
        results = import_workflows(self.client, self.source(workflow_doc(1, "Invoice Sync")), self.backups, upsert=False)
        self.assertEqual(results[0].action, "created")
        self.assertEqual(self.server.mutations(), [("POST", "/workflows")])

    def test_dry_run_sends_no_mutations(self) -> None:
        existing = import_workflows(
            self.client, self.source(workflow_doc(1, "Invoice Sync")), self.backups, dry_run=True,
        )
        new = import_workflows(
            self.client, self.source(workflow_doc(2, "Unseen"), "new.json"), self.backups, dry_run=True,
        )
        self.assertEqual(existing[0].action, "would-update")
        self.assertEqual(existing[0].workflow_id, "42")
        self.assertEqual(new[0].action, "would-create")
        self.assertEqual(self.server.mutations(), [])
        self.assertFalse((self.tmp / "backups").exists())

    def test_name_precedence(self) -> None:
        self.assertEqual(choose_name({"name": "Doc"}, " Override "), "Override")
        self.assertEqual(choose_name({"name": "Doc"}, None), "Doc")
        self.assertEqual(choose_name({}, ""), FALLBACK_NAME)

    def test_name_override_targets_upsert(self) -> None:
        results = import_workflows(
            self.client, self.source(workflow_doc(1, "Something else")), self.backups, name="Reports",
        )
        self.assertEqual((results[0].action, results[0].workflow_id), ("updated", "43"))

    def test_bundle_skips_non_json_and_metadata(self) -> None:
        bundle = self.tmp / "bundle.zip"
        with zipfile.ZipFile(bundle, "w") as zf:
            zf.writestr("a.json", json.dumps(workflow_doc(1, "Alpha")))
            zf.writestr("b.json", json.dumps(workflow_doc(2, "Beta")))
            zf.writestr("__MACOSX/._a.json", "junk")
            zf.writestr("README.txt", "hello")
        self.assertEqual(sorted(read_bundle(bundle)), ["a.json", "b.json"])

        results = import_workflows(self.client, str(bundle), self.backups, name="ignored for bundles")
        self.assertEqual(sorted(r.name for r in results), ["Alpha", "Beta"])
        self.assertTrue(all(r.action == "created" for r in results))

    def test_item_failures_do_not_abort_batch(self) -> None:
        folder = self.tmp / "many"
        write_json(folder / "1.json", workflow_doc(1, "Good One"))
        (folder / "2.json").write_text("{broken", encoding="utf-8")
        write_json(folder / "3.json", workflow_doc(3, "Also Good"))

        results = import_workflows(self.client, str(folder), self.backups)
        self.assertEqual([r.action for r in results], ["created", "failed", "created"])
        self.assertIn("invalid JSON", results[1].error)

    def test_remote_failure_recorded_per_item(self) -> None:
        self.server.fail("POST", "/workflows", status=400, body={"message": "bad nodes"})
        results = import_workflows(self.client, self.source(workflow_doc(1, "New")), self.backups)
        self.assertEqual(results[0].action, "failed")
        self.assertFalse(results[0].ok)

    def test_backup_failure_blocks_update(self) -> None:
        backups = BackupStore(unwritable_dir(self.tmp))
        results = import_workflows(self.client, self.source(workflow_doc(1, "Invoice Sync")), backups)
        self.assertEqual(results[0].action, "failed")
        self.assertTrue(results[0].error.startswith("backup failed"))
        self.assertNotIn("PUT", [m for m, _ in self.server.mutations()])

    def test_unreadable_sources(self) -> None:
        with self.assertRaises(SourceUnavailable):
            import_workflows(self.client, str(self.tmp / "missing.json"), self.backups)
        with self.assertRaises(ValidationError):
            load_sources("  ")
        bad_zip = self.tmp / "bad.zip"
        bad_zip.write_text("not a zip", encoding="utf-8")
        with self.assertRaises(SourceUnavailable):
            load_sources(str(bad_zip))

    def test_url_source(self) -> None:
        doc = workflow_doc(5, "From URL")
        http = httpx.Client(transport=httpx.MockTransport(lambda r: httpx.Response(200, json=doc)))
        results = import_workflows(
            self.client, "https://x.trycloudflare.com/wf.json", self.backups,
            http=http, resolver=lambda host: True, sleep=lambda s: None,
        )
        self.assertEqual((results[0].action, results[0].name), ("created", "From URL"))

    def test_detect_source_name(self) -> None:
        self.assertEqual(detect_source_name(self.source(workflow_doc(1, "Detected"))), "Detected")
        self.assertEqual(detect_source_name(str(self.tmp / "missing.json")), "")


class ExportTests(unittest.TestCase):
    def setUp(self) -> None:
        self._tmp = tempfile.TemporaryDirectory()
        self.out = Path(self._tmp.name) / "exports"
        self.server = FakeN8n([workflow_doc(1, "Alpha"), workflow_doc(2, "Beta/Gamma")])
        self.client = self.server.client()

    def tearDown(self) -> None:
        self.client.close()
        self._tmp.cleanup()

    def test_requires_target(self) -> None:
        with self.assertRaises(ValidationError):
            export_workflows(self.client, self.out)
        self.assertEqual(self.server.calls, [])

    def test_single_export_is_cleaned(self) -> None:
        report = export_workflows(self.client, self.out, workflow_id="1")
        self.assertEqual(report.written, [self.out / "Alpha__1.json"])
        doc = json.loads(report.written[0].read_text(encoding="utf-8"))
        self.assertEqual(doc, clean_workflow(self.server.workflows["1"]))

    def test_single_export_to_explicit_file(self) -> None:
        target = self.out / "mine.json"
        report = export_workflows(self.client, target, workflow_id="2", clean=False)
        self.assertEqual(report.written, [target])
        self.assertEqual(json.loads(target.read_text(encoding="utf-8"))["id"], "2")

    def test_single_export_failure_raises(self) -> None:
        with self.assertRaises(RemoteApiError):
            export_workflows(self.client, self.out, workflow_id="404")

    def test_all_with_bundle_and_partial_failure(self) -> None:
        self.server.fail("GET", "/workflows/2")
        report = export_workflows(self.client, self.out, all_workflows=True, bundle=True)

        self.assertEqual(report.written, [self.out / "Alpha__1.json"])
        self.assertEqual(len(report.failed), 1)
        self.assertIn("#2", report.failed[0][0])
        self.assertEqual(report.bundle, self.out / "bundle.zip")
        with zipfile.ZipFile(report.bundle) as zf:
            self.assertEqual(zf.namelist(), ["Alpha__1.json"])
        self.assertEqual(report.to_dict()["bundle"], str(self.out / "bundle.zip"))


if __name__ == "__main__":
    unittest.main()
