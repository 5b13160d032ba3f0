import json
import shlex
import tempfile
import unittest
from pathlib import Path

import httpx

from n8n_webhook import (
    Assignments,
    LegacyBuckets,
    WebhookHistory,
    WebhookInvoker,
    WebhookRequest,
    build_request,
    derive_default_fields,
    extract_set_keys,
    find_webhook_nodes,
    initial_body,
    next_node,
    parse_set_parameters,
)
from tests.fakes import ASSIGNMENTS, webhook_workflow


class FieldDerivationTests(unittest.TestCase):
    def setUp(self) -> None:
        self.workflow = webhook_workflow(ASSIGNMENTS)
        self.entry = find_webhook_nodes(self.workflow)[0]

    def test_fields_from_set_node(self) -> None:
        self.assertEqual(derive_default_fields(self.workflow, self.entry), {"amount": "", "currency": ""})

    def test_fields_prefilled_from_history(self) -> None:
        last = {"amount": 12.5, "note": "extra"}
        self.assertEqual(
            derive_default_fields(self.workflow, self.entry, last),
            {"amount": 12.5, "currency": ""},
        )
        self.assertEqual(
            initial_body(self.workflow, self.entry, last),
            {"amount": 12.5, "note": "extra", "currency": ""},
        )

    def test_no_set_node_means_no_fields(self) -> None:
        workflow = webhook_workflow()
        entry = find_webhook_nodes(workflow)[0]
        self.assertEqual(derive_default_fields(workflow, entry, {"a": 1}), {})
        self.assertIsNone(next_node(workflow, "Webhook"))

    def test_legacy_buckets(self) -> None:
        legacy = {
            "values": {
                "string": [{"name": "currency", "value": "EUR"}],
                "number": [{"name": "amount", "value": 1}],
                "boolean": [{"name": "paid", "value": False}, {"name": "amount"}],
            }
        }
        node = {"type": "n8n-nodes-base.set", "parameters": legacy}
        shapes = parse_set_parameters(node)
        self.assertEqual(len(shapes), 1)
        self.assertIsInstance(shapes[0], LegacyBuckets)
        self.assertEqual(extract_set_keys(node), ["currency", "amount", "paid"])

    def test_assignment_variants(self) -> None:
        for params in (
            ASSIGNMENTS,
            {"assignments": {"value": ASSIGNMENTS["assignments"]["assignments"]}},
            {"assignments": ASSIGNMENTS["assignments"]["assignments"]},
        ):
            with self.subTest(params=params):
                node = {"type": "n8n-nodes-base.set", "parameters": params}
                self.assertIsInstance(parse_set_parameters(node)[0], Assignments)
                self.assertEqual(extract_set_keys(node), ["amount", "currency"])

    def test_non_set_node_has_no_keys(self) -> None:
        self.assertEqual(extract_set_keys({"type": "n8n-nodes-base.code", "parameters": ASSIGNMENTS}), [])
        self.assertEqual(extract_set_keys(None), [])

    def test_malformed_connections_have_no_next_node(self) -> None:
        for connections in (
            {"Webhook": {"main": [{"node": "Edit Fields"}]}},
            {"Webhook": {"main": [[]]}},
            {"Webhook": {"main": {"0": []}}},
            {"Webhook": ["Edit Fields"]},
            ["Webhook"],
        ):
            with self.subTest(connections=connections):
                workflow = dict(self.workflow, connections=connections)
                self.assertIsNone(next_node(workflow, "Webhook"))
                self.assertEqual(derive_default_fields(workflow, self.entry), {})

    def test_disabled_webhooks_are_skipped(self) -> None:
        self.assertEqual([n["name"] for n in find_webhook_nodes(self.workflow)], ["Webhook"])


class BuildRequestTests(unittest.TestCase):
    def test_production_and_test_urls(self) -> None:
        entry = find_webhook_nodes(webhook_workflow())[0]
        self.assertEqual(build_request(entry, "http://h:5678/").url, "http://h:5678/webhook/invoice")
        self.assertEqual(build_request(entry, "http://h:5678", "webhook-test").url, "http://h:5678/webhook-test/invoice")

    def test_path_falls_back_to_webhook_id(self) -> None:
        entry = {"type": "n8n-nodes-base.webhook", "webhookId": "abc-123", "parameters": {}}
        request = build_request(entry, "http://h", body={"a": 1})
        self.assertEqual(request.url, "http://h/webhook/abc-123")
        self.assertEqual(request.method, "GET")
        self.assertIsNone(request.body)
        self.assertFalse(request.sends_body)

    def test_unknown_mode(self) -> None:
        with self.assertRaises(ValueError):
            build_request({"parameters": {"path": "x"}}, "http://h", "webhook-prod")

    def test_curl(self) -> None:
        request = WebhookRequest("POST", "http://h/webhook/x", {"msg": "it's"})
        parts = shlex.split(request.to_curl())
        self.assertEqual(parts[:4], ["curl", "-X", "POST", "http://h/webhook/x"])
        self.assertEqual(json.loads(parts[-1]), {"msg": "it's"})


class InvokerTests(unittest.TestCase):
    def setUp(self) -> None:
        self._tmp = tempfile.TemporaryDirectory()
        self.history = WebhookHistory(Path(self._tmp.name) / "webhook-history.json")
        self.seen = []

    def tearDown(self) -> None:
        self._tmp.cleanup()

    def invoker(self, handler):
        def recording(request):
            # history as it was on disk when the request went out
            self.seen.append((request, self.history.get("7")))
            return handler(request)

        http = httpx.Client(transport=httpx.MockTransport(recording))
        return WebhookInvoker(self.history, http=http, resolver=lambda host: True, sleep=lambda s: None)

    def test_history_saved_before_send(self) -> None:
        invoker = self.invoker(lambda r: httpx.Response(200, json={"ok": True}))
        request = WebhookRequest("POST", "http://h/webhook/x", {"amount": 10})
        result = invoker.invoke("7", request)

        self.assertTrue(result.ok)
        self.assertEqual(result.body, {"ok": True})
        sent, history_at_send = self.seen[0]
        self.assertEqual(json.loads(sent.content), {"amount": 10})
        self.assertEqual(history_at_send, {"amount": 10})

    def test_resend_with_edited_body_overwrites_history(self) -> None:
        invoker = self.invoker(lambda r: httpx.Response(200, text="done"))
        request = WebhookRequest("POST", "http://h/webhook/x", {"amount": 10})
        invoker.invoke("7", request)
        request, result = invoker.resend("7", request, {"amount": 20})

        self.assertEqual(result.body, "done")
        self.assertEqual(request.body, {"amount": 20})
        self.assertEqual(self.seen[-1][1], {"amount": 20})
        self.assertEqual(self.history.load(), {"7": {"amount": 20}})

    def test_get_and_empty_bodies_are_not_remembered(self) -> None:
        invoker = self.invoker(lambda r: httpx.Response(204))
        invoker.invoke("7", WebhookRequest("GET", "http://h/webhook/x"))
        invoker.invoke("7", WebhookRequest("POST", "http://h/webhook/x", {}))
        self.assertEqual(self.history.load(), {})
        self.assertEqual(self.seen[0][0].content, b"")

    def test_http_errors_are_returned(self) -> None:
        invoker = self.invoker(lambda r: httpx.Response(404, json={"message": "not registered"}))
        result = invoker.send(WebhookRequest("POST", "http://h/webhook-test/x", {"a": 1}))
        self.assertFalse(result.ok)
        self.assertEqual(result.status_code, 404)
        self.assertEqual(result.body, {"message": "not registered"})

    def test_transport_errors_are_returned(self) -> None:
        def refuse(request):
            raise httpx.ConnectError("connection refused")

        result = self.invoker(refuse).send(WebhookRequest("POST", "http://h/webhook/x", {"a": 1}))
        self.assertFalse(result.ok)
        self.assertIsNone(result.status_code)
        self.assertIn("refused", result.error)


class HistoryTests(unittest.TestCase):
    def test_one_entry_per_workflow(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            history = WebhookHistory(Path(tmp) / "h.json")
            history.save("1", {"a": 1})
            history.save("2", {"b": 2})
            history.save("1", {"a": 3})
            self.assertEqual(history.load(), {"1": {"a": 3}, "2": {"b": 2}})
            self.assertIsNone(history.get("3"))


if __name__ == "__main__":
    unittest.main()
