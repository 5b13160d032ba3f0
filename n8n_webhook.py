"""
Webhook invocation for workflows triggered by a Webhook node.

The request body is pre-filled from the fields assigned by the Set node that
directly follows the webhook, merged with the body last sent to the same
workflow.
"""

import json
import logging
import shlex
import time
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path
from typing import Any
from urllib.parse import urlparse

import httpx

from n8n_config import read_json, write_json
from n8n_net import Resolver, resolve_host, wait_for_dns

logger = logging.getLogger(__name__)

WEBHOOK_NODE_TYPE = "n8n-nodes-base.webhook"
SET_NODE_TYPE = "n8n-nodes-base.set"
MODES = ("webhook", "webhook-test")
LEGACY_BUCKETS = ("string", "number", "boolean")
INVOKE_TIMEOUT = 60.0
WARM_UP_TIMEOUT = 2.5


# ==================== Graph ====================


def find_webhook_nodes(workflow: dict[str, Any]) -> list[dict[str, Any]]:
    """Enabled Webhook trigger nodes, in document order."""
    return [
        n for n in workflow.get("nodes") or []
        if isinstance(n, dict) and n.get("type") == WEBHOOK_NODE_TYPE and not n.get("disabled")
    ]


def next_node(workflow: dict[str, Any], node_name: str) -> dict[str, Any] | None:
    """Target of the first connection on the node's first "main" output."""
    connections = workflow.get("connections")
    entry = connections.get(node_name) if isinstance(connections, dict) else None
    outputs = entry.get("main") if isinstance(entry, dict) else None
    if not isinstance(outputs, list) or not outputs or not isinstance(outputs[0], list) or not outputs[0]:
        return None
    first = outputs[0][0]
    target = first.get("node") if isinstance(first, dict) else None
    for n in workflow.get("nodes") or []:
        if isinstance(n, dict) and n.get("name") == target:
            return n
    return None


# ==================== Set node shapes ====================


@dataclass(frozen=True)
class Assignments:
    """Set node v3.3+: ``parameters.assignments.assignments = [{name, value, type}]``."""

    items: tuple[dict[str, Any], ...]


@dataclass(frozen=True)
class LegacyBuckets:
    """Set node v1/v2: ``parameters.values = {string: [...], number: [...], boolean: [...]}``."""

    buckets: dict[str, tuple[dict[str, Any], ...]]


SetNodeParameters = Assignments | LegacyBuckets


def _entries(value: Any) -> tuple[dict[str, Any], ...]:
    if not isinstance(value, list):
        return ()
    return tuple(x for x in value if isinstance(x, dict))


def parse_set_parameters(node: dict[str, Any] | None) -> list[SetNodeParameters]:
    if not node or node.get("type") != SET_NODE_TYPE:
        return []
    params = node.get("parameters") or {}
    shapes: list[SetNodeParameters] = []

    match params.get("assignments"):
        case {"assignments": list(items)}:
            shapes.append(Assignments(_entries(items)))
        case {"value": list(items)}:
            shapes.append(Assignments(_entries(items)))
        case list(items):
            shapes.append(Assignments(_entries(items)))

    match params.get("values"):
        case dict(values):
            shapes.append(LegacyBuckets({b: _entries(values.get(b)) for b in LEGACY_BUCKETS}))

    return shapes


def extract_set_keys(node: dict[str, Any] | None) -> list[str]:
    """Field names assigned by a Set node, deduplicated in order."""
    keys: list[str] = []
    for shape in parse_set_parameters(node):
        match shape:
            case Assignments(items=items):
                names = [x.get("name") for x in items]
            case LegacyBuckets(buckets=buckets):
                names = [x.get("name") for b in LEGACY_BUCKETS for x in buckets.get(b, ())]
        for name in names:
            if isinstance(name, str) and name and name not in keys:
                keys.append(name)
    return keys


def derive_default_fields(
    workflow: dict[str, Any],
    entry: dict[str, Any],
    last_body: dict[str, Any] | None = None,
) -> dict[str, Any]:
    """Suggested body keys, pre-filled from the last body sent, "" otherwise."""
    last_body = last_body if isinstance(last_body, dict) else {}
    keys = extract_set_keys(next_node(workflow, entry.get("name")))
    return {k: last_body.get(k, "") for k in keys}


def initial_body(
    workflow: dict[str, Any],
    entry: dict[str, Any],
    last_body: dict[str, Any] | None = None,
) -> dict[str, Any]:
    body = dict(last_body) if isinstance(last_body, dict) else {}
    body.update(derive_default_fields(workflow, entry, last_body))
    return body


# ==================== Requests ====================


@dataclass
class WebhookRequest:
    method: str
    url: str
    body: dict[str, Any] | None = None

    @property
    def sends_body(self) -> bool:
        return self.method != "GET"

    def to_curl(self) -> str:
        cmd = f"curl -X {self.method} {shlex.quote(self.url)}"
        if self.sends_body and self.body is not None:
            cmd += " -H 'Content-Type: application/json'"
            cmd += f" -d {shlex.quote(json.dumps(self.body))}"
        return cmd


def build_request(
    entry: dict[str, Any],
    base_url: str,
    mode: str = "webhook",
    body: dict[str, Any] | None = None,
) -> WebhookRequest:
    if mode not in MODES:
        raise ValueError(f"Unknown webhook mode: {mode}")
    params = entry.get("parameters") or {}
    path = str(params.get("path") or entry.get("webhookId") or "").lstrip("/")
    method = str(params.get("httpMethod") or "GET").upper()
    url = f"{base_url.rstrip('/')}/{mode}/{path}"
    return WebhookRequest(method=method, url=url, body=body if method != "GET" else None)


@dataclass
class InvocationResult:
    ok: bool
    status_code: int | None = None
    reason: str = ""
    body: Any = None
    error: str = ""
    elapsed: float = 0.0


# ==================== History ====================


class WebhookHistory:
    """Last body sent per workflow id; one entry per id, overwritten each time."""

    def __init__(self, path: Path):
        self.path = Path(path)

    def load(self) -> dict[str, Any]:
        data = read_json(self.path, default={})
        return data if isinstance(data, dict) else {}

    def get(self, workflow_id: str) -> dict[str, Any] | None:
        entry = self.load().get(str(workflow_id))
        return entry if isinstance(entry, dict) else None

    def save(self, workflow_id: str, body: dict[str, Any]) -> None:
        history = self.load()
        history[str(workflow_id)] = body
        write_json(self.path, history)


# ==================== Invoker ====================


class WebhookInvoker:
    def __init__(
        self,
        history: WebhookHistory,
        http: httpx.Client | None = None,
        resolver: Resolver = resolve_host,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.history = history
        self._http = http or httpx.Client(timeout=INVOKE_TIMEOUT)
        self._resolver = resolver
        self._sleep = sleep

    def prepare(self, workflow_id: str, request: WebhookRequest) -> None:
        """Remember a non-empty body for the next invocation of this workflow."""
        if request.sends_body and request.body:
            self.history.save(workflow_id, request.body)

    def send(self, request: WebhookRequest) -> InvocationResult:
        """Fire the request. HTTP and transport errors are returned, not raised."""
        host = urlparse(request.url).hostname or ""
        wait_for_dns(host, timeout=WARM_UP_TIMEOUT, resolver=self._resolver, sleep=self._sleep)

        kwargs: dict[str, Any] = {}
        if request.sends_body and request.body is not None:
            kwargs["json"] = request.body
        started = time.monotonic()
        try:
            response = self._http.request(request.method, request.url, **kwargs)
        except httpx.RequestError as e:
            logger.info("Webhook %s %s failed: %s", request.method, request.url, e)
            return InvocationResult(ok=False, error=str(e) or type(e).__name__, elapsed=time.monotonic() - started)

        try:
            body = response.json()
        except ValueError:
            body = response.text
        return InvocationResult(
            ok=response.is_success,
            status_code=response.status_code,
            reason=response.reason_phrase,
            body=body,
            error="" if response.is_success else f"HTTP {response.status_code} {response.reason_phrase}",
            elapsed=time.monotonic() - started,
        )

    def invoke(self, workflow_id: str, request: WebhookRequest) -> InvocationResult:
        self.prepare(workflow_id, request)
        return self.send(request)

    def resend(
        self,
        workflow_id: str,
        request: WebhookRequest,
        new_body: dict[str, Any] | None = None,
    ) -> tuple[WebhookRequest, InvocationResult]:
        """Send again; an edited body is saved to history before it goes out."""
        if new_body is not None and request.sends_body:
            request = WebhookRequest(request.method, request.url, new_body)
            self.prepare(workflow_id, request)
        return request, self.send(request)

    def close(self) -> None:
        self._http.close()
