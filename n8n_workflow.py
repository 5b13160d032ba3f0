"""
Pure helpers over workflow documents: cleaning for portability, listing
envelopes, name matching and file-name sanitizing.
"""

import copy
import re
import unicodedata
from typing import Any

NODE_DEFAULTS = {
    "notes": "",
    "notesInFlow": False,
    "disabled": False,
    "typeVersion": 1,
}

UPDATABLE_FIELDS = ("name", "nodes", "connections", "settings", "staticData")


def _dict_or(value: Any, default: dict) -> dict:
    return copy.deepcopy(value) if isinstance(value, dict) else default


def clean_node(node: dict[str, Any]) -> dict[str, Any]:
    return {
        "name": node.get("name"),
        "type": node.get("type"),
        "position": copy.deepcopy(node.get("position")),
        "parameters": _dict_or(node.get("parameters"), {}),
        "notes": node.get("notes") or NODE_DEFAULTS["notes"],
        "notesInFlow": bool(node.get("notesInFlow") or NODE_DEFAULTS["notesInFlow"]),
        "disabled": bool(node.get("disabled") or NODE_DEFAULTS["disabled"]),
        "typeVersion": node.get("typeVersion") or NODE_DEFAULTS["typeVersion"],
    }


def clean_workflow(workflow: dict[str, Any] | None) -> dict[str, Any]:
    """
    Strip instance-specific fields (ids, timestamps, versionId, pinData, stats)
    so a workflow exported from one n8n instance can be created on another.

    Never mutates ``workflow``; ``clean_workflow(clean_workflow(w)) == clean_workflow(w)``.
    """
    workflow = workflow if isinstance(workflow, dict) else {}
    nodes = workflow.get("nodes")
    return {
        "name": workflow.get("name"),
        "nodes": [clean_node(n) for n in nodes if isinstance(n, dict)] if isinstance(nodes, list) else [],
        "connections": _dict_or(workflow.get("connections"), {}),
        "settings": _dict_or(workflow.get("settings"), {}),
        "staticData": _dict_or(workflow.get("staticData"), {"lastId": 1}),
    }


def update_payload(workflow: dict[str, Any], **overrides) -> dict[str, Any]:
    """Build the body for PUT /workflows/{id} from a fetched workflow."""
    payload = {
        "name": workflow.get("name"),
        "nodes": workflow.get("nodes", []),
        "connections": workflow.get("connections", {}),
        "settings": workflow.get("settings") or {},
        "staticData": workflow.get("staticData"),
    }
    payload.update(overrides)
    return {k: v for k, v in payload.items() if v is not None}


def as_workflow_list(payload: Any) -> list[dict[str, Any]]:
    """Accept a bare array or a ``{"data": [...]}`` envelope."""
    if isinstance(payload, dict):
        payload = payload.get("data", [])
    if not isinstance(payload, list):
        return []
    return [w for w in payload if isinstance(w, dict)]


def find_by_exact_name(workflows: list[dict[str, Any]], name: str) -> list[dict[str, Any]]:
    """Case-sensitive exact name match."""
    return [w for w in workflows if str(w.get("name") or "") == name]


def filter_by_name(workflows: list[dict[str, Any]], query: str | None) -> list[dict[str, Any]]:
    """Case-insensitive substring match; an empty query keeps everything."""
    q = (query or "").strip().lower()
    if not q:
        return list(workflows)
    return [w for w in workflows if q in str(w.get("name") or "").lower()]


def sanitize_backup_name(name: str | None, max_len: int = 80) -> str:
    """Lowercase ASCII slug made of ``[a-z0-9._-]`` with single separators."""
    text = unicodedata.normalize("NFKD", str(name or "workflow").lower())
    text = text.encode("ascii", "ignore").decode("ascii")
    text = re.sub(r"[^a-z0-9._-]+", "_", text)
    # Collapse runs of separators, keeping the first of each run
    text = re.sub(r"([._-])[._-]+", r"\1", text)
    text = text.strip("._-")[:max_len].rstrip("._-")
    return text or "workflow"


def safe_export_name(name: str | None) -> str:
    """Keep the workflow name readable but legal as a file name."""
    safe = re.sub(r'[\\/:*?"<>|]', "_", str(name or "workflow"))
    safe = re.sub(r"\s+", " ", safe).strip()
    return safe[:120] or "workflow"


def export_file_name(workflow: dict[str, Any], fallback_id: str = "") -> str:
    workflow_id = workflow.get("id") or fallback_id or "noid"
    return f"{safe_export_name(workflow.get('name'))}__{workflow_id}.json"
