"""
Workflow management: list, delete, edit, local versions and favorites.

Every mutating operation snapshots the full workflow first; if the snapshot
cannot be written the mutation is not sent.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Any

from n8n_backup import BackupStore, VersionStore
from n8n_client import N8nClient
from n8n_config import read_json, write_json
from n8n_errors import LocalIoError, N8nCliError, ValidationError
from n8n_workflow import filter_by_name, find_by_exact_name, update_payload

logger = logging.getLogger(__name__)


def _timestamp(workflow: dict[str, Any]) -> float:
    value = workflow.get("updatedAt") or workflow.get("createdAt")
    if not value:
        return 0.0
    try:
        return datetime.fromisoformat(str(value).replace("Z", "+00:00")).timestamp()
    except ValueError:
        return 0.0


def list_workflows(
    client: N8nClient,
    search: str | None = None,
    limit: int | None = None,
    favorites: list[str] | tuple[str, ...] = (),
    recent: bool = False,
) -> list[dict[str, Any]]:
    """Workflows matching ``search``; favorites first, newest first with ``recent``."""
    workflows = filter_by_name(client.list_all_workflows(), search)
    if recent:
        workflows.sort(key=_timestamp, reverse=True)
    favs = {str(f) for f in favorites}
    # sort() is stable, so the order inside each group is preserved
    workflows.sort(key=lambda w: str(w.get("id")) not in favs)
    if limit is not None and limit >= 0:
        workflows = workflows[:limit]
    return workflows


# ==================== Delete ====================


@dataclass
class DeleteResult:
    workflow_id: str
    name: str
    action: str  # deleted | would-delete | failed
    backup: Path | None = None
    error: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.workflow_id,
            "name": self.name,
            "action": self.action,
            "backup": str(self.backup) if self.backup else None,
            "error": self.error or None,
        }


def select_targets(
    workflows: list[dict[str, Any]],
    workflow_id: str | None = None,
    name: str | None = None,
    search: str | None = None,
) -> list[dict[str, Any]]:
    if workflow_id:
        return [w for w in workflows if str(w.get("id")) == str(workflow_id).strip()]
    if name:
        return find_by_exact_name(workflows, name)
    return filter_by_name(workflows, search)


def delete_workflows(
    client: N8nClient,
    backups: BackupStore,
    workflow_id: str | None = None,
    name: str | None = None,
    search: str | None = None,
    dry_run: bool = False,
) -> list[DeleteResult]:
    """
    Delete workflows selected by id, exact name or name substring.

    Raises:
        ValidationError: no selector was given (nothing is sent to the server).
    """
    if not (workflow_id or name or (search or "").strip()):
        raise ValidationError("Nothing to delete. Provide an id, --name or --search.")

    targets = select_targets(client.list_all_workflows(), workflow_id, name, search)
    results = []
    for w in targets:
        wf_id = str(w.get("id"))
        wf_name = str(w.get("name") or "")
        try:
            full = client.get_workflow(wf_id)
            if dry_run:
                preview = backups.snapshot_path(wf_id, full.get("name"))
                results.append(DeleteResult(wf_id, wf_name, "would-delete", backup=preview))
                continue
            backup = backups.snapshot(wf_id, full.get("name"), full)
            client.delete_workflow(wf_id)
            logger.info("Deleted workflow #%s '%s'", wf_id, wf_name)
            results.append(DeleteResult(wf_id, wf_name, "deleted", backup=backup))
        except LocalIoError as e:
            logger.error("Not deleting #%s: backup failed: %s", wf_id, e)
            results.append(DeleteResult(wf_id, wf_name, "failed", error=f"backup failed, delete not sent: {e}"))
        except N8nCliError as e:
            logger.error("Delete of #%s failed: %s", wf_id, e)
            results.append(DeleteResult(wf_id, wf_name, "failed", error=str(e)))
    return results


# ==================== Edit ====================


@dataclass
class EditResult:
    workflow_id: str
    action: str  # updated | would-update
    patch: dict[str, Any]
    backup: Path | None = None
    active_dropped: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.workflow_id,
            "action": self.action,
            "patch": self.patch,
            "backup": str(self.backup) if self.backup else None,
            "activeDropped": self.active_dropped,
        }


def edit_workflow(
    client: N8nClient,
    backups: BackupStore,
    workflow_id: str,
    name: str | None = None,
    active: bool | None = None,
    dry_run: bool = False,
    active_in_body: bool = False,
) -> EditResult:
    """
    Rename and/or (de)activate a workflow after snapshotting it.

    The name goes through PUT /workflows/{id}. ``active`` is toggled with the
    activate/deactivate endpoints, unless ``active_in_body`` asks for the
    legacy behaviour of sending it in the PUT body; servers that reject it
    there get one retry without the field, then the endpoint call.
    """
    workflow_id = str(workflow_id or "").strip()
    if not workflow_id:
        raise ValidationError("Missing workflow id")

    patch: dict[str, Any] = {}
    if name and name.strip():
        patch["name"] = name.strip()
    if active is not None:
        patch["active"] = bool(active)
    if not patch:
        raise ValidationError("Nothing to edit. Provide --name or --active true/false")

    current = client.get_workflow(workflow_id)
    if dry_run:
        preview = backups.snapshot_path(workflow_id, current.get("name"))
        return EditResult(workflow_id, "would-update", patch, backup=preview)

    backup = backups.snapshot(workflow_id, current.get("name"), current)

    active_dropped = False
    toggle_active = "active" in patch and bool(current.get("active")) != patch["active"]
    if active_in_body:
        body = update_payload(current, **patch)
        _, active_dropped = client.update_workflow_compat(workflow_id, body)
        toggle_active = toggle_active and active_dropped
    elif "name" in patch:
        client.update_workflow(workflow_id, update_payload(current, name=patch["name"]))

    if toggle_active:
        if patch["active"]:
            client.activate_workflow(workflow_id)
        else:
            client.deactivate_workflow(workflow_id)

    return EditResult(workflow_id, "updated", patch, backup=backup, active_dropped=active_dropped)


# ==================== Versions ====================


def save_version(client: N8nClient, versions: VersionStore, workflow_id: str, comment: str = "") -> Path:
    """Fetch the workflow and store it as a local version."""
    workflow = client.get_workflow(workflow_id)
    return versions.save(workflow.get("name"), workflow, comment=comment)


# ==================== Favorites ====================


class Favorites:
    """Set of favorite workflow ids stored as a JSON list."""

    def __init__(self, path: Path):
        self.path = Path(path)

    def load(self) -> list[str]:
        data = read_json(self.path, default=[])
        if not isinstance(data, list):
            return []
        return [str(x) for x in data]

    def toggle(self, workflow_id: str) -> bool:
        """Flip membership; returns True if the workflow is now a favorite."""
        workflow_id = str(workflow_id)
        favs = self.load()
        if workflow_id in favs:
            favs.remove(workflow_id)
        else:
            favs.append(workflow_id)
        write_json(self.path, favs)
        return workflow_id in favs
