"""
Import and export of workflows between the n8n server and local files.

Sources for import: a JSON file, an HTTP(S) URL, a .zip bundle of JSON files,
or a directory of JSON files. Items are processed one after another; a failing
item is recorded in its result and the batch carries on.
"""

import json
import logging
import zipfile
from dataclasses import dataclass, field
from pathlib import Path, PurePosixPath
from typing import Any

import httpx

from n8n_backup import BackupStore
from n8n_client import N8nClient
from n8n_errors import LocalIoError, N8nCliError, SourceUnavailable, ValidationError
from n8n_net import download_json, is_url
from n8n_workflow import clean_workflow, export_file_name, find_by_exact_name

logger = logging.getLogger(__name__)

FALLBACK_NAME = "Imported workflow"
BUNDLE_NAME = "bundle.zip"


@dataclass
class SourceItem:
    label: str
    document: dict[str, Any] | None = None
    error: str = ""


@dataclass
class ImportResult:
    source: str
    name: str
    action: str  # created | updated | would-create | would-update | failed
    workflow_id: str | None = None
    backup: Path | None = None
    error: str = ""

    @property
    def ok(self) -> bool:
        return self.action != "failed"

    def to_dict(self) -> dict[str, Any]:
        return {
            "source": self.source,
            "name": self.name,
            "action": self.action,
            "id": self.workflow_id,
            "backup": str(self.backup) if self.backup else None,
            "error": self.error or None,
        }


@dataclass
class ExportReport:
    written: list[Path] = field(default_factory=list)
    failed: list[tuple[str, str]] = field(default_factory=list)
    bundle: Path | None = None
    bundle_error: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {
            "written": [str(p) for p in self.written],
            "failed": [{"workflow": w, "error": e} for w, e in self.failed],
            "bundle": str(self.bundle) if self.bundle else None,
            "bundleError": self.bundle_error or None,
        }


# ==================== Bundles ====================


def pack_bundle(path: Path, files: list[Path]) -> Path:
    """Zip ``files`` (stored by base name) into ``path``."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    with zipfile.ZipFile(path, "w", compression=zipfile.ZIP_DEFLATED, compresslevel=9) as zf:
        for f in files:
            zf.write(f, arcname=Path(f).name)
    return path


def read_bundle(path: Path) -> dict[str, bytes]:
    """Return ``{entry name: bytes}`` for every JSON entry in the archive."""
    entries = {}
    with zipfile.ZipFile(path) as zf:
        for info in zf.infolist():
            entry = PurePosixPath(info.filename)
            if info.is_dir() or "__MACOSX" in entry.parts or entry.name.startswith("."):
                continue
            if entry.suffix.lower() != ".json":
                continue
            entries[info.filename] = zf.read(info)
    return entries


# ==================== Sourcing ====================


def _parse_item(label: str, raw: bytes | str) -> SourceItem:
    try:
        doc = json.loads(raw)
    except ValueError as e:
        return SourceItem(label=label, error=f"invalid JSON: {e}")
    if not isinstance(doc, dict):
        return SourceItem(label=label, error="not a workflow object")
    return SourceItem(label=label, document=doc)


def load_sources(source: str, http: httpx.Client | None = None, **download_kwargs) -> list[SourceItem]:
    """
    Read every workflow document ``source`` points at.

    Raises:
        SourceUnavailable: the file, archive, directory or URL cannot be read.
    """
    source = str(source or "").strip()
    if not source:
        raise ValidationError("Import source is required (file path, URL or bundle.zip)")

    if is_url(source):
        doc = download_json(source, http=http, **download_kwargs)
        if not isinstance(doc, dict):
            raise SourceUnavailable(source, 1, "downloaded JSON is not a workflow object")
        return [SourceItem(label=source, document=doc)]

    path = Path(source).expanduser()
    try:
        if path.is_dir():
            files = sorted(p for p in path.iterdir() if p.is_file() and p.suffix.lower() == ".json")
            return [_parse_item(str(p), p.read_bytes()) for p in files]
        if path.suffix.lower() == ".zip":
            return [_parse_item(f"{path}:{name}", data) for name, data in read_bundle(path).items()]
        return [_parse_item(str(path), path.read_bytes())]
    except (OSError, zipfile.BadZipFile) as e:
        raise SourceUnavailable(source, 1, e) from e


def detect_source_name(source: str, **kwargs) -> str:
    """Best-effort name of a single-workflow source; "" when unknown."""
    try:
        items = load_sources(source, **kwargs)
    except N8nCliError:
        return ""
    if len(items) != 1 or not items[0].document:
        return ""
    return str(items[0].document.get("name") or "").strip()


def choose_name(document: dict[str, Any], override: str | None) -> str:
    return (override or "").strip() or str(document.get("name") or "").strip() or FALLBACK_NAME


# ==================== Import ====================


def import_item(
    client: N8nClient,
    item: SourceItem,
    backups: BackupStore,
    name: str | None = None,
    upsert: bool = True,
    dry_run: bool = False,
    clean: bool = True,
) -> ImportResult:
    """Create or update one workflow. Raises on failure; see import_workflows."""
    final_name = choose_name(item.document, name)
    doc = {**item.document, "name": final_name}
    body = clean_workflow(doc) if clean else doc

    existing = None
    if upsert:
        matches = find_by_exact_name(client.list_all_workflows(), final_name)
        if len(matches) > 1:
            logger.warning(
                "%d workflows are named '%s'; updating the first (#%s)",
                len(matches), final_name, matches[0].get("id"),
            )
        existing = matches[0] if matches else None

    if existing is None:
        if dry_run:
            return ImportResult(item.label, final_name, "would-create")
        created = client.create_workflow(body)
        return ImportResult(item.label, final_name, "created", workflow_id=str((created or {}).get("id") or ""))

    workflow_id = str(existing.get("id"))
    if dry_run:
        preview = backups.snapshot_path(workflow_id, existing.get("name"))
        return ImportResult(item.label, final_name, "would-update", workflow_id=workflow_id, backup=preview)

    full = client.get_workflow(workflow_id)
    backup = backups.snapshot(workflow_id, full.get("name"), full)
    client.update_workflow(workflow_id, body)
    return ImportResult(item.label, final_name, "updated", workflow_id=workflow_id, backup=backup)


def import_workflows(
    client: N8nClient,
    source: str,
    backups: BackupStore,
    name: str | None = None,
    upsert: bool = True,
    dry_run: bool = False,
    clean: bool = True,
    http: httpx.Client | None = None,
    **download_kwargs,
) -> list[ImportResult]:
    """
    Import every workflow found at ``source``.

    With ``upsert`` an existing workflow with exactly the same name is backed
    up and then updated in place; otherwise a new workflow is created.
    ``dry_run`` performs the lookups but sends no POST/PUT and writes no backup.
    """
    items = load_sources(source, http=http, **download_kwargs)
    if not items:
        raise SourceUnavailable(source, 1, "no JSON workflows found")
    if name and len(items) > 1:
        logger.warning("Ignoring name override for multi-workflow source %s", source)
        name = None

    results = []
    for item in items:
        if item.document is None:
            logger.error("Skipping %s: %s", item.label, item.error)
            results.append(ImportResult(item.label, "", "failed", error=item.error))
            continue
        try:
            result = import_item(client, item, backups, name=name, upsert=upsert, dry_run=dry_run, clean=clean)
        except (N8nCliError, OSError) as e:
            logger.error("Import of %s failed: %s", item.label, e)
            result = ImportResult(item.label, choose_name(item.document, name), "failed", error=str(e))
            if isinstance(e, LocalIoError):
                result.error = f"backup failed, update not sent: {e}"
        results.append(result)
    return results


# ==================== Export ====================


def _write_json(path: Path, doc: Any) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(doc, indent=2, ensure_ascii=False) + "\n", encoding="utf-8")


def export_workflows(
    client: N8nClient,
    out: str | Path,
    workflow_id: str | None = None,
    all_workflows: bool = False,
    bundle: bool = False,
    clean: bool = True,
) -> ExportReport:
    """
    Write workflows as ``{name}__{id}.json`` files under ``out``.

    A single workflow exported to a path ending in .json is written to that
    exact file. With ``bundle`` every written file is also zipped into
    ``out/bundle.zip``; a bundle failure leaves the files in place.
    """
    if not all_workflows and not workflow_id:
        raise ValidationError("Export needs a workflow id or --all")

    out = Path(out).expanduser()
    report = ExportReport()

    if all_workflows:
        targets = [(str(w.get("id")), str(w.get("name") or "")) for w in client.list_all_workflows()]
        logger.info("Exporting %d workflow(s) to %s", len(targets), out)
    else:
        targets = [(str(workflow_id), "")]

    for wf_id, wf_name in targets:
        try:
            full = client.get_workflow(wf_id)
            doc = clean_workflow(full) if clean else full
            if not all_workflows and out.suffix.lower() == ".json":
                path = out
            else:
                path = out / export_file_name(full, fallback_id=wf_id)
            _write_json(path, doc)
            report.written.append(path)
        except (N8nCliError, OSError) as e:
            if not all_workflows:
                raise
            logger.error("Export of #%s %s failed: %s", wf_id, wf_name, e)
            report.failed.append((f"#{wf_id} {wf_name}".strip(), str(e)))

    if bundle and report.written:
        bundle_dir = out.parent if out.suffix.lower() == ".json" else out
        try:
            report.bundle = pack_bundle(bundle_dir / BUNDLE_NAME, report.written)
        except (OSError, zipfile.BadZipFile) as e:
            logger.error("Bundle creation failed: %s", e)
            report.bundle_error = str(e)
    return report
