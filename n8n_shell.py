"""
Interactive terminal shell: main menu, workflow picker with per-workflow
actions, settings, and the webhook invoke loop with its body tree editor.

All terminal I/O goes through ``Prompter`` so the flows can be driven by a
scripted prompter in tests.
"""

import json
import webbrowser
from collections.abc import Sequence
from typing import Any

from rich.console import Console
from rich.prompt import Confirm, Prompt
from rich.table import Table

from n8n_context import AppContext
from n8n_errors import N8nCliError
from n8n_manage import delete_workflows, edit_workflow, list_workflows, save_version
from n8n_share import download_command, share_workflow
from n8n_transfer import detect_source_name, export_workflows, import_workflows
from n8n_tree import TreeNode, parse_input
from n8n_webhook import (
    build_request,
    derive_default_fields,
    find_webhook_nodes,
    initial_body,
    next_node,
)
from n8n_workflow import clean_workflow

BACK = object()


class Prompter:
    """choose / ask / confirm / status on top of rich."""

    def __init__(self, console: Console | None = None):
        self.console = console or Console()

    def print(self, *args, **kwargs) -> None:
        self.console.print(*args, **kwargs)

    def choose(self, message: str, options: Sequence[tuple[str, Any]], default: int = 1) -> Any:
        table = Table(show_header=False, box=None, pad_edge=False)
        for i, (label, _) in enumerate(options, start=1):
            table.add_row(f"[cyan]{i:>3}[/cyan]", label)
        self.console.print(table)
        picked = Prompt.ask(
            message,
            console=self.console,
            choices=[str(i) for i in range(1, len(options) + 1)],
            default=str(min(max(default, 1), len(options))),
            show_choices=False,
        )
        return options[int(picked) - 1][1]

    def ask(self, message: str, default: str = "", password: bool = False) -> str:
        return Prompt.ask(message, console=self.console, default=default, password=password, show_default=not password)

    def confirm(self, message: str, default: bool = False) -> bool:
        return Confirm.ask(message, console=self.console, default=default)

    def status(self, text: str):
        return self.console.status(text)


def workflow_label(w: dict[str, Any], favorites: Sequence[str] = ()) -> str:
    dot = "[green]●[/green]" if w.get("active") else "[dim]○[/dim]"
    label = f"{dot} {w.get('name')} [dim]#{w.get('id')}[/dim]"
    return f"[yellow]★[/yellow] {label}" if str(w.get("id")) in favorites else label


class Shell:
    def __init__(self, ctx: AppContext, prompter: Prompter | None = None):
        self.ctx = ctx
        self.ui = prompter or Prompter()

    # ==================== Main menu ====================

    def run(self) -> None:
        while True:
            self.ui.print("\n[bold cyan]n8n-cli[/bold cyan] [dim]Manage n8n workflows from your terminal[/dim]\n")
            action = self.ui.choose("Main menu", [
                ("Workflows (interactive list)", "workflows"),
                ("Import workflow (file / URL / zip)", "import"),
                ("Export workflows (incl. bundle.zip)", "export"),
                ("Recent workflows", "recent"),
                ("Settings", "settings"),
                ("Exit", "quit"),
            ])
            if action == "quit":
                return
            try:
                if action == "workflows":
                    self.workflows()
                elif action == "recent":
                    self.workflows(recent=True)
                elif action == "import":
                    self.import_menu()
                elif action == "export":
                    self.export_menu()
                elif action == "settings":
                    self.settings()
            except N8nCliError as e:
                self.report_error(e)

    def report_error(self, error: N8nCliError) -> None:
        self.ui.print(f"[red]Error:[/red] {error.message}")
        body = getattr(error, "body", None)
        if body is not None:
            self.ui.print(body)

    # ==================== Workflows ====================

    def workflows(self, recent: bool = False, search: str | None = None) -> None:
        favorites = self.ctx.favorites().load()
        with self.ui.status("Loading workflows…"), self.ctx.client() as client:
            items = list_workflows(client, search=search, favorites=favorites, recent=recent)
        if not items:
            self.ui.print("[yellow]No workflows.[/yellow]")
            return

        picked = self.ui.choose(
            "Select a workflow",
            [(workflow_label(w, favorites), w) for w in items] + [("Back", BACK)],
        )
        if picked is BACK:
            return
        self.workflow_actions(picked)

    def workflow_actions(self, w: dict[str, Any]) -> None:
        wf_id = str(w.get("id"))
        self.ui.print(f"\n[cyan]Selected:[/cyan] #{wf_id} {w.get('name')}")
        self.ui.print(f"[dim]Active:[/dim] {bool(w.get('active'))}")
        if w.get("updatedAt"):
            self.ui.print(f"[dim]Updated:[/dim] {w.get('updatedAt')}")

        action = self.ui.choose("Action", [
            ("Invoke webhook", "invoke"),
            ("Open in browser", "open"),
            ("Export this workflow", "export"),
            ("Rename / toggle active", "edit"),
            ("Delete (with backup)", "delete"),
            ("Share (local + Cloudflare)", "share"),
            ("Save local version", "save_version"),
            ("List local versions", "list_versions"),
            ("Toggle favorite", "fav"),
            ("Back", "back"),
        ])
        handlers = {
            "invoke": lambda: self.invoke(wf_id),
            "open": lambda: self.open_in_browser(wf_id),
            "export": lambda: self.export_one(wf_id),
            "edit": lambda: self.edit(w),
            "delete": lambda: self.delete(w),
            "share": lambda: self.share(wf_id),
            "save_version": lambda: self.save_version(wf_id),
            "list_versions": lambda: self.list_versions(w),
            "fav": lambda: self.toggle_favorite(w),
        }
        if action in handlers:
            handlers[action]()

    def open_in_browser(self, workflow_id: str) -> None:
        base = self.ctx.base_url()
        if not base:
            self.ui.print("[yellow]UI base URL not set and could not be derived.[/yellow]")
            self.ui.print("[dim]Set it in Settings → UI base URL (e.g. http://localhost:5678)[/dim]")
            return
        candidates = [f"{base}/workflow/{workflow_id}", f"{base}/#/workflow/{workflow_id}"]
        if webbrowser.open(candidates[0]):
            self.ui.print(f"[green]Opened:[/green] {candidates[0]}")
            return
        self.ui.print("[yellow]Could not open a browser. Try one of:[/yellow]")
        for url in candidates:
            self.ui.print(f" - {url}")

    def export_one(self, workflow_id: str) -> None:
        out = self.ui.ask("Output folder", default="./exports")
        with self.ctx.client() as client:
            report = export_workflows(client, out, workflow_id=workflow_id, clean=True)
        for path in report.written:
            self.ui.print(f"[green]Exported:[/green] {path}")

    def edit(self, w: dict[str, Any]) -> None:
        new_name = self.ui.ask("New name (leave as is to keep)", default=str(w.get("name") or "")).strip()
        toggle = self.ui.confirm(f"Toggle active (currently {bool(w.get('active'))})?", default=False)
        dry_run = self.ui.confirm("Dry-run?", default=False)
        with self.ctx.client() as client:
            result = edit_workflow(
                client,
                self.ctx.backups(),
                str(w.get("id")),
                name=new_name if new_name and new_name != w.get("name") else None,
                active=(not w.get("active")) if toggle else None,
                dry_run=dry_run,
            )
        verb = "Would update" if result.action == "would-update" else "Updated"
        self.ui.print(f"[green]{verb}[/green] #{result.workflow_id} {result.patch} (backup: {result.backup})")

    def delete(self, w: dict[str, Any]) -> None:
        if not self.ui.confirm(f'Delete "{w.get("name")}"?', default=False):
            return
        dry_run = self.ui.confirm("Dry-run?", default=False)
        with self.ctx.client() as client:
            results = delete_workflows(client, self.ctx.backups(), workflow_id=str(w.get("id")), dry_run=dry_run)
        for r in results:
            if r.action == "failed":
                self.ui.print(f"[red]Delete failed[/red] #{r.workflow_id}: {r.error}")
            else:
                verb = "Would delete" if r.action == "would-delete" else "Deleted"
                self.ui.print(f"[green]{verb}[/green] #{r.workflow_id} \"{r.name}\" (backup: {r.backup})")

    def share(self, workflow_id: str) -> None:
        with self.ctx.client() as client:
            workflow = clean_workflow(client.get_workflow(workflow_id))

        def ready(local_url: str, public_url: str | None) -> None:
            self.ui.print(f'\nSharing workflow: "{workflow.get("name")}"')
            self.ui.print(f"Local URL:  {local_url}")
            if public_url:
                self.ui.print(f"Public URL: {public_url}")
            else:
                self.ui.print("[yellow]No public link (cloudflared missing or tunnel failed).[/yellow]")
            self.ui.print(f"[dim]{download_command(public_url or local_url, workflow_id)}[/dim]")
            self.ui.print("[dim]Press CTRL+C to stop[/dim]")

        share_workflow(workflow, workflow_id, on_ready=ready)

    def save_version(self, workflow_id: str) -> None:
        comment = self.ui.ask("Version comment (optional)", default="")
        with self.ctx.client() as client:
            path = save_version(client, self.ctx.versions(), workflow_id, comment=comment)
        self.ui.print(f"[green]Saved version to:[/green] {path}")

    def list_versions(self, w: dict[str, Any]) -> None:
        versions = self.ctx.versions().list(w.get("name"))
        if not versions:
            self.ui.print("[yellow]No local versions found.[/yellow]")
            return
        picked = self.ui.choose("Select version", [(p.name, p) for p in versions] + [("Back", BACK)])
        if picked is not BACK:
            self.ui.print(f"[green]File located at:[/green] {picked}")

    def toggle_favorite(self, w: dict[str, Any]) -> None:
        if self.ctx.favorites().toggle(str(w.get("id"))):
            self.ui.print(f'[yellow]Added "{w.get("name")}" to favorites.[/yellow]')
        else:
            self.ui.print(f'Removed "{w.get("name")}" from favorites.')

    # ==================== Import / export ====================

    def import_menu(self) -> None:
        source = ""
        while not source:
            source = self.ui.ask("File path / URL / bundle.zip").strip()
        detected = detect_source_name(source)
        name = self.ui.ask("Workflow name", default=detected or "Imported workflow").strip()
        upsert = self.ui.confirm("Upsert by name (update if exists)?", default=True)
        with self.ui.status("Importing…"), self.ctx.client() as client:
            results = import_workflows(
                client, source, self.ctx.backups(), name=name or None, upsert=upsert,
            )
        for r in results:
            color = "red" if r.action == "failed" else "green"
            detail = r.error or (f"#{r.workflow_id}" if r.workflow_id else "")
            self.ui.print(f"[{color}]{r.action}[/{color}] {r.name or r.source} {detail}")

    def export_menu(self) -> None:
        all_workflows = self.ui.confirm("Export all workflows?", default=True)
        workflow_id = None if all_workflows else self.ui.ask("Workflow id")
        bundle = self.ui.confirm("Create bundle.zip?", default=True)
        out = self.ui.ask("Output path/folder", default="./exports")
        clean = self.ui.confirm("Clean before export?", default=True)
        with self.ui.status("Exporting…"), self.ctx.client() as client:
            report = export_workflows(
                client, out, workflow_id=workflow_id, all_workflows=all_workflows,
                bundle=bundle, clean=clean,
            )
        self.ui.print(f"[green]Exported {len(report.written)} workflow(s)[/green] to {out}")
        for name, error in report.failed:
            self.ui.print(f"[red]Failed:[/red] {name}: {error}")
        if report.bundle:
            self.ui.print(f"Bundle: {report.bundle}")
        elif report.bundle_error:
            self.ui.print(f"[red]Bundle failed:[/red] {report.bundle_error}")

    # ==================== Settings ====================

    def settings(self) -> None:
        store = self.ctx.store
        creds = self.ctx.credentials()
        self.ui.print(f"\n[dim]Config file:[/dim] {store.path}")
        for k, v in creds.masked().items():
            self.ui.print(f"[dim]{k}:[/dim] {v}")

        action = self.ui.choose("Settings", [
            ("Configure n8n credentials", "creds"),
            ("Switch / create profile", "profile"),
            ("Set UI base URL", "ui"),
            ("Test connection", "test"),
            ("Clear saved credentials", "clear"),
            ("Back", "back"),
        ])
        profile = creds.profile
        current = store.get_profile(profile)

        if action == "creds":
            url = self.ui.ask("n8n API base URL (ex: http://localhost:5678/api/v1)", default=current["url"] or creds.url)
            key = self.ui.ask("n8n API key", default=current["key"] or creds.key, password=True)
            if url.strip() and key.strip():
                store.set_credentials(profile, url, key)
                self.ui.print(f"[green]Credentials saved to profile '{profile}'.[/green]")
            else:
                self.ui.print("[yellow]URL and key are both required; nothing saved.[/yellow]")
        elif action == "profile":
            names = store.profile_names()
            picked = self.ui.choose("Profile", [(n, n) for n in names] + [("New profile…", BACK)])
            if picked is BACK:
                picked = self.ui.ask("New profile name").strip()
            if picked:
                store.set_active_profile(picked)
                self.ui.print(f"[green]Active profile: {picked}[/green]")
        elif action == "ui":
            url = self.ui.ask("UI base URL (e.g. http://localhost:5678)", default=current["uiBaseUrl"])
            store.set_ui_base_url(profile, url)
            self.ui.print("[green]UI base URL saved.[/green]")
        elif action == "clear":
            store.clear_credentials(profile)
            self.ui.print("[green]Saved credentials cleared.[/green]")
        elif action == "test":
            with self.ui.status("Testing n8n API…"), self.ctx.client() as client:
                count = len(client.list_all_workflows())
            self.ui.print(f"[green]Connected[/green] (workflows: {count})")

    # ==================== Webhook invoke ====================

    def invoke(self, workflow_id: str) -> None:
        with self.ctx.client() as client:
            workflow = client.get_workflow(workflow_id)
        entries = find_webhook_nodes(workflow)
        if not entries:
            self.ui.print("[yellow]No enabled webhook nodes found in this workflow.[/yellow]")
            return

        entry = entries[0]
        if len(entries) > 1:
            entry = self.ui.choose("Select webhook node", [(n.get("name"), n) for n in entries])

        mode = self.ui.choose("Execution mode", [
            ("Production ( /webhook/ )", "webhook"),
            ("Test ( /webhook-test/ )", "webhook-test"),
        ])
        request = build_request(entry, self.ctx.base_url(), mode)
        self.ui.print(f"\n[dim]Target:[/dim] [cyan]{request.url}[/cyan]")
        self.ui.print(f"[dim]Method:[/dim] [cyan]{request.method}[/cyan]")

        invoker = self.ctx.invoker()
        try:
            if request.sends_body:
                last = invoker.history.get(workflow_id)
                body = initial_body(workflow, entry, last)
                fields = derive_default_fields(workflow, entry, last)
                if fields:
                    source = next_node(workflow, entry.get("name")) or {}
                    self.ui.print(f'\n[dim]Auto-detected fields from "{source.get("name")}":[/dim]')
                    for key, value in fields.items():
                        body[key] = parse_input(self.ui.ask(key, default=_as_text(value)))
                request.body = self.edit_body(body)

            with self.ui.status("Executing webhook…"):
                result = invoker.invoke(workflow_id, request)
            while True:
                self.render_result(result)
                self.ui.print(f"[dim]{request.to_curl()}[/dim]")

                options = [("Resend request", "retry")]
                if request.sends_body:
                    options.append(("Edit body and resend", "edit"))
                options.append(("Done", "exit"))
                choice = self.ui.choose("Result action", options)
                if choice == "exit":
                    return
                new_body = self.edit_body(dict(request.body or {})) if choice == "edit" else None
                with self.ui.status("Executing webhook…"):
                    request, result = invoker.resend(workflow_id, request, new_body)
        finally:
            invoker.close()

    def render_result(self, result) -> None:
        if result.ok:
            self.ui.print(f"\n[green]Status: {result.status_code} {result.reason}[/green]")
        else:
            self.ui.print(f"\n[red]Error: {result.error}[/red]")
            if result.status_code is not None:
                self.ui.print(f"[red]Status: {result.status_code}[/red]")
        if result.body not in (None, ""):
            self.ui.print("[dim]Response data:[/dim]")
            self.ui.print(result.body)

    def edit_body(self, body: dict[str, Any]) -> dict[str, Any]:
        """Tree editor over the request body; returns the edited body."""
        tree = TreeNode.from_value(body)
        while True:
            rows = tree.rows()
            options = [(row.indented(), row) for row in rows]
            options += [("+ Add field to root", "add_root"), ("Execute request", "done")]
            selection = self.ui.choose("Tree editor", options, default=len(options))

            if selection == "done":
                return tree.to_value()
            if selection == "add_root":
                key = self.ui.ask("New key (root)").strip()
                if key:
                    tree.add_child((), key, parse_input(self.ui.ask("Value (JSON or string)")))
                continue

            if not selection.is_container:
                current = tree.node_at(selection.path).value
                text = self.ui.ask(f"Edit value for {selection.label.split(':', 1)[0]} (JSON or string)",
                                   default=_as_text(current))
                tree.set_value(selection.path, parse_input(text))
                continue

            action = self.ui.choose(f"Action for {selection.label}", [
                ("+ Add child field", "add_child"),
                ("Remove this object", "remove"),
                ("Back", "back"),
            ])
            if action == "remove":
                tree.remove(selection.path)
            elif action == "add_child":
                node = tree.node_at(selection.path)
                key = None if node.is_list else self.ui.ask("New key").strip()
                if node.is_list or key:
                    tree.add_child(selection.path, key, parse_input(self.ui.ask("Value (JSON or string)")))


def _as_text(value: Any) -> str:
    if isinstance(value, str):
        return value
    return json.dumps(value, ensure_ascii=False)
