#!/usr/bin/env python3
"""
n8n CLI - Manage n8n workflows from the terminal (interactive + commands)

Usage:
    # Interactive main menu (also the default with no arguments)
    n8n-cli
    n8n-cli menu

    # Interactive workflow list + actions
    n8n-cli ui --search invoice --recent

    # List workflows
    n8n-cli list --search invoice --limit 10
    n8n-cli --json list

    # Export (one workflow, or all of them with a bundle.zip)
    n8n-cli export <id> -o ./exports
    n8n-cli export --all --bundle -o ./exports

    # Import from a file, a URL, a directory or a bundle.zip
    n8n-cli import workflow.json --name "Invoice Sync"
    n8n-cli import https://example.trycloudflare.com/abc.json --dry-run
    n8n-cli import ./exports/bundle.zip --no-upsert

    # Delete (a backup is written first)
    n8n-cli delete <id>
    n8n-cli delete --name "Invoice Sync" --dry-run
    n8n-cli delete --search old-

    # Rename / (de)activate (a backup is written first)
    n8n-cli edit <id> --name "New name" --active false

    # Share a workflow JSON over HTTP, with a Cloudflare quick tunnel
    n8n-cli share <id> --port 3333 --public --tunnel cloudflare

    # Call a workflow's webhook
    n8n-cli invoke <id> --data '{"amount": 10}' --test

    # Local versions and favorites
    n8n-cli save-version <id> --comment "before refactor"
    n8n-cli versions <id>
    n8n-cli favorite <id>

    # Profiles
    n8n-cli profile show
    n8n-cli --profile staging profile set --url http://localhost:5678/api/v1 --key ...
    n8n-cli profile use staging

Credentials come from --url/--key, then N8N_URL/N8N_API_KEY (a .env file in
the working directory is loaded), then the active profile.
"""

import argparse
import json
import sys
from datetime import datetime

from dotenv import load_dotenv

from n8n_auth import CredentialFlags
from n8n_context import AppContext
from n8n_errors import N8nCliError, SourceUnavailable, ValidationError
from n8n_logging import setup_logging
from n8n_manage import delete_workflows, edit_workflow, list_workflows, save_version
from n8n_share import download_command, share_workflow
from n8n_shell import Shell
from n8n_transfer import export_workflows, import_workflows
from n8n_webhook import MODES, build_request, find_webhook_nodes, initial_body
from n8n_workflow import clean_workflow


def format_time(iso_string: str | None) -> str:
    if not iso_string:
        return "-"
    try:
        dt = datetime.fromisoformat(iso_string.replace("Z", "+00:00"))
        return dt.strftime("%Y-%m-%d %H:%M:%S")
    except ValueError:
        return iso_string


def print_json(data):
    print(json.dumps(data, indent=2, ensure_ascii=False, default=str))


def parse_bool(value: str) -> bool:
    v = value.strip().lower()
    if v in ("true", "1", "yes", "on"):
        return True
    if v in ("false", "0", "no", "off"):
        return False
    raise argparse.ArgumentTypeError(f"expected true/false, got {value!r}")


def load_payload(args) -> dict | None:
    if args.file:
        try:
            with open(args.file, encoding="utf-8") as f:
                text = f.read()
        except OSError as e:
            raise SourceUnavailable(args.file, 1, e) from e
        label = args.file
    elif args.data:
        text, label = args.data, "--data"
    else:
        return None
    try:
        payload = json.loads(text)
    except ValueError as e:
        raise ValidationError(f"Webhook payload in {label} is not valid JSON: {e}") from e
    if not isinstance(payload, dict):
        raise ValidationError("Webhook payload must be a JSON object")
    return payload


# ==================== Interactive ====================


def cmd_menu(ctx: AppContext, args):
    Shell(ctx).run()


def cmd_ui(ctx: AppContext, args):
    Shell(ctx).workflows(recent=args.recent, search=args.search)


# ==================== Workflow Commands ====================


def cmd_list(ctx: AppContext, args):
    favorites = ctx.favorites().load()
    with ctx.client() as client:
        result = list_workflows(client, search=args.search, limit=args.limit, favorites=favorites, recent=args.recent)

    if args.json:
        print_json(result)
        return

    if not result:
        print("No workflows found.")
        return

    print(f"{'ID':<20} {'NAME':<40} {'ACTIVE':<8} {'UPDATED':<20}")
    print("-" * 90)
    for wf in result:
        name = str(wf.get("name") or "")
        if str(wf.get("id")) in favorites:
            name = "* " + name
        print(f"{str(wf.get('id')):<20} {name[:38]:<40} {str(wf.get('active', False)):<8} {format_time(wf.get('updatedAt')):<20}")


def cmd_export(ctx: AppContext, args):
    all_workflows = args.all or not args.id
    with ctx.client() as client:
        report = export_workflows(
            client,
            args.out,
            workflow_id=None if all_workflows else args.id,
            all_workflows=all_workflows,
            bundle=args.bundle,
            clean=args.clean,
        )

    if args.json:
        print_json(report.to_dict())
        return

    for path in report.written:
        print(f"Exported: {path}")
    for name, error in report.failed:
        print(f"Failed:   {name}: {error}", file=sys.stderr)
    if report.bundle:
        print(f"Bundle:   {report.bundle}")
    elif report.bundle_error:
        print(f"Bundle failed: {report.bundle_error}", file=sys.stderr)
    print(f"\n{len(report.written)} exported, {len(report.failed)} failed")


def cmd_import(ctx: AppContext, args):
    with ctx.client() as client:
        results = import_workflows(
            client,
            args.source,
            ctx.backups(),
            name=args.name,
            upsert=args.upsert,
            dry_run=args.dry_run,
            clean=args.clean,
        )

    if args.json:
        print_json([r.to_dict() for r in results])
    else:
        for r in results:
            line = f"{r.action:<13} {r.name or r.source}"
            if r.workflow_id:
                line += f" (#{r.workflow_id})"
            if r.backup:
                line += f"  backup: {r.backup}"
            if r.error:
                line += f"  {r.error}"
            print(line)

    if not all(r.ok for r in results):
        sys.exit(1)


def cmd_delete(ctx: AppContext, args):
    if not (args.id or args.name or args.search):
        raise ValidationError("Nothing to delete. Provide an id, --name or --search.")

    with ctx.client() as client:
        results = delete_workflows(
            client, ctx.backups(), workflow_id=args.id, name=args.name, search=args.search, dry_run=args.dry_run,
        )

    if args.json:
        print_json([r.to_dict() for r in results])
    elif not results:
        print("No matching workflows.")
    else:
        for r in results:
            line = f"{r.action:<13} #{r.workflow_id} {r.name}"
            if r.backup:
                line += f"  backup: {r.backup}"
            if r.error:
                line += f"  {r.error}"
            print(line)

    if any(r.action == "failed" for r in results):
        sys.exit(1)


def cmd_edit(ctx: AppContext, args):
    with ctx.client() as client:
        result = edit_workflow(
            client,
            ctx.backups(),
            args.id,
            name=args.name,
            active=args.active,
            dry_run=args.dry_run,
            active_in_body=args.active_in_body,
        )

    if args.json:
        print_json(result.to_dict())
        return

    verb = "Would update" if result.action == "would-update" else "Updated"
    print(f"{verb} #{result.workflow_id}: {json.dumps(result.patch)}")
    if result.backup:
        print(f"Backup: {result.backup}")
    if result.active_dropped:
        print("Server rejected 'active' in the body; toggled through the activate endpoint instead.")


def cmd_share(ctx: AppContext, args):
    with ctx.client() as client:
        full = client.get_workflow(args.id)
    workflow = clean_workflow(full) if args.clean else full

    def ready(local_url: str, public_url: str | None):
        print(f"Sharing workflow: {workflow.get('name')}")
        print(f"Local URL:  {local_url}")
        if public_url:
            print(f"Public URL: {public_url}")
        elif args.tunnel != "none":
            print("Warning: no public link (cloudflared missing or tunnel failed); sharing locally only.",
                  file=sys.stderr)
        print(download_command(public_url or local_url, args.id))
        print("Press CTRL+C to stop")

    share_workflow(
        workflow,
        args.id,
        port=args.port,
        public=args.public,
        tunnel=args.tunnel,
        cloudflared=args.cloudflared,
        on_ready=ready,
    )
    print("Share stopped.")


def cmd_invoke(ctx: AppContext, args):
    payload = load_payload(args)
    with ctx.client() as client:
        workflow = client.get_workflow(args.id)

    entries = find_webhook_nodes(workflow)
    if args.node:
        entries = [n for n in entries if n.get("name") == args.node]
    if not entries:
        raise ValidationError(f"Workflow #{args.id} has no enabled webhook node" + (f" named '{args.node}'" if args.node else ""))
    entry = entries[0]
    request = build_request(entry, ctx.base_url(), "webhook-test" if args.test else "webhook")

    invoker = ctx.invoker()
    try:
        if request.sends_body:
            if payload is None:
                payload = initial_body(workflow, entry, invoker.history.get(args.id))
            request.body = payload
        result = invoker.invoke(args.id, request)
    finally:
        invoker.close()

    if args.json:
        print_json({
            "url": request.url,
            "method": request.method,
            "ok": result.ok,
            "status": result.status_code,
            "error": result.error or None,
            "body": result.body,
        })
    else:
        print(f"Webhook: {request.method} {request.url}")
        if result.status_code is not None:
            print(f"Status:  {result.status_code} {result.reason}")
        if result.error:
            print(f"Error:   {result.error}", file=sys.stderr)
        if result.body not in (None, ""):
            print(json.dumps(result.body, indent=2, ensure_ascii=False) if not isinstance(result.body, str) else result.body)
        print(f"\n{request.to_curl()}")

    if not result.ok:
        sys.exit(1)


# ==================== Versions / Favorites ====================


def cmd_save_version(ctx: AppContext, args):
    with ctx.client() as client:
        path = save_version(client, ctx.versions(), args.id, comment=args.comment)
    if args.json:
        print_json({"id": args.id, "path": str(path)})
        return
    print(f"Saved version: {path}")


def cmd_versions(ctx: AppContext, args):
    with ctx.client() as client:
        name = client.get_workflow(args.id).get("name")
    paths = ctx.versions().list(name)
    backups = ctx.backups().list_versions(name) if args.backups else []

    if args.json:
        print_json({"versions": [str(p) for p in paths], "backups": [str(p) for p in backups]})
        return

    if not paths and not backups:
        print("No local versions found.")
        return
    for p in paths:
        print(p)
    if backups:
        print("\nBackups:")
        for p in backups:
            print(p)


def cmd_favorite(ctx: AppContext, args):
    now_favorite = ctx.favorites().toggle(args.id)
    if args.json:
        print_json({"id": args.id, "favorite": now_favorite})
        return
    print(f"#{args.id} {'added to' if now_favorite else 'removed from'} favorites")


# ==================== Profile Commands ====================


def cmd_profile(ctx: AppContext, args):
    store = ctx.store
    profile = ctx.credentials().profile

    match args.action:
        case "use":
            if not args.profile_name:
                raise ValidationError("profile use needs a profile name")
            store.set_active_profile(args.profile_name)
            print(f"Active profile: {args.profile_name}")
            return
        case "set":
            if not (args.set_url and args.set_key):
                raise ValidationError("profile set needs both --url and --key")
            store.set_credentials(profile, args.set_url, args.set_key)
            print(f"Credentials saved to profile '{profile}'")
            return
        case "set-ui":
            store.set_ui_base_url(profile, args.ui_url or "")
            print(f"UI base URL saved to profile '{profile}'")
            return
        case "clear":
            store.clear_credentials(profile)
            print(f"Credentials cleared for profile '{profile}'")
            return

    creds = ctx.credentials()
    info = {**creds.masked(), "config": str(store.path), "profiles": store.profile_names()}
    if args.json:
        print_json(info)
        return
    for k, v in info.items():
        if isinstance(v, list):
            v = ", ".join(v)
        print(f"{k + ':':<10} {v}")


# ==================== Entry point ====================


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="n8n-cli",
        description="CLI to manage n8n workflows (interactive + commands)",
    )
    parser.add_argument("--url", help="Override API base URL (ex: http://localhost:5678/api/v1)")
    parser.add_argument("--key", help="Override API key")
    parser.add_argument("--profile", help="Profile name")
    parser.add_argument("--json", action="store_true", help="JSON output (when applicable)")
    parser.add_argument("-v", "--verbose", action="count", default=0, help="-v info, -vv debug logging")
    parser.set_defaults(func=cmd_menu)
    subparsers = parser.add_subparsers(dest="command")

    # menu
    p_menu = subparsers.add_parser("menu", help="Interactive main menu (default)")
    p_menu.set_defaults(func=cmd_menu)

    # ui
    p_ui = subparsers.add_parser("ui", help="Interactive workflows list + actions")
    p_ui.add_argument("--search", help="Filter by name (contains)")
    p_ui.add_argument("--recent", action="store_true", help="Most recently updated first")
    p_ui.set_defaults(func=cmd_ui)

    # list
    p_list = subparsers.add_parser("list", help="List workflows")
    p_list.add_argument("--search", help="Filter by name (contains)")
    p_list.add_argument("--limit", type=int, help="Limit results")
    p_list.add_argument("--recent", action="store_true", help="Most recently updated first")
    p_list.set_defaults(func=cmd_list)

    # export
    p_export = subparsers.add_parser("export", help="Export workflows (supports bundle.zip)")
    p_export.add_argument("id", nargs="?", help="Workflow ID (default: all)")
    p_export.add_argument("--all", action="store_true", help="Export all workflows")
    p_export.add_argument("--bundle", action=argparse.BooleanOptionalAction, default=True, help="Create bundle.zip")
    p_export.add_argument("-o", "--out", default="./exports", help="Output folder, or a .json path for one workflow")
    p_export.add_argument("--clean", action=argparse.BooleanOptionalAction, default=True, help="Clean before export")
    p_export.set_defaults(func=cmd_export)

    # import
    p_import = subparsers.add_parser("import", help="Import workflows (file/URL/directory/bundle.zip)")
    p_import.add_argument("source", help="JSON file, URL, directory or bundle.zip")
    p_import.add_argument("--name", help="Override workflow name before import")
    p_import.add_argument("--upsert", action=argparse.BooleanOptionalAction, default=True,
                          help="Update if a workflow with the same name exists")
    p_import.add_argument("--dry-run", action="store_true", help="Do not create/update")
    p_import.add_argument("--clean", action=argparse.BooleanOptionalAction, default=True, help="Clean before import")
    p_import.set_defaults(func=cmd_import)

    # delete
    p_delete = subparsers.add_parser("delete", help="Delete workflows (backup first)")
    p_delete.add_argument("id", nargs="?", help="Workflow ID")
    p_delete.add_argument("--name", help="Delete by exact name")
    p_delete.add_argument("--search", help="Delete by name contains")
    p_delete.add_argument("--dry-run", action="store_true", help="Do not delete")
    p_delete.set_defaults(func=cmd_delete)

    # edit
    p_edit = subparsers.add_parser("edit", help="Edit workflow (backup first)")
    p_edit.add_argument("id", help="Workflow ID")
    p_edit.add_argument("--name", help="New name")
    p_edit.add_argument("--active", type=parse_bool, help="true/false")
    p_edit.add_argument("--dry-run", action="store_true", help="Do not update")
    p_edit.add_argument("--active-in-body", action="store_true",
                        help="Send 'active' in the PUT body (retried without it if the server rejects it)")
    p_edit.set_defaults(func=cmd_edit)

    # share
    p_share = subparsers.add_parser("share", help="Share workflow JSON (local + Cloudflare tunnel)")
    p_share.add_argument("id", help="Workflow ID")
    p_share.add_argument("--port", type=int, default=3333, help="HTTP port (default: 3333)")
    p_share.add_argument("--public", action="store_true", help="Bind on 0.0.0.0")
    p_share.add_argument("--clean", action=argparse.BooleanOptionalAction, default=True, help="Clean before share")
    p_share.add_argument("--tunnel", choices=["none", "cloudflare"], default="cloudflare", help="Tunnel type")
    p_share.add_argument("--cloudflared", help="Path to cloudflared")
    p_share.set_defaults(func=cmd_share)

    # invoke
    p_invoke = subparsers.add_parser("invoke", help="Call a workflow's webhook")
    p_invoke.add_argument("id", help="Workflow ID")
    p_invoke.add_argument("--data", "-d", help="JSON payload to send")
    p_invoke.add_argument("--file", "-f", help="File containing JSON payload")
    p_invoke.add_argument("--node", help="Webhook node name (default: first enabled)")
    p_invoke.add_argument("--test", "-t", action="store_true", help=f"Use the {MODES[1]} URL")
    p_invoke.set_defaults(func=cmd_invoke)

    # save-version
    p_save = subparsers.add_parser("save-version", help="Save the workflow as a local version")
    p_save.add_argument("id", help="Workflow ID")
    p_save.add_argument("--comment", "-m", default="", help="Version comment")
    p_save.set_defaults(func=cmd_save_version)

    # versions
    p_versions = subparsers.add_parser("versions", help="List local versions of a workflow")
    p_versions.add_argument("id", help="Workflow ID")
    p_versions.add_argument("--backups", action="store_true", help="Also list backup snapshots")
    p_versions.set_defaults(func=cmd_versions)

    # favorite
    p_fav = subparsers.add_parser("favorite", help="Toggle a workflow as favorite")
    p_fav.add_argument("id", help="Workflow ID")
    p_fav.set_defaults(func=cmd_favorite)

    # profile
    p_profile = subparsers.add_parser("profile", help="Show or change saved profiles")
    p_profile.add_argument("action", nargs="?", default="show", choices=["show", "use", "set", "set-ui", "clear"])
    p_profile.add_argument("profile_name", nargs="?", help="Profile name (for 'use')")
    p_profile.add_argument("--url", dest="set_url", help="API URL to save (for 'set')")
    p_profile.add_argument("--key", dest="set_key", help="API key to save (for 'set')")
    p_profile.add_argument("--ui-url", help="UI base URL to save (for 'set-ui')")
    p_profile.set_defaults(func=cmd_profile)

    return parser


def main(argv: list[str] | None = None):
    load_dotenv()
    parser = build_parser()
    args = parser.parse_args(argv)
    setup_logging(args.verbose)

    ctx = AppContext(flags=CredentialFlags(url=args.url, key=args.key, profile=args.profile))
    try:
        args.func(ctx, args)
    except N8nCliError as e:
        if args.json:
            print(json.dumps(e.to_dict(), indent=2, default=str), file=sys.stderr)
        else:
            print(f"Error: {e.message}", file=sys.stderr)
            body = getattr(e, "body", None)
            if body is not None:
                print(json.dumps(body, indent=2) if not isinstance(body, str) else body, file=sys.stderr)
        sys.exit(1)
    except KeyboardInterrupt:
        sys.exit(130)


if __name__ == "__main__":
    main()
