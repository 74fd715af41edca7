# service/cli.py
"""
User-facing command-line entrypoints.

Subcommands
-----------
serve
    Start the APScheduler loop (scheduled scans and GitLab polling) until
    SIGINT/SIGTERM.
run MODULE [--kwargs k=v ...] [--no-email] [--print-html]
    Execute any module ad-hoc via runner.run_module().
scan URL [--save-as NAME] [--export PATH] ...
    Scan an awesome-list repository.
poll KIND [--filter F] [--repeat N --every S]
    Run GitLab poll cycles for one resource kind in this process.
snapshot KIND [--url URL]
    Show the collection saved by the last successful poll of KIND.
lists {list,show,delete,rescan}
    Manage saved awesome lists.
notifications {list,read,read-all,delete,clear,unread,test}
    Inspect and manage the notification history.
gitlab {test,jobs,retry,approve}
    One-off GitLab actions.
list-jobs
    Print the configured jobs (polling entries expanded) and next fire times.
validate-config
    Load/validate config and return nonzero on error.
"""

from __future__ import annotations

import argparse
import json
import logging
import os
import signal
import sys
import threading
import time
from collections.abc import Iterable
from typing import Any

from service import config_schema as _config_schema
from service import logging_utils as L
from service import runner as _runner
from service import scheduler as _scheduler
from service.alerts import build_dispatcher
from service.errors import FetchError
from service.notifications import NotificationEmitter, NotificationHistory, send_test_notifications
from service.store import KeyValueStore, now_iso

LOG = logging.getLogger("service.cli")


# ----------------------------- Logging setup ---------------------------------
def _ensure_logging() -> None:
    root = logging.getLogger()
    if not root.handlers:
        level = os.getenv("LOG_LEVEL", "INFO").upper()
        logging.basicConfig(
            level=getattr(logging, level, logging.INFO),
            format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
        )


# -------------------------- Utility / glue code ------------------------------
def _parse_kv_pairs(pairs: Iterable[str]) -> dict[str, Any]:
    """key=value strings -> dict; JSON-looking values (numbers, bools, objects) are decoded."""
    out: dict[str, Any] = {}
    for raw in pairs:
        if "=" not in raw:
            raise argparse.ArgumentTypeError(f"--kwargs item must be key=value (got {raw!r})")
        k, v = (s.strip() for s in raw.split("=", 1))
        if not k:
            raise argparse.ArgumentTypeError(f"Invalid key in --kwargs item {raw!r}")
        try:
            out[k] = json.loads(v)
        except json.JSONDecodeError:
            out[k] = v
    return out


def _print_table(rows: Iterable[tuple[str, ...]], headers: tuple[str, ...]) -> None:
    rows = [tuple(str(c) for c in r) for r in rows]
    widths = [max([len(h), *(len(r[i]) for r in rows)]) for i, h in enumerate(headers)]
    sep = "+-" + "-+-".join("-" * w for w in widths) + "-+"
    print(sep)
    print("| " + " | ".join(h.ljust(w) for h, w in zip(headers, widths)) + " |")
    print(sep)
    for r in rows:
        print("| " + " | ".join(c.ljust(w) for c, w in zip(r, widths)) + " |")
    print(sep)


def _load_config(args: argparse.Namespace) -> dict[str, Any]:
    return _config_schema.load_config(args.config)


def _kv_store(args: argparse.Namespace) -> KeyValueStore:
    return KeyValueStore(_load_config(args)["state_path"])


def _fail(where: str, e: BaseException, **fields: Any) -> int:
    print(f"FAILURE: {e}", file=sys.stderr)
    L.write_error_log({"ts": now_iso(), "where": where, "error": repr(e), **fields})
    return 1


def _trigger_summary(trigger: dict[str, Any]) -> str:
    (kind, value), = trigger.items()
    return f"{kind}={json.dumps(value, default=str)}"


# ------------------------------ Subcommands ----------------------------------
def cmd_validate_config(args: argparse.Namespace) -> int:
    try:
        cfg = _load_config(args)
        _config_schema.validate(cfg)
    except _config_schema.ConfigError as e:
        print(f"ERROR: configuration invalid: {e}", file=sys.stderr)
        return 1
    print(f"OK: configuration is valid ({len(cfg['jobs'])} job(s)).")
    return 0


def cmd_list_jobs(args: argparse.Namespace) -> int:
    try:
        cfg = _load_config(args)
    except _config_schema.ConfigError as e:
        print(f"ERROR: failed to list jobs: {e}", file=sys.stderr)
        return 1
    if not cfg["jobs"]:
        print("No jobs found in config.")
        return 0

    tz = _scheduler.resolve_timezone(cfg)
    rows = []
    for spec in _scheduler.iter_job_specs(cfg, tz):
        nxt = _scheduler.preview_trigger(spec.trigger, tz, count=1)
        raw = next(j for j in cfg["jobs"] if j["id"] == spec.id)
        rows.append((
            spec.id,
            spec.module,
            _trigger_summary(raw["trigger"]),
            nxt[0].isoformat() if nxt else "-",
        ))
    _print_table(rows, headers=("JOB", "MODULE", "TRIGGER", "NEXT RUN"))
    return 0


def cmd_run(args: argparse.Namespace) -> int:
    kwargs = _parse_kv_pairs(args.kwargs or [])
    started = time.monotonic()
    try:
        result = _runner.run_module(args.module, kwargs=kwargs, send_email=not args.no_email, trigger_type="adhoc")
    except KeyboardInterrupt:
        return 130
    except Exception as e:
        return _fail("cli.run", e, module=args.module, duration_ms=int((time.monotonic() - started) * 1000))

    if result.html and args.print_html:
        print("\n----- HTML OUTPUT -----\n")
        print(result.html)
    print(f"SUCCESS: {result.message}")
    return 0


def cmd_scan(args: argparse.Namespace) -> int:
    cfg = _load_config(args)
    kwargs: dict[str, Any] = {
        "source_url": args.url,
        "github_token_env": args.token_env or cfg["github"]["token_env"],
        "sqlite_path": cfg["state_path"],
        "adapter": args.adapter,
    }
    if cfg.get("alerts"):
        kwargs["alerts"] = cfg["alerts"]
    for key in ("save_as", "export_path", "export_format", "delay_seconds"):
        value = getattr(args, key)
        if value is not None:
            kwargs[key] = value
    if args.skip_enrichment:
        kwargs["skip_enrichment"] = True
    return _run_scan(kwargs, args)


def _run_scan(kwargs: dict[str, Any], args: argparse.Namespace) -> int:
    try:
        result = _runner.run_module("modules.awesome_scan", kwargs=kwargs, send_email=False, trigger_type="adhoc")
    except KeyboardInterrupt:
        return 130
    except Exception as e:
        return _fail("cli.scan", e, source_url=kwargs.get("source_url"), saved_list_id=kwargs.get("saved_list_id"))

    meta = result.meta or {}
    print(f"SUCCESS: {meta.get('message', result.message)}")
    if meta.get("saved_list_id"):
        print(f"Saved list: {meta['saved_list_id']}")
    if meta.get("export_path"):
        print(f"Exported {meta.get('export_format')}: {meta['export_path']}")
    if meta.get("error"):
        print(f"WARNING: {meta['error']}", file=sys.stderr)
    if args.print_html and result.html:
        print(result.html)
    return 0


def cmd_poll(args: argparse.Namespace) -> int:
    cfg = _load_config(args)
    kwargs: dict[str, Any] = {
        "kind": args.kind,
        "gitlab_url": args.url or cfg["gitlab"]["url"],
        "gitlab_token_env": args.token_env or cfg["gitlab"]["token_env"],
        "sqlite_path": cfg["state_path"],
        "adapter": args.adapter,
    }
    if args.filter:
        kwargs["state_filter"] = args.filter
    if cfg.get("alerts"):
        kwargs["alerts"] = cfg["alerts"]

    for cycle in range(max(1, args.repeat)):
        if cycle:
            time.sleep(args.every)
        try:
            result = _runner.run_module("modules.gitlab_watch", kwargs=kwargs, send_email=False, trigger_type="adhoc")
        except KeyboardInterrupt:
            return 130
        except Exception as e:
            return _fail("cli.poll", e, kind=args.kind)
        meta = result.meta or {}
        print(f"[{cycle + 1}] {meta.get('message', result.message)}")
        for ev in meta.get("events", []):
            print(f"    {ev['title']}: {ev['body']}")
    return 0


def cmd_snapshot(args: argparse.Namespace) -> int:
    """Last persisted collection for a kind, as saved by the most recent successful poll."""
    from modules.gitlab_watch.lib.snapshot import SnapshotStore

    cfg = _load_config(args)
    url = args.url or cfg["gitlab"]["url"]
    source = url if args.adapter == "gitlab" else f"{args.adapter}:{url}"
    records = SnapshotStore(KeyValueStore(cfg["state_path"])).load_persisted(args.kind, source)
    if not records:
        print(f"No saved {args.kind} snapshot for {source}.")
        return 0
    _print_table(
        [
            (
                str(r.id),
                getattr(r, "state", None) or getattr(r, "status", ""),
                getattr(r, "title", None) or getattr(r, "ref", ""),
                r.updated_at or "-",
            )
            for r in records
        ],
        headers=("ID", "STATE", "TITLE/REF", "UPDATED"),
    )
    return 0


def cmd_lists(args: argparse.Namespace) -> int:
    from modules.awesome_scan.lib.saved_lists import SavedListStore

    lists = SavedListStore(_kv_store(args))

    if args.action == "list":
        rows = [(s.id, s.name, str(s.repository_count), s.last_scanned or "-") for s in lists.all()]
        if not rows:
            print("No saved lists.")
            return 0
        _print_table(rows, headers=("ID", "NAME", "REPOS", "LAST SCANNED"))
        return 0

    if not args.id:
        print(f"ERROR: 'lists {args.action}' requires a list id.", file=sys.stderr)
        return 2

    if args.action == "show":
        saved = lists.get(args.id)
        if saved is None:
            print(f"ERROR: no saved list {args.id!r}", file=sys.stderr)
            return 1
        print(f"{saved.name} ({saved.url}), {saved.repository_count} repositories")
        _print_table(
            [(r.full_name, r.category, str(r.stargazers_count), r.added_to_list_at or "-") for r in saved.repositories],
            headers=("REPOSITORY", "CATEGORY", "STARS", "ADDED"),
        )
        return 0

    if args.action == "delete":
        if not lists.delete(args.id):
            print(f"ERROR: no saved list {args.id!r}", file=sys.stderr)
            return 1
        print(f"Deleted {args.id}.")
        return 0

    # rescan
    cfg = _load_config(args)
    kwargs: dict[str, Any] = {
        "saved_list_id": args.id,
        "github_token_env": cfg["github"]["token_env"],
        "sqlite_path": cfg["state_path"],
    }
    if args.export_path:
        kwargs["export_path"] = args.export_path
    return _run_scan(kwargs, args)


def cmd_notifications(args: argparse.Namespace) -> int:
    cfg = _load_config(args)
    history = NotificationHistory(KeyValueStore(cfg["state_path"]))

    if args.action == "list":
        events = history.get_all()
        if args.unread:
            events = [e for e in events if not e.read]
        if not events:
            print("No notifications.")
            return 0
        _print_table(
            [(e.id, " " if e.read else "*", e.created_at, e.title, e.body) for e in events],
            headers=("ID", "NEW", "CREATED", "TITLE", "BODY"),
        )
        return 0
    if args.action == "unread":
        print(history.unread_count())
        return 0
    if args.action == "read-all":
        print(f"Marked {history.mark_all_read()} notification(s) read.")
        return 0
    if args.action == "clear":
        history.clear()
        print("Notification history cleared.")
        return 0
    if args.action == "test":
        emitter = NotificationEmitter(history, build_dispatcher(cfg.get("alerts")))
        for ev in send_test_notifications(emitter):
            print(f"Sent: {ev.title}")
        return 0

    # read / delete
    if not args.id:
        print(f"ERROR: 'notifications {args.action}' requires a notification id.", file=sys.stderr)
        return 2
    ok = history.mark_read(args.id) if args.action == "read" else history.delete(args.id)
    if not ok:
        print(f"ERROR: no notification {args.id!r}", file=sys.stderr)
        return 1
    print("OK")
    return 0


def cmd_gitlab(args: argparse.Namespace) -> int:
    from modules.gitlab_watch.lib.adapters.gitlab import GitLabAdapter

    cfg = _load_config(args)
    token = os.getenv(args.token_env or cfg["gitlab"]["token_env"], "")
    if not token:
        print("ERROR: GitLab token is not set.", file=sys.stderr)
        return 2

    adapter = GitLabAdapter(url=args.url or cfg["gitlab"]["url"], token=token)
    try:
        if args.action == "test":
            user = adapter.test_connection()
            print(f"Connected as {user['username']} ({user['name']})")
        elif args.action == "jobs":
            jobs = adapter.fetch_pipeline_jobs(args.project_id, args.target_id)
            _print_table(
                [(str(j.id), j.stage or "", j.name, j.status, f"{j.duration or 0:.0f}s") for j in jobs],
                headers=("ID", "STAGE", "NAME", "STATUS", "DURATION"),
            )
        elif args.action == "retry":
            p = adapter.retry_pipeline(args.project_id, args.target_id)
            print(f"Pipeline #{p.iid or p.id} retried: {p.status} {p.web_url}")
        elif args.action == "approve":
            adapter.approve_merge_request(args.project_id, args.target_id)
            print(f"Approved !{args.target_id} in project {args.project_id}")
    except FetchError as e:
        return _fail(f"cli.gitlab.{args.action}", e)
    finally:
        adapter.close()
    return 0


def cmd_serve(args: argparse.Namespace) -> int:
    """Run the scheduler until a termination signal is received."""
    L.write_activity_log({"ts": now_iso(), "event": "serve_start"})
    stop_event = threading.Event()

    def _graceful_shutdown(signum=None, frame=None):
        LOG.info("Signal %s received; initiating shutdown...", signum)
        stop_event.set()

    for sig in (signal.SIGINT, signal.SIGTERM):
        signal.signal(sig, _graceful_shutdown)

    try:
        controller = _scheduler.start(config_path=args.config)
    except _config_schema.ConfigError as e:
        print(f"ERROR: configuration invalid: {e}", file=sys.stderr)
        return 1

    try:
        while not stop_event.is_set():
            time.sleep(0.3)
    finally:
        controller.stop()
        controller.join(timeout=10.0)
        L.write_activity_log({"ts": now_iso(), "event": "serve_stop"})
    return 0


# ------------------------------- Argparse ------------------------------------
def _build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="python -m service.cli", description="devwatch command-line tools")
    p.add_argument("--config", help="Path to config file (fallbacks to CONFIG_PATH env or an empty config).")
    sub = p.add_subparsers(dest="cmd", required=True)

    sp = sub.add_parser("serve", help="Run the scheduler loop (scans and polling).")
    sp.set_defaults(func=cmd_serve)

    sp = sub.add_parser("run", help="Execute a module ad-hoc via the runner.")
    sp.add_argument("module", help="Module path (e.g., modules.awesome_scan).")
    sp.add_argument("--kwargs", metavar="k=v", nargs="*", help="Keyword arguments for the module (JSON values supported).")
    sp.add_argument("--no-email", action="store_true", help="Do not send the HTML result by email.")
    sp.add_argument("--print-html", action="store_true", help="Print the HTML result to stdout.")
    sp.set_defaults(func=cmd_run)

    sp = sub.add_parser("scan", help="Scan an awesome-list repository.")
    sp.add_argument("url", help="GitHub URL of the list, e.g. https://github.com/sindresorhus/awesome")
    sp.add_argument("--save-as", dest="save_as", help="Save the result as a named list.")
    sp.add_argument("--export", dest="export_path", help="Write the records to this .json/.csv file.")
    sp.add_argument("--format", dest="export_format", choices=("json", "csv"), help="Export format.")
    sp.add_argument("--delay", dest="delay_seconds", type=float, help="Seconds between detail fetches.")
    sp.add_argument("--token-env", help="Env var holding the GitHub token.")
    sp.add_argument("--adapter", default="github", help=argparse.SUPPRESS)
    sp.add_argument("--skip-enrichment", action="store_true", help="Do not look up added-to-list dates.")
    sp.add_argument("--print-html", action="store_true", help="Print the HTML report to stdout.")
    sp.set_defaults(func=cmd_scan)

    sp = sub.add_parser("poll", help="Poll a GitLab collection and print new notifications.")
    sp.add_argument("kind", choices=("merge_requests", "issues", "pipelines"))
    sp.add_argument("--filter", help="State filter (opened/closed/merged/all or a pipeline status).")
    sp.add_argument("--repeat", type=int, default=1, help="Number of cycles to run.")
    sp.add_argument("--every", type=float, default=60.0, help="Seconds between cycles.")
    sp.add_argument("--url", help="GitLab instance URL.")
    sp.add_argument("--token-env", help="Env var holding the GitLab token.")
    sp.add_argument("--adapter", default="gitlab", help=argparse.SUPPRESS)
    sp.set_defaults(func=cmd_poll)

    sp = sub.add_parser("snapshot", help="Show the last persisted GitLab collection for a kind.")
    sp.add_argument("kind", choices=("merge_requests", "issues", "pipelines"))
    sp.add_argument("--url", help="GitLab instance URL.")
    sp.add_argument("--adapter", default="gitlab", help=argparse.SUPPRESS)
    sp.set_defaults(func=cmd_snapshot)

    sp = sub.add_parser("lists", help="Manage saved awesome lists.")
    sp.add_argument("action", choices=("list", "show", "delete", "rescan"))
    sp.add_argument("id", nargs="?")
    sp.add_argument("--export", dest="export_path", help="(rescan) also export to this file.")
    sp.add_argument("--print-html", action="store_true", help=argparse.SUPPRESS)
    sp.set_defaults(func=cmd_lists)

    sp = sub.add_parser("notifications", help="Inspect and manage notification history.")
    sp.add_argument("action", choices=("list", "read", "read-all", "delete", "clear", "unread", "test"))
    sp.add_argument("id", nargs="?")
    sp.add_argument("--unread", action="store_true", help="(list) only unread entries.")
    sp.set_defaults(func=cmd_notifications)

    sp = sub.add_parser("gitlab", help="One-off GitLab actions.")
    sp.add_argument("action", choices=("test", "jobs", "retry", "approve"))
    sp.add_argument("project_id", nargs="?", type=int)
    sp.add_argument("target_id", nargs="?", type=int, help="Pipeline id (jobs/retry) or MR iid (approve).")
    sp.add_argument("--url", help="GitLab instance URL.")
    sp.add_argument("--token-env", help="Env var holding the GitLab token.")
    sp.set_defaults(func=cmd_gitlab)

    sp = sub.add_parser("list-jobs", help="Print all jobs from config.")
    sp.set_defaults(func=cmd_list_jobs)

    sp = sub.add_parser("validate-config", help="Verify configuration correctness.")
    sp.set_defaults(func=cmd_validate_config)

    return p


# --------------------------------- Main --------------------------------------
def main(argv: Iterable[str] | None = None) -> int:
    _ensure_logging()
    parser = _build_parser()
    args = parser.parse_args(args=list(argv) if argv is not None else None)
    if args.cmd == "gitlab" and args.action != "test" and (args.project_id is None or args.target_id is None):
        parser.error(f"'gitlab {args.action}' requires PROJECT_ID and TARGET_ID")
    return args.func(args)


if __name__ == "__main__":  # pragma: no cover
    sys.exit(main())
