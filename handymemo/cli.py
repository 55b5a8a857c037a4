"""
CLI interface for handy memos.

Usage:
    memo new "Bought milk"
    memo list --month 2024-05
    memo list --search "milk eggs"
    memo index --manual
"""

import asyncio
import json
import os
import select
import sys
from pathlib import Path
from typing import Optional

import typer
from typing_extensions import Annotated

from .api import MemoApp
from .logging_config import configure_quiet_mode, enable_debug_mode
from .scheduler import WorkState
from .types import IndexResult, MemoRecord, Outcome, YearMonth, from_epoch_ms


# Configure quiet mode by default (suppress verbose library output)
# Set HANDYMEMO_VERBOSE=1 to enable debug mode via environment
if os.environ.get("HANDYMEMO_VERBOSE") == "1":
    enable_debug_mode()
else:
    configure_quiet_mode(quiet=True)


def _has_stdin_data() -> bool:
    """Check if stdin has data available without blocking.

    Returns True only when stdin is a pipe with data ready to read.
    """
    if sys.stdin.isatty():
        return False
    try:
        ready, _, _ = select.select([sys.stdin], [], [], 0)
        return bool(ready)
    except (ValueError, OSError):
        return False


def _verbose_callback(value: bool):
    if value:
        enable_debug_mode()


# Global state for CLI options
_json_output = False
_home_override: Optional[Path] = None


def _json_callback(value: bool):
    global _json_output
    _json_output = value


def _get_json_output() -> bool:
    return _json_output


def _home_callback(value: Optional[Path]):
    global _home_override
    _home_override = value


app = typer.Typer(
    name="memo",
    help="Markdown memos in a folder you own, with a fast local index.",
    no_args_is_help=True,
    rich_markup_mode=None,
)


@app.callback()
def main_callback(
    verbose: Annotated[bool, typer.Option(
        "--verbose", "-v",
        help="Enable debug-level logging to stderr",
        callback=_verbose_callback,
        is_eager=True,
    )] = False,
    output_json: Annotated[bool, typer.Option(
        "--json", "-j",
        help="Output as JSON",
        callback=_json_callback,
        is_eager=True,
    )] = False,
    home: Annotated[Optional[Path], typer.Option(
        "--home",
        envvar="HANDYMEMO_HOME",
        help="Path to the handymemo home directory (config, cache, logs)",
        callback=_home_callback,
        is_eager=True,
    )] = None,
):
    """Markdown memos in a folder you own, with a fast local index."""


def _get_app() -> MemoApp:
    """Open the application, handling errors gracefully."""
    try:
        return MemoApp(_home_override)
    except (OSError, ValueError) as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(1)


def _require_root(memo_app: MemoApp) -> None:
    if not memo_app.settings.root_tree_location:
        typer.echo("Error: No memo folder configured", err=True)
        typer.echo("Hint: memo config --root /path/to/folder", err=True)
        raise typer.Exit(1)


# -----------------------------------------------------------------------------
# Output Formatting
# -----------------------------------------------------------------------------

def _format_time(ms: int) -> str:
    return from_epoch_ms(ms).strftime("%Y-%m-%d %H:%M:%S")


def _render_index_result(result: IndexResult) -> str:
    if _get_json_output():
        d = result.to_dict()
        d["errors"] = result.errors
        return json.dumps(d, indent=2)
    if result.skipped:
        return "Nothing to index"
    if result.outcome is Outcome.FAILURE:
        return f"Indexing failed: {result.message}"
    if result.outcome is Outcome.RETRY:
        return f"Indexing incomplete, try again later: {result.message}"
    lines = [f"Indexed {result.indexed_count} memos ({result.error_count} errors)"]
    lines.extend(f"  {error}" for error in result.errors)
    return "\n".join(lines)


def _render_record(record: MemoRecord, path: str) -> str:
    if _get_json_output():
        return json.dumps({
            "id": record.id,
            "path": path,
            "time": record.time.isoformat(),
            "tags": record.tags,
            "body": record.body_text,
            "attachments": [
                {
                    "location": a.location.location,
                    "is_video": a.is_video,
                    "thumbnail": str(a.thumbnail) if a.thumbnail else None,
                }
                for a in record.attachments
            ],
        }, indent=2, ensure_ascii=False)

    lines = [
        "---",
        f"id: {record.id}",
        f"path: {path}",
        f"time: {record.time:%Y-%m-%d %H:%M:%S %Z}".rstrip(),
    ]
    if record.attachments:
        lines.append("attachments:")
        for a in record.attachments:
            kind = "video" if a.is_video else "image"
            line = f"  - {kind}: {a.location.location}"
            if a.thumbnail:
                line += f" (thumbnail: {a.thumbnail})"
            lines.append(line)
    lines.append("---")
    lines.append(record.body_text)
    return "\n".join(lines)


# -----------------------------------------------------------------------------
# Commands
# -----------------------------------------------------------------------------

@app.command("index")
def index(
    manual: Annotated[bool, typer.Option(
        "--manual", "-m",
        help="Run even while the app is in use (user-requested pass)",
    )] = False,
):
    """
    Rebuild the memo index from the memo folder.
    """
    memo_app = _get_app()
    try:
        result = asyncio.run(memo_app.index_now(is_manual=manual))
    finally:
        memo_app.close()
    typer.echo(_render_index_result(result))
    if not result.succeeded:
        raise typer.Exit(1)


def _parse_month(value: Optional[str]) -> Optional[YearMonth]:
    if value is None:
        return None
    try:
        return YearMonth.parse(value)
    except ValueError as e:
        raise typer.BadParameter(str(e))


@app.command("list")
def list_memos(
    month: Annotated[Optional[str], typer.Option(
        "--month", "-m",
        help="Month to list as YYYY-MM (default: current month)",
    )] = None,
    search: Annotated[Optional[str], typer.Option(
        "--search", "-s",
        help="Keywords; all must match (searches every month)",
    )] = None,
    limit: Annotated[int, typer.Option(
        "--limit", "-n",
        help="Maximum memos to show",
    )] = 20,
):
    """
    List memos for one month, or search all memos.

    \b
    Examples:
        memo list                      # This month
        memo list --month 2024-05      # May 2024
        memo list --search "milk eggs" # Memos containing both words
    """
    year_month = _parse_month(month)
    memo_app = _get_app()
    try:
        view = memo_app.view
        if year_month is not None:
            view.display_month = year_month
        if search:
            view.set_search_text(search, immediate=True)
        items = view.pager.take(limit)
        shown_month = view.display_month
    finally:
        memo_app.close()

    if _get_json_output():
        typer.echo(json.dumps([item.to_dict() for item in items], indent=2, ensure_ascii=False))
        return
    if not items:
        scope = f"matching {search!r}" if search else f"in {shown_month}"
        typer.echo(f"No memos {scope}")
        return
    for item in items:
        typer.echo(f"{_format_time(item.created_at_ms)}  {item.path}")


@app.command("show")
def show(
    path: Annotated[str, typer.Argument(help="Memo path as shown by 'memo list'")],
):
    """
    Show one memo with its attachments.
    """
    memo_app = _get_app()
    try:
        record = asyncio.run(memo_app.service.get_memo_detail(path))
    finally:
        memo_app.close()
    if record is None:
        typer.echo(f"Error: Memo not found: {path}", err=True)
        raise typer.Exit(1)
    typer.echo(_render_record(record, path))


@app.command("new")
def new(
    text: Annotated[Optional[str], typer.Argument(
        help="Memo text ('-' reads stdin)",
    )] = None,
    attach: Annotated[Optional[list[Path]], typer.Option(
        "--attach", "-a",
        help="Image or video file to attach (repeatable)",
        exists=True, dir_okay=False, readable=True,
    )] = None,
):
    """
    Write a new memo.
    """
    if text == "-" or (text is None and _has_stdin_data()):
        try:
            text = sys.stdin.read()
        except UnicodeDecodeError:
            typer.echo("Error: stdin contains binary data (not valid UTF-8)", err=True)
            raise typer.Exit(1)
    content = text or ""

    memo_app = _get_app()
    try:
        _require_root(memo_app)

        async def _create():
            body = content
            if attach:
                body += await memo_app.service.attach_media(attach)
            if not body.strip():
                return None, body
            return await memo_app.service.create_memo(body), body

        entry, body = asyncio.run(_create())
    finally:
        memo_app.close()

    if not body.strip():
        typer.echo("Error: Nothing to write", err=True)
        raise typer.Exit(1)
    if entry is None:
        typer.echo("Error: Failed to write memo (see log for details)", err=True)
        raise typer.Exit(1)
    if _get_json_output():
        typer.echo(json.dumps(entry.to_list_item().to_dict(), indent=2))
    else:
        typer.echo(entry.path)


@app.command("share")
def share(
    text: Annotated[Optional[str], typer.Argument(help="Shared text")] = None,
    subject: Annotated[Optional[str], typer.Option(
        "--subject", help="Subject line (takes priority over --title)",
    )] = None,
    title: Annotated[Optional[str], typer.Option(
        "--title", help="Title of the shared item",
    )] = None,
):
    """
    Save shared content as a memo, followed by the share template.
    """
    memo_app = _get_app()
    try:
        _require_root(memo_app)
        if memo_app.requests.on_share_received(text, subject=subject, title=title) is None:
            typer.echo("Error: Nothing to share", err=True)
            raise typer.Exit(1)
        content = memo_app.requests.consume_pending()
        entry = asyncio.run(memo_app.service.create_memo(content))
    finally:
        memo_app.close()

    if entry is None:
        typer.echo("Error: Failed to write memo (see log for details)", err=True)
        raise typer.Exit(1)
    typer.echo(entry.path)


@app.command("widget")
def widget(
    widget_id: Annotated[int, typer.Argument(help="Widget id")],
    name: Annotated[Optional[str], typer.Option("--name", help="Template name")] = None,
    text: Annotated[Optional[str], typer.Option("--text", help="Template text")] = None,
    icon: Annotated[Optional[int], typer.Option("--icon", help="Icon id")] = None,
):
    """
    Configure a widget, or tap it to get its template.

    \b
    Examples:
        memo widget 7 --name Diary --text "## Diary" --icon 2
        memo widget 7                  # Print the template for the editor
    """
    memo_app = _get_app()
    try:
        if name is not None or text is not None or icon is not None:
            current = memo_app.settings.load_widget_config(widget_id)
            memo_app.settings.save_widget_config(
                widget_id,
                name if name is not None else (current.template_name or ""),
                text if text is not None else (current.template_text or ""),
                icon if icon is not None else (current.icon_id or 0),
            )
            saved = memo_app.settings.load_widget_config(widget_id)
            if _get_json_output():
                typer.echo(json.dumps({
                    "widget_id": widget_id,
                    "template_name": saved.template_name,
                    "template_text": saved.template_text,
                    "icon_id": saved.icon_id,
                }, indent=2, ensure_ascii=False))
            else:
                typer.echo(f"Saved widget {widget_id}: {saved.template_name}")
            return

        memo_app.requests.on_widget_id_tapped(widget_id)
        template = memo_app.requests.consume_pending()
    finally:
        memo_app.close()
    typer.echo(template or "")


@app.command("config")
def config(
    root: Annotated[Optional[Path], typer.Option(
        "--root", help="Memo folder (must exist)",
        exists=True, file_okay=False,
    )] = None,
    share_template: Annotated[Optional[str], typer.Option(
        "--share-template", help="Text appended to shared content",
    )] = None,
    clear_template: Annotated[bool, typer.Option(
        "--clear-template", help="Forget the last used template",
    )] = False,
):
    """
    Show or change settings.
    """
    memo_app = _get_app()
    try:
        settings = memo_app.settings
        if root is not None:
            settings.save_root_tree_location(str(root.expanduser().resolve()))
        if share_template is not None:
            settings.save_share_intent_template(share_template)
        if clear_template:
            memo_app.requests.clear_last_used_template()
        cfg = memo_app.config
    finally:
        memo_app.close()

    info = {
        "home": str(cfg.path),
        "config": str(cfg.config_path),
        "cache": str(cfg.cache_db_path),
        "root_tree_location": cfg.root_tree_location,
        "last_used_template_text": cfg.last_used_template_text,
        "share_intent_template_text": cfg.share_intent_template_text,
    }
    if _get_json_output():
        typer.echo(json.dumps(info, indent=2, ensure_ascii=False))
        return
    for key, value in info.items():
        typer.echo(f"{key}: {value if value is not None else '(not set)'}")


@app.command("status")
def status():
    """
    Show the memo folder and cache contents.

    Indexing state is per process; 'memo watch' reports it as it changes.
    """
    memo_app = _get_app()
    try:
        count = memo_app.store.count()
        oldest = memo_app.store.oldest_created_at()
        info = {
            "root_tree_location": memo_app.settings.root_tree_location,
            "cache": str(memo_app.config.cache_db_path),
            "memos": count,
            "oldest_month": str(YearMonth.from_timestamp(oldest)) if oldest is not None else None,
        }
    finally:
        memo_app.close()

    if _get_json_output():
        typer.echo(json.dumps(info, indent=2))
        return
    for key, value in info.items():
        typer.echo(f"{key}: {value if value is not None else '(none)'}")


@app.command("watch")
def watch(
    duration: Annotated[Optional[float], typer.Option(
        "--duration", help="Stop after this many seconds (default: until Ctrl+C)",
    )] = None,
):
    """
    Keep the index fresh: one pass shortly after start, then periodically.
    """
    memo_app = _get_app()

    def on_state(name: str, state: WorkState, result: Optional[IndexResult]):
        line = f"{name}: {state.value}"
        if result is not None and state in (WorkState.SUCCEEDED, WorkState.FAILED):
            line += f" ({result.indexed_count} indexed, {result.error_count} errors)"
        typer.echo(line)

    async def _run():
        remove = memo_app.scheduler.add_listener(on_state)
        memo_app.start()
        try:
            if duration is not None:
                await asyncio.sleep(duration)
            else:
                await asyncio.Event().wait()
        finally:
            remove()
            await memo_app.aclose()

    try:
        asyncio.run(_run())
    except KeyboardInterrupt:
        typer.echo("Stopped")
    finally:
        memo_app.close()


def main():
    try:
        app()
    except SystemExit:
        raise  # Let typer handle exit codes
    except KeyboardInterrupt:
        raise SystemExit(130)  # Standard exit code for Ctrl+C
    except Exception as e:
        # Log full traceback to file, show clean message to user
        from .errors import log_exception
        log_path = log_exception(e, context="memo CLI")
        typer.echo(f"Error: {e}", err=True)
        typer.echo(f"Details logged to {log_path}", err=True)
        raise SystemExit(1)


if __name__ == "__main__":
    main()
