from __future__ import annotations

import logging
import shlex
import sys
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Generator, List, Mapping, Optional

import typer

from lspbridge.config import load_config
from lspbridge.dispatcher import CommandDispatcher, FormattingOptions
from lspbridge.editor import FileEditor, FileWindow
from lspbridge.exceptions import ConfigError, LspClientError
from lspbridge.handler import ClientHandler, StreamDiagnosticsWriter
from lspbridge.handshake import initialize, shutdown, workspace_folder
from lspbridge.invariants import never
from lspbridge.json_types import JSONValue
from lspbridge.plumb import Plumber
from lspbridge.runtime.env_policy import (
    ADDRESS_ENV,
    FILE_ENV,
    POS_ENV,
    parse_duration_seconds,
    timeout_from_env,
)
from lspbridge.schema import BridgeConfig
from lspbridge.session import Session, SessionState
from lspbridge.text import parse_human_position, position_to_offset
from lspbridge.transport import Stream, dial, spawn
from lspbridge.watch import watch
from lspbridge.workspace import WorkspaceFolders

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(name)s: %(levelname)s: %(message)s"
_OPTIONS_KEY = "lspbridge.options"

app = typer.Typer(add_completion=False)


@dataclass(frozen=True)
class CliOptions:
    dial: str | None
    server: str | None
    root: Path | None
    config: Path | None
    file: Path | None
    pos: str
    verbose: bool
    hide_diag: bool
    rpc_trace: bool
    timeout: str | None


@dataclass(frozen=True)
class RunSettings:
    address: str | None
    command: list[str]
    root: Path
    workspace_folders: list[str]
    server_options: dict[str, JSONValue]
    file: Path | None
    pos: str
    verbose: bool
    hide_diagnostics: bool
    rpc_trace: bool
    timeout: float
    notification_budget: float
    formatting: FormattingOptions


@dataclass
class Bridge:
    session: Session
    handler: ClientHandler
    editor: FileEditor
    window: FileWindow
    dispatcher: CommandDispatcher
    settings: RunSettings


def resolve_settings(
    options: CliOptions,
    config: BridgeConfig,
    *,
    require_server: bool = True,
    require_file: bool = True,
) -> RunSettings:
    """Merge flags, environment and config file; flags win, then the file."""
    if options.dial and options.server:
        raise ConfigError("use either --dial or --server, not both")
    address = options.dial or config.server.address
    command = shlex.split(options.server) if options.server else list(config.server.command)
    if options.server:
        address = None
    if require_server and not address and not command:
        raise ConfigError("no language server: use --dial ADDRESS or --server COMMAND")
    if require_file and options.file is None:
        raise ConfigError(f"no file: use --file or {FILE_ENV}")
    if options.root is not None:
        root = options.root
    elif config.client.root_directory:
        root = Path(config.client.root_directory)
    else:
        root = Path.cwd()
    if options.timeout:
        timeout = parse_duration_seconds(options.timeout)
    else:
        timeout = timeout_from_env() or config.client.timeout_seconds()
    return RunSettings(
        address=address or None,
        command=command,
        root=root.resolve(),
        workspace_folders=list(config.client.workspace_folders),
        server_options=dict(config.server.options),
        file=options.file,
        pos=options.pos,
        verbose=options.verbose or config.client.verbose,
        hide_diagnostics=options.hide_diag or config.client.hide_diagnostics,
        rpc_trace=options.rpc_trace or config.client.rpc_trace,
        timeout=timeout,
        notification_budget=config.client.notification_budget_seconds(),
        formatting=FormattingOptions(
            tab_size=config.formatting.tab_size,
            insert_spaces=config.formatting.insert_spaces,
        ),
    )


def configure_logging(*, verbose: bool, rpc_trace: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format=LOG_FORMAT,
        stream=sys.stderr,
        force=True,
    )
    logging.getLogger("lspbridge.rpc").setLevel(
        logging.DEBUG if rpc_trace else logging.WARNING
    )


def open_stream(settings: RunSettings) -> Stream:
    if settings.address:
        return dial(settings.address)
    return spawn(settings.command, cwd=settings.root)


def _context_options(ctx: typer.Context) -> CliOptions:
    options = ctx.meta.get(_OPTIONS_KEY)
    if not isinstance(options, CliOptions):
        raise ConfigError("global options were not parsed")
    return options


def _context_open_stream(ctx: typer.Context) -> Callable[[RunSettings], Stream]:
    obj = ctx.obj
    if isinstance(obj, Mapping):
        candidate = obj.get("open_stream")
        if callable(candidate):
            return candidate
    return open_stream


def _context_plumber(ctx: typer.Context) -> Plumber:
    obj = ctx.obj
    if isinstance(obj, Mapping):
        candidate = obj.get("plumber")
        if isinstance(candidate, Plumber):
            return candidate
    return Plumber()


def _close_session(session: Session, stream: Stream) -> None:
    if stream.owns_server and session.state is SessionState.READY:
        try:
            shutdown(session)
        except LspClientError as exc:
            logger.debug("shutdown failed: %s", exc)
    session.close()


def _load_settings(
    ctx: typer.Context, *, require_server: bool = True, require_file: bool = True
) -> RunSettings:
    options = _context_options(ctx)
    config = load_config(root=options.root, config_path=options.config)
    settings = resolve_settings(
        options, config, require_server=require_server, require_file=require_file
    )
    configure_logging(verbose=settings.verbose, rpc_trace=settings.rpc_trace)
    return settings


def _initial_folders(settings: RunSettings) -> list[str]:
    return list(settings.workspace_folders) or [str(settings.root)]


def _make_handler(
    editor: FileEditor, settings: RunSettings, *, hide_diagnostics: bool = False
) -> ClientHandler:
    return ClientHandler(
        editor,
        StreamDiagnosticsWriter(sys.stderr),
        hide_diagnostics=hide_diagnostics or settings.hide_diagnostics,
        verbose=settings.verbose,
        time_budget=settings.notification_budget,
        workspace_folders=[workspace_folder(folder) for folder in settings.workspace_folders],
    )


@contextmanager
def _connected(
    ctx: typer.Context, settings: RunSettings, handler: ClientHandler
) -> Generator[Session, None, None]:
    try:
        stream = _context_open_stream(ctx)(settings)
    except BaseException:
        handler.close()
        raise
    session = Session.open(stream, handler, default_timeout=settings.timeout)
    try:
        initialize(
            session,
            settings.root,
            settings.workspace_folders,
            settings.server_options,
        )
        yield session
    finally:
        _close_session(session, stream)
        handler.close()


@contextmanager
def open_bridge(
    ctx: typer.Context, *, hide_diagnostics: bool = False
) -> Generator[Bridge, None, None]:
    settings = _load_settings(ctx)
    if settings.file is None:
        never("document command without a file")

    editor = FileEditor(stdout=sys.stdout)
    window = editor.add_window(FileWindow(settings.file))
    window.set_cursor(position_to_offset(window.body(), parse_human_position(settings.pos)))
    handler = _make_handler(editor, settings, hide_diagnostics=hide_diagnostics)
    with _connected(ctx, settings, handler) as session:
        dispatcher = CommandDispatcher(
            session,
            window,
            editor,
            stdout=sys.stdout,
            stderr=sys.stderr,
            plumber=_context_plumber(ctx),
            formatting=settings.formatting,
            diagnostics_source=lambda uri: handler.wait_diagnostics(
                uri, settings.notification_budget
            ),
        )
        dispatcher.did_open()
        yield Bridge(session, handler, editor, window, dispatcher, settings)
        editor.save_all()
        dispatcher.did_close()


@contextmanager
def open_workspace(ctx: typer.Context) -> Generator[WorkspaceFolders, None, None]:
    settings = _load_settings(ctx, require_file=False)
    handler = _make_handler(FileEditor(stdout=sys.stdout), settings)
    with _connected(ctx, settings, handler) as session:
        yield WorkspaceFolders(_initial_folders(settings), session=session, handler=handler)


@contextmanager
def _reported_errors() -> Generator[None, None, None]:
    try:
        yield
    except LspClientError as exc:
        typer.secho(str(exc), err=True, fg=typer.colors.RED)
        raise typer.Exit(code=1)


def _run(
    ctx: typer.Context,
    operation: Callable[[Bridge], None],
    *,
    hide_diagnostics: bool = False,
) -> None:
    with _reported_errors():
        with open_bridge(ctx, hide_diagnostics=hide_diagnostics) as bridge:
            operation(bridge)


@app.callback()
def main(
    ctx: typer.Context,
    dial_address: Optional[str] = typer.Option(
        None,
        "--dial",
        envvar=ADDRESS_ENV,
        help="Connect to a language server (or proxy) at host:port or unix:/path.",
    ),
    server: Optional[str] = typer.Option(
        None, "--server", help="Start a language server with this command line."
    ),
    root: Optional[Path] = typer.Option(None, "--root", help="Workspace root directory."),
    config: Optional[Path] = typer.Option(None, "--config", help="Path to lspbridge.toml."),
    file: Optional[Path] = typer.Option(
        None, "--file", envvar=FILE_ENV, help="Document the command operates on."
    ),
    pos: str = typer.Option(
        "1:1", "--pos", envvar=POS_ENV, help="Cursor as one-indexed LINE:COLUMN."
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Debug logging."),
    hide_diag: bool = typer.Option(False, "--hide-diag", help="Do not print diagnostics."),
    rpc_trace: bool = typer.Option(False, "--rpc-trace", help="Log every JSON-RPC frame."),
    timeout: Optional[str] = typer.Option(
        None, "--timeout", help="Per-request timeout such as 500ms, 30s or 1m."
    ),
) -> None:
    """Language Server Protocol client for editor commands."""
    ctx.meta[_OPTIONS_KEY] = CliOptions(
        dial=dial_address,
        server=server,
        root=root,
        config=config,
        file=file,
        pos=pos,
        verbose=verbose,
        hide_diag=hide_diag,
        rpc_trace=rpc_trace,
        timeout=timeout,
    )


@app.command("comp")
def comp_command(
    ctx: typer.Context,
    edit: bool = typer.Option(False, "--edit", "-e", help="Apply a unique completion."),
) -> None:
    """List completions at the cursor."""
    _run(ctx, lambda bridge: bridge.dispatcher.completion(edit=edit))


@app.command("def")
def def_command(
    ctx: typer.Context,
    print_: bool = typer.Option(False, "--print", "-p", help="Print instead of plumbing."),
) -> None:
    """Find the definition of the identifier at the cursor."""
    _run(ctx, lambda bridge: bridge.dispatcher.definition(print_=print_))


@app.command("type")
def type_command(
    ctx: typer.Context,
    print_: bool = typer.Option(False, "--print", "-p", help="Print instead of plumbing."),
) -> None:
    """Find the type definition of the identifier at the cursor."""
    _run(ctx, lambda bridge: bridge.dispatcher.type_definition(print_=print_))


@app.command("impls")
def impls_command(ctx: typer.Context) -> None:
    """List implementations of the interface at the cursor."""
    _run(ctx, lambda bridge: bridge.dispatcher.implementation(print_=True))


@app.command("fmt")
def fmt_command(ctx: typer.Context) -> None:
    """Format the document."""
    _run(ctx, lambda bridge: bridge.dispatcher.format())


@app.command("orgimp")
def orgimp_command(ctx: typer.Context) -> None:
    """Organize imports, then format the document."""
    _run(ctx, lambda bridge: bridge.dispatcher.organize_imports_and_format())


@app.command("hov")
def hov_command(ctx: typer.Context) -> None:
    """Show hover information at the cursor."""
    _run(ctx, lambda bridge: bridge.dispatcher.hover())


@app.command("refs")
def refs_command(ctx: typer.Context) -> None:
    """List references to the identifier at the cursor."""
    _run(ctx, lambda bridge: bridge.dispatcher.references())


@app.command("rn")
def rn_command(
    ctx: typer.Context,
    new_name: str = typer.Argument(..., metavar="NEWNAME"),
) -> None:
    """Rename the identifier at the cursor."""
    _run(ctx, lambda bridge: bridge.dispatcher.rename(new_name))


@app.command("sig")
def sig_command(ctx: typer.Context) -> None:
    """Show signature help at the cursor."""
    _run(ctx, lambda bridge: bridge.dispatcher.signature_help())


@app.command("syms")
def syms_command(ctx: typer.Context) -> None:
    """List the document's symbols."""
    _run(ctx, lambda bridge: bridge.dispatcher.document_symbol())


@app.command("diag")
def diag_command(ctx: typer.Context) -> None:
    """Print the diagnostics the server publishes for the document."""
    _run(ctx, lambda bridge: bridge.dispatcher.diagnostics(), hide_diagnostics=True)


_WATCHABLE: dict[str, Callable[[CommandDispatcher], None]] = {
    "comp": lambda dispatcher: dispatcher.completion(),
    "hov": lambda dispatcher: dispatcher.hover(),
    "sig": lambda dispatcher: dispatcher.signature_help(),
}


@app.command("win")
def win_command(
    ctx: typer.Context,
    what: str = typer.Argument(..., help="comp, hov or sig"),
    interval: float = typer.Option(0.5, "--interval", help="Polling interval in seconds."),
    rounds: Optional[int] = typer.Option(None, "--rounds", hidden=True),
) -> None:
    """Re-run comp, hov or sig whenever the document changes."""
    operation = _WATCHABLE.get(what)
    if operation is None:
        typer.secho(
            f"unknown command {what!r}; expected one of: {', '.join(_WATCHABLE)}",
            err=True,
            fg=typer.colors.RED,
        )
        raise typer.Exit(code=2)

    def _watch(bridge: Bridge) -> None:
        def _round() -> None:
            bridge.dispatcher.did_change()
            operation(bridge.dispatcher)

        try:
            watch(
                _round,
                bridge.window,
                sys.stdout,
                interval=interval,
                max_rounds=rounds,
                refresh=bridge.window.reload,
            )
        except KeyboardInterrupt:
            logger.debug("watch interrupted")

    _run(ctx, _watch)


@app.command("ws")
def ws_command(ctx: typer.Context) -> None:
    """List the workspace directories."""
    with _reported_errors():
        settings = _load_settings(ctx, require_server=False, require_file=False)
        WorkspaceFolders(_initial_folders(settings)).print_folders(sys.stdout)


@app.command("ws+")
def ws_add_command(
    ctx: typer.Context,
    dirs: Optional[List[Path]] = typer.Argument(None, help="Defaults to the current directory."),
) -> None:
    """Add directories to the workspace."""
    with _reported_errors():
        with open_workspace(ctx) as workspace:
            workspace.add(dirs or [])


@app.command("ws-")
def ws_remove_command(
    ctx: typer.Context,
    dirs: Optional[List[Path]] = typer.Argument(None, help="Defaults to the current directory."),
) -> None:
    """Remove directories from the workspace."""
    with _reported_errors():
        with open_workspace(ctx) as workspace:
            workspace.remove(dirs or [])
