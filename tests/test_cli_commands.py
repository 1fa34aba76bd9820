from __future__ import annotations

import logging
import subprocess
from pathlib import Path
from typing import Iterator

import pytest
from typer.testing import CliRunner

from lspbridge import cli
from lspbridge.exceptions import ConfigError
from lspbridge.handshake import workspace_folder
from lspbridge.plumb import Plumber
from lspbridge.schema import BridgeConfig
from lspbridge.text import filename_to_uri
from tests.lsp_helpers import ErrorReply, FakeServer

SOURCE = 'package main\n\nimport "fmt"\n\nfunc main() {\n\tfmt.Println("hi")\n}\n'


def _range(sl: int, sc: int, el: int, ec: int) -> dict:
    return {"start": {"line": sl, "character": sc}, "end": {"line": el, "character": ec}}


@pytest.fixture(autouse=True)
def _restore_logging() -> Iterator[None]:
    root = logging.getLogger()
    handlers = root.handlers[:]
    level = root.level
    rpc_level = logging.getLogger("lspbridge.rpc").level
    try:
        yield
    finally:
        root.handlers[:] = handlers
        root.setLevel(level)
        logging.getLogger("lspbridge.rpc").setLevel(rpc_level)


@pytest.fixture
def source_file(tmp_path: Path) -> Path:
    path = tmp_path / "main.go"
    path.write_text(SOURCE, encoding="utf-8")
    return path


class _Plumbed:
    def __init__(self) -> None:
        self.calls: list[list[str]] = []

    def __call__(self, argv, **kwargs) -> subprocess.CompletedProcess:
        self.calls.append(list(argv))
        return subprocess.CompletedProcess(argv, 0, stdout="", stderr="")


def _invoke(
    server: FakeServer,
    source: Path,
    args: list[str],
    *,
    pos: str = "6:6",
    plumbed: _Plumbed | None = None,
):
    obj = {
        "open_stream": lambda settings: server.stream(),
        "plumber": Plumber(run_fn=plumbed or _Plumbed()),
    }
    argv = [
        "--dial",
        "localhost:4389",
        "--root",
        str(source.parent),
        "--file",
        str(source),
        "--pos",
        pos,
        *args,
    ]
    return CliRunner().invoke(cli.app, argv, obj=obj)


def test_help_lists_commands() -> None:
    result = CliRunner().invoke(cli.app, ["--help"])
    assert result.exit_code == 0
    for name in ("comp", "def", "type", "impls", "fmt", "orgimp", "hov", "refs", "rn", "sig", "syms", "win", "ws+", "ws-"):
        assert name in result.output


def test_refs_prints_links(fake_server: FakeServer, source_file: Path) -> None:
    fake_server.responders["textDocument/references"] = [
        {"uri": "file:///x.go", "range": _range(3, 2, 3, 6)},
        {"uri": "file:///x.go", "range": _range(10, 0, 10, 3)},
    ]
    result = _invoke(fake_server, source_file, ["refs"])
    assert result.exit_code == 0, result.output
    assert "/x.go:4:3-4:7\n/x.go:11:1-11:4\n" in result.output
    params = fake_server.messages("textDocument/references")[0]["params"]
    assert params["position"] == {"line": 5, "character": 5}
    methods = fake_server.methods()
    assert methods[:3] == ["initialize", "initialized", "textDocument/didOpen"]
    assert "shutdown" not in methods


def test_refs_empty_result(fake_server: FakeServer, source_file: Path) -> None:
    fake_server.responders["textDocument/references"] = None
    result = _invoke(fake_server, source_file, ["refs"])
    assert result.exit_code == 0
    assert "No references found." in result.output


def test_def_plumbs(fake_server: FakeServer, source_file: Path) -> None:
    fake_server.responders["textDocument/definition"] = {
        "uri": "file:///go/src/fmt/print.go",
        "range": _range(272, 5, 272, 12),
    }
    plumbed = _Plumbed()
    result = _invoke(fake_server, source_file, ["def"], plumbed=plumbed)
    assert result.exit_code == 0, result.output
    assert plumbed.calls[0][-1] == "/go/src/fmt/print.go:273:6"


def test_def_print(fake_server: FakeServer, source_file: Path) -> None:
    fake_server.responders["textDocument/definition"] = {
        "uri": "file:///go/src/fmt/print.go",
        "range": _range(272, 5, 272, 12),
    }
    result = _invoke(fake_server, source_file, ["def", "-p"])
    assert result.exit_code == 0
    assert "/go/src/fmt/print.go:273:6-273:13" in result.output


def test_rename_saves_file(fake_server: FakeServer, source_file: Path) -> None:
    uri = filename_to_uri(source_file)
    fake_server.responders["textDocument/rename"] = {
        "changes": {uri: [{"range": _range(4, 5, 4, 9), "newText": "run"}]}
    }
    result = _invoke(fake_server, source_file, ["rn", "run"], pos="5:7")
    assert result.exit_code == 0, result.output
    assert "func run() {" in source_file.read_text(encoding="utf-8")
    assert "textDocument/didClose" in fake_server.methods()


def test_server_error_exits_nonzero(fake_server: FakeServer, source_file: Path) -> None:
    fake_server.responders["textDocument/hover"] = ErrorReply(-32603, "no package for file")
    result = _invoke(fake_server, source_file, ["hov"])
    assert result.exit_code == 1
    assert "bad server response: textDocument/hover: no package for file" in result.output


def test_diag_prints_published_diagnostics(fake_server: FakeServer, source_file: Path) -> None:
    fake_server.push_before(
        "initialize",
        {
            "jsonrpc": "2.0",
            "method": "textDocument/publishDiagnostics",
            "params": {
                "uri": filename_to_uri(source_file),
                "diagnostics": [
                    {"range": _range(5, 1, 5, 4), "severity": 1, "message": "undefined: fmt"}
                ],
            },
        },
    )
    result = _invoke(fake_server, source_file, ["diag"])
    assert result.exit_code == 0, result.output
    assert result.output.count("undefined: fmt") == 1
    assert f"{source_file}:6:2-6:5: Error: undefined: fmt" in result.output


def test_win_runs_bounded_rounds(fake_server: FakeServer, source_file: Path) -> None:
    fake_server.responders["textDocument/hover"] = {"contents": "func fmt.Println(a ...any)"}
    result = _invoke(fake_server, source_file, ["win", "hov", "--rounds", "1"])
    assert result.exit_code == 0, result.output
    assert "func fmt.Println(a ...any)" in result.output
    assert "textDocument/didChange" in fake_server.methods()


def test_win_rejects_unknown_command(fake_server: FakeServer, source_file: Path) -> None:
    result = _invoke(fake_server, source_file, ["win", "refs"])
    assert result.exit_code == 2
    assert "unknown command 'refs'" in result.output


def test_missing_file_is_reported(tmp_path: Path) -> None:
    result = CliRunner().invoke(
        cli.app,
        ["--dial", "localhost:1", "--root", str(tmp_path), "refs"],
        env={"LSPBRIDGE_FILE": ""},
    )
    assert result.exit_code == 1
    assert "no file" in result.output


def _options(**overrides) -> cli.CliOptions:
    values = dict(
        dial=None,
        server=None,
        root=None,
        config=None,
        file=Path("a.go"),
        pos="1:1",
        verbose=False,
        hide_diag=False,
        rpc_trace=False,
        timeout=None,
    )
    values.update(overrides)
    return cli.CliOptions(**values)


def test_resolve_settings_precedence(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("LSPBRIDGE_TIMEOUT", raising=False)
    config = BridgeConfig.model_validate(
        {
            "server": {"command": ["gopls", "serve"], "address": "localhost:4389"},
            "client": {"root_directory": str(tmp_path), "timeout": "5s"},
            "formatting": {"tab_size": 4},
        }
    )
    settings = cli.resolve_settings(_options(), config)
    assert settings.address == "localhost:4389"
    assert settings.root == tmp_path.resolve()
    assert settings.timeout == 5.0
    assert settings.formatting.tab_size == 4

    spawned = cli.resolve_settings(_options(server="pyright-langserver --stdio"), config)
    assert spawned.address is None
    assert spawned.command == ["pyright-langserver", "--stdio"]

    monkeypatch.setenv("LSPBRIDGE_TIMEOUT", "250ms")
    assert cli.resolve_settings(_options(), config).timeout == 0.25
    assert cli.resolve_settings(_options(timeout="1m"), config).timeout == 60.0


def test_resolve_settings_rejects_conflicts() -> None:
    config = BridgeConfig()
    with pytest.raises(ConfigError, match="either"):
        cli.resolve_settings(_options(dial="x:1", server="gopls"), config)
    with pytest.raises(ConfigError, match="no language server"):
        cli.resolve_settings(_options(), config)
    with pytest.raises(ConfigError, match="no file"):
        cli.resolve_settings(_options(dial="x:1", file=None), config)


def _invoke_ws(server: FakeServer, root: Path, args: list[str]):
    obj = {"open_stream": lambda settings: server.stream()}
    argv = ["--dial", "localhost:4389", "--root", str(root), *args]
    return CliRunner().invoke(cli.app, argv, obj=obj)


def _write_folders(root: Path, *folders: Path) -> None:
    listed = ", ".join(f'"{folder}"' for folder in folders)
    (root / "lspbridge.toml").write_text(
        f"[client]\nworkspace_folders = [{listed}]\n", encoding="utf-8"
    )


def test_ws_lists_root_without_a_server(tmp_path: Path) -> None:
    result = CliRunner().invoke(cli.app, ["--root", str(tmp_path), "ws"])
    assert result.exit_code == 0, result.output
    assert result.output == f"{tmp_path.resolve()}\n"


def test_ws_lists_configured_folders(tmp_path: Path) -> None:
    first = tmp_path / "a"
    second = tmp_path / "b"
    _write_folders(tmp_path, first, second)
    result = CliRunner().invoke(cli.app, ["--root", str(tmp_path), "ws"])
    assert result.exit_code == 0, result.output
    assert result.output.splitlines() == [str(first), str(second)]


def test_ws_add_announces_new_folder(fake_server: FakeServer, tmp_path: Path) -> None:
    extra = tmp_path / "lib"
    extra.mkdir()
    result = _invoke_ws(fake_server, tmp_path, ["ws+", str(extra)])
    assert result.exit_code == 0, result.output
    params = fake_server.wait_for("workspace/didChangeWorkspaceFolders")["params"]
    assert params == {"event": {"added": [workspace_folder(extra)], "removed": []}}
    methods = fake_server.methods()
    assert methods[:3] == ["initialize", "initialized", "workspace/didChangeWorkspaceFolders"]
    assert "textDocument/didOpen" not in methods


def test_ws_add_defaults_to_working_directory(
    fake_server: FakeServer, tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    root = tmp_path / "root"
    other = tmp_path / "other"
    root.mkdir()
    other.mkdir()
    monkeypatch.chdir(other)
    result = _invoke_ws(fake_server, root, ["ws+"])
    assert result.exit_code == 0, result.output
    params = fake_server.wait_for("workspace/didChangeWorkspaceFolders")["params"]
    assert params["event"]["added"] == [workspace_folder(Path.cwd())]


def test_ws_add_of_known_folder_sends_nothing(fake_server: FakeServer, tmp_path: Path) -> None:
    result = _invoke_ws(fake_server, tmp_path, ["ws+", str(tmp_path.resolve())])
    assert result.exit_code == 0, result.output
    assert "workspace/didChangeWorkspaceFolders" not in fake_server.methods()


def test_ws_add_rejects_missing_directory(fake_server: FakeServer, tmp_path: Path) -> None:
    result = _invoke_ws(fake_server, tmp_path, ["ws+", str(tmp_path / "nope")])
    assert result.exit_code == 1
    assert "not a directory" in result.output
    assert "workspace/didChangeWorkspaceFolders" not in fake_server.methods()


def test_ws_remove_announces_dropped_folder(fake_server: FakeServer, tmp_path: Path) -> None:
    first = tmp_path / "a"
    second = tmp_path / "b"
    _write_folders(tmp_path, first, second)
    result = _invoke_ws(fake_server, tmp_path, ["ws-", str(first), str(tmp_path / "unknown")])
    assert result.exit_code == 0, result.output
    params = fake_server.wait_for("workspace/didChangeWorkspaceFolders")["params"]
    assert params == {"event": {"added": [], "removed": [workspace_folder(first)]}}
    initialize = fake_server.messages("initialize")[0]["params"]
    assert initialize["workspaceFolders"] == [workspace_folder(first), workspace_folder(second)]
