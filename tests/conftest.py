from __future__ import annotations

import sys
from pathlib import Path
from typing import Iterator

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))
SRC = ROOT / "src"
if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))


import pytest

from lspbridge.handshake import initialize
from lspbridge.session import Session
from tests.lsp_helpers import FakeServer


@pytest.fixture
def fake_server() -> Iterator[FakeServer]:
    server = FakeServer().start()
    try:
        yield server
    finally:
        server.close()


@pytest.fixture
def ready_session(fake_server: FakeServer, tmp_path: Path) -> Iterator[Session]:
    session = Session.open(fake_server.stream(), default_timeout=5.0)
    initialize(session, tmp_path)
    try:
        yield session
    finally:
        session.close()
