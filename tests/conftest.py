import pytest

import termlight

from .fakes import FakeTerminal


@pytest.fixture
def fake_tty(monkeypatch):
    """Install a FakeTerminal as the controlling terminal.

    Call the returned function with the reply chunks to script.
    """

    def install(*chunks: bytes) -> FakeTerminal:
        terminal = FakeTerminal(*chunks)
        monkeypatch.setattr(termlight, "TtyDevice", lambda: terminal)
        return terminal

    return install


@pytest.fixture(autouse=True)
def _no_colorfgbg(monkeypatch):
    monkeypatch.delenv("COLORFGBG", raising=False)
