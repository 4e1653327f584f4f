from __future__ import annotations

import contextlib
import time


class FakeTerminal:
    """Terminal stand-in replaying scripted reply chunks."""

    def __init__(self, *chunks: bytes) -> None:
        self.chunks = list(chunks)
        self.written = b""
        self.acquired = 0
        self.restored = 0
        self.in_raw_mode = False
        self.closed = False

    def __enter__(self) -> FakeTerminal:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def write(self, data: bytes) -> None:
        assert self.in_raw_mode
        self.written += data

    def read(self, size: int, timeout: float) -> bytes:
        assert self.in_raw_mode
        if self.chunks:
            return self.chunks.pop(0)[:size]
        time.sleep(timeout)
        return b""

    @contextlib.contextmanager
    def raw(self):
        self.acquired += 1
        self.in_raw_mode = True
        try:
            yield
        finally:
            self.in_raw_mode = False
            self.restored += 1

    def close(self) -> None:
        self.closed = True
