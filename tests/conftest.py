"""Pytest config: project root on sys.path plus scope transport doubles.

`SimulatedScope` answers the :TRIGger/:WAVeform commands the way a DS1000Z
does over its raw socket; `ByteStreamTransport` replays a fixed byte stream
for block decoder tests.
"""
import io
import os
import sys
from collections import deque

import numpy as np
import pytest

_HERE = os.path.dirname(__file__)
PROJECT_ROOT = os.path.abspath(os.path.join(_HERE, ".."))

if PROJECT_ROOT not in sys.path:
    sys.path.insert(0, PROJECT_ROOT)

from rigol_waveform import Transport  # noqa: E402


def make_block(payload: bytes, length=None, terminator: bytes = b"\n") -> bytes:
    """Frame `payload` as #<digits><length><payload><terminator>."""
    if length is None:
        length = len(payload)
    length_field = str(length).encode()
    return b"#" + str(len(length_field)).encode() + length_field + payload + terminator


class ByteStreamTransport(Transport):
    """Replays `data`; each read returns at most `read_size` bytes."""

    def __init__(self, data: bytes, read_size=None):
        self._stream = io.BytesIO(data)
        self._read_size = read_size
        self.sent = []

    def send(self, command):
        self.sent.append(command)

    def read_line_reply(self, timeout=1.0):
        return self._stream.readline().decode().rstrip("\n")

    def read(self, size, timeout=10.0):
        if self._read_size is not None:
            size = min(size, self._read_size)
        return self._stream.read(size)

    def remaining(self) -> bytes:
        return self._stream.read()


class SimulatedScope(Transport):
    """In-memory DS1000Z answering :TRIGger:SWEep? and :WAVeform commands.

    Sample k (1-based point index) of the record is (k - 1) % 256 in BYTE
    format and (k - 1) % 65536 in WORD format.
    """

    def __init__(
        self,
        sweep="SING",
        mode="NORM",
        fmt="ASC",
        source="CHAN1",
        scaling=None,
        read_size=4096,
    ):
        self.sweep = sweep
        self.settings = {
            "MODE": mode,
            "FORMat": fmt,
            "SOURce": source,
            "STARt": "1",
            "STOP": "1",
            "XORigin": "0",
            "YORigin": "0",
            "XREFerence": "0",
            "YREFerence": "0",
            "XINCrement": "1",
            "YINCrement": "1",
        }
        self.settings.update(scaling or {})
        self.read_size = read_size
        self.sent = []
        self.data_windows = []
        self._replies = deque()
        self._stream = io.BytesIO()

    def send(self, command):
        self.sent.append(command)
        if command == ":TRIGger:SWEep?":
            self._replies.append(self.sweep)
            return
        if command == "*IDN?":
            self._replies.append("RIGOL TECHNOLOGIES,DS1102Z-E,DS1ZE000000000,00.06.02")
            return
        assert command.startswith(":WAVeform:"), command
        field = command[len(":WAVeform:"):]
        if field == "DATA?":
            self._stream = io.BytesIO(self._data_block())
        elif field.endswith("?"):
            self._replies.append(self.settings[field[:-1]])
        else:
            name, value = field.split(" ", 1)
            self.settings[name] = value

    def read_line_reply(self, timeout=1.0):
        return self._replies.popleft()

    def read(self, size, timeout=10.0):
        return self._stream.read(min(size, self.read_size))

    def _data_block(self) -> bytes:
        start = int(self.settings["STARt"])
        stop = int(self.settings["STOP"])
        self.data_windows.append((start, stop))
        points = np.arange(start - 1, stop)
        fmt = self.settings["FORMat"]
        if fmt == "BYTE":
            return make_block((points % 256).astype(np.uint8).tobytes())
        if fmt == "WORD":
            payload = (points % 65536).astype("<u2").tobytes()
            return make_block(payload, length=len(points))
        text = ",".join(f"{p * 1e-3:.6e}" for p in points).encode()
        return make_block(text)

    def commands_matching(self, prefix):
        return [c for c in self.sent if c.startswith(prefix)]


@pytest.fixture
def scope():
    return SimulatedScope()


@pytest.fixture
def single_scope():
    return SimulatedScope(sweep="SING", mode="RAW", fmt="BYTE")
