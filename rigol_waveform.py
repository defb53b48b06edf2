#!/usr/bin/env python3
"""
Rigol DS1000Z waveform acquisition library.

Reads deep-memory waveforms from the :WAVeform subsystem over a raw SCPI
socket (TCP port 5555), one block-format chunk at a time, and converts the
raw samples into (time, voltage) points.
"""
from __future__ import annotations

import contextlib
import json
import logging
import math
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum, IntEnum
from pathlib import Path
from typing import Iterator

import numpy as np
import pyvisa
from numpy.typing import NDArray
from pyvisa import constants
from pyvisa.errors import VisaIOError
from pyvisa.resources import MessageBasedResource


__all__ = [
    # Enums
    "SweepMode",
    "AcquisitionMode",
    "TransferFormat",
    "Source",
    "MemoryDepth",
    # Exceptions
    "ScopeError",
    "TransportError",
    "ScopeConnectionError",
    "ScopeTimeoutError",
    "BlockFormatError",
    "MalformedEnvelope",
    "MalformedLength",
    "TruncatedPayload",
    "MalformedData",
    "IncompleteData",
    "ResponseParseError",
    "InvalidEnumValue",
    "NumericParseError",
    "ScopeConfigurationError",
    "IllegalModeTransition",
    "MemoryBoundsExceeded",
    "InvalidWindow",
    "TransferSizeExceeded",
    "UnsupportedFormat",
    "OutputBufferExhausted",
    # Data classes
    "MaxMemorySize",
    "AxisPair",
    "ScalingParameters",
    "Window",
    "RawSampleBuffer",
    "CapturedSeries",
    "SessionConfig",
    # Transport
    "Transport",
    "VisaSocketTransport",
    # Commands
    "TriggerCommands",
    "WaveformCommands",
    # Functions
    "decode_block",
    "chunk_windows",
    "convert_voltage",
    "retrieve",
    "export_series",
    "load_session_config",
    "save_session_config",
    "open_session",
    "acquire",
]

logger = logging.getLogger(__name__)

DEFAULT_PORT = 5555
REPLY_TIMEOUT = 1.0      # s, text replies
DATA_TIMEOUT = 10.0      # s, block transfers
NORMAL_MEMORY_SIZE = 1200  # points readable in NORMal mode
LINE_TERMINATOR = 0x0A


class SweepMode(Enum):
    """Trigger sweep mode (:TRIGger:SWEep)."""
    AUTO = "AUTO"
    NORMAL = "NORM"
    SINGLE = "SING"


class AcquisitionMode(Enum):
    """Waveform reading mode (:WAVeform:MODE)."""
    NORMAL = "NORM"   # Screen data
    MAX = "MAX"       # Screen data when running, memory data when stopped
    RAW = "RAW"       # Memory data


class TransferFormat(Enum):
    """Waveform return format (:WAVeform:FORMat)."""
    ASCII = "ASC"
    WORD = "WORD"
    BYTE = "BYTE"

    @property
    def max_transfer_size(self) -> int:
        """Maximum number of samples in one :WAVeform:DATA? block."""
        return _MAX_TRANSFER_SIZE[self]


_MAX_TRANSFER_SIZE = {
    TransferFormat.ASCII: 15625,
    TransferFormat.WORD: 125000,
    TransferFormat.BYTE: 250000,
}


class Source(Enum):
    """Waveform source channel (:WAVeform:SOURce)."""
    D0 = "D0"
    D1 = "D1"
    D2 = "D2"
    D3 = "D3"
    D4 = "D4"
    D5 = "D5"
    D6 = "D6"
    D7 = "D7"
    D8 = "D8"
    D9 = "D9"
    D10 = "D10"
    D11 = "D11"
    D12 = "D12"
    D13 = "D13"
    D14 = "D14"
    D15 = "D15"
    CHAN1 = "CHAN1"
    CHAN2 = "CHAN2"
    CHAN3 = "CHAN3"
    CHAN4 = "CHAN4"
    MATH = "MATH"


class MemoryDepth(IntEnum):
    """Maximum memory depth per model (points)."""
    DS1102Z_E = 24_000_000   # 24 Mpts


# === Exceptions ===

class ScopeError(Exception):
    """Base exception for Rigol waveform acquisition errors."""
    pass


class TransportError(ScopeError):
    """Underlying I/O failure on the instrument connection."""

    def __init__(self, message: str, original_error: Exception | None = None) -> None:
        super().__init__(message)
        self.original_error = original_error


class ScopeConnectionError(TransportError):
    """Connection failure (network, VISA, etc.)."""
    pass


class ScopeTimeoutError(TransportError):
    """Response timeout."""
    pass


class BlockFormatError(ScopeError):
    """Block-format (#N<length><payload>) response could not be decoded."""
    pass


class MalformedEnvelope(BlockFormatError):
    """Missing '#' marker or invalid length-of-length digit."""
    pass


class MalformedLength(BlockFormatError):
    """Length field is not a decimal number."""
    pass


class TruncatedPayload(BlockFormatError):
    """Byte payload ended without the expected line terminator."""
    pass


class MalformedData(BlockFormatError):
    """Word payload has an odd number of bytes."""
    pass


class IncompleteData(BlockFormatError):
    """Response is shorter than the declared payload."""
    pass


class ResponseParseError(ScopeError):
    """A text reply could not be parsed."""

    def __init__(self, message: str, text: str) -> None:
        super().__init__(message)
        self.text = text


class InvalidEnumValue(ResponseParseError):
    """Reply token does not name a member of the expected enumeration."""

    def __init__(self, enum_name: str, text: str) -> None:
        super().__init__(f"Invalid {enum_name}: {text!r}", text)
        self.enum_name = enum_name


class NumericParseError(ResponseParseError):
    """Reply is not a number."""

    def __init__(self, text: str) -> None:
        super().__init__(f"Could not parse numeric value from: {text!r}", text)


class ScopeConfigurationError(ScopeError):
    """Invalid configuration value."""
    pass


class IllegalModeTransition(ScopeConfigurationError):
    """MAX and RAW modes require the trigger sweep to be SINGLE."""

    def __init__(self, mode: AcquisitionMode, sweep: SweepMode) -> None:
        super().__init__(
            f"Mode {mode.name} requires trigger sweep SINGLE (current: {sweep.name})"
        )
        self.mode = mode
        self.sweep = sweep


class MemoryBoundsExceeded(ScopeConfigurationError):
    """Start or stop point beyond the readable memory."""

    def __init__(self, point: int, max_memory_size: MaxMemorySize) -> None:
        super().__init__(f"Point {point} exceeds max memory size {max_memory_size}")
        self.point = point
        self.max_memory_size = max_memory_size


class InvalidWindow(ScopeConfigurationError):
    """Stop point lies before the start point."""

    def __init__(self, start: int, stop: int) -> None:
        super().__init__(f"Start point {start} is greater than stop point {stop}")
        self.start = start
        self.stop = stop


class TransferSizeExceeded(ScopeConfigurationError, BlockFormatError):
    """Window or block larger than one transfer of the active format."""

    def __init__(self, size: int, max_transfer_size: int) -> None:
        super().__init__(f"Size {size} exceeds max transfer size {max_transfer_size}")
        self.size = size
        self.max_transfer_size = max_transfer_size


class UnsupportedFormat(ScopeConfigurationError):
    """Voltage conversion is only implemented for BYTE data."""

    def __init__(self, fmt: TransferFormat) -> None:
        super().__init__(f"Voltage conversion not supported for {fmt.name} data")
        self.format = fmt


class OutputBufferExhausted(ScopeError):
    """Converted chunk does not fit in the captured series."""

    def __init__(self, count: int, size: int, capacity: int) -> None:
        super().__init__(
            f"Cannot append {size} points at {count}: capacity is {capacity}"
        )
        self.count = count
        self.size = size
        self.capacity = capacity


# === Data Classes ===

@dataclass(frozen=True)
class MaxMemorySize:
    """Readable memory ceiling for the current acquisition mode."""
    mode: AcquisitionMode
    limit: int

    @classmethod
    def for_mode(cls, mode: AcquisitionMode, memory_depth: int) -> MaxMemorySize:
        if mode is AcquisitionMode.NORMAL:
            return cls(mode, NORMAL_MEMORY_SIZE)
        return cls(mode, int(memory_depth))

    def __str__(self) -> str:
        return f"{self.mode.name}({self.limit})"


@dataclass
class AxisPair:
    """(x, y) pair of per-axis scaling values."""
    x: float = 0.0
    y: float = 0.0


@dataclass
class ScalingParameters:
    """Origin, reference and increment for time (x) and voltage (y)."""
    origin: AxisPair = field(default_factory=AxisPair)
    reference: AxisPair = field(default_factory=AxisPair)
    increment: AxisPair = field(default_factory=AxisPair)


@dataclass(frozen=True)
class Window:
    """1-based inclusive point range of one transfer."""
    start: int
    stop: int

    @property
    def size(self) -> int:
        return self.stop - self.start + 1


@dataclass
class RawSampleBuffer:
    """Receive buffer for one block, sized to the format's transfer ceiling.

    BYTE holds uint8 samples, WORD uint16 samples, ASCII the comma separated
    tokens as strings. `count` is the number of samples decoded from the last
    block.
    """
    format: TransferFormat
    samples: NDArray[np.uint8] | NDArray[np.uint16] | list[str]
    count: int = 0

    @classmethod
    def allocate(cls, fmt: TransferFormat) -> RawSampleBuffer:
        capacity = fmt.max_transfer_size
        if fmt is TransferFormat.BYTE:
            samples = np.zeros(capacity, dtype=np.uint8)
        elif fmt is TransferFormat.WORD:
            samples = np.zeros(capacity, dtype=np.uint16)
        else:
            samples = [""] * capacity
        return cls(format=fmt, samples=samples)

    @property
    def capacity(self) -> int:
        return len(self.samples)


class CapturedSeries:
    """Preallocated (time, voltage) arena with a write cursor.

    Only the first `count` entries are valid.
    """

    def __init__(self, capacity: int = MemoryDepth.DS1102Z_E) -> None:
        self.x: NDArray[np.float32] = np.zeros(int(capacity), dtype=np.float32)
        self.y: NDArray[np.float32] = np.zeros(int(capacity), dtype=np.float32)
        self.count = 0

    def __len__(self) -> int:
        return self.count

    @property
    def capacity(self) -> int:
        return len(self.x)

    def points(self) -> tuple[NDArray[np.float32], NDArray[np.float32]]:
        """Return (time, voltage) views of the valid entries."""
        return self.x[:self.count], self.y[:self.count]

    def reset(self) -> None:
        self.count = 0


@dataclass
class SessionConfig:
    """Connection and acquisition settings for one capture."""
    address: str = "169.254.245.109"
    port: int = DEFAULT_PORT
    timeout: float = DATA_TIMEOUT      # s
    memory_depth: int = MemoryDepth.DS1102Z_E
    mode: AcquisitionMode = AcquisitionMode.RAW
    format: TransferFormat = TransferFormat.BYTE
    source: Source = Source.CHAN1
    total_range: int = MemoryDepth.DS1102Z_E

    @classmethod
    def from_dict(cls, data: dict) -> SessionConfig:
        defaults = cls()
        return cls(
            address=data.get("address", defaults.address),
            port=int(data.get("port", defaults.port)),
            timeout=float(data.get("timeout", defaults.timeout)),
            memory_depth=int(data.get("memory_depth", defaults.memory_depth)),
            mode=AcquisitionMode[data.get("mode", defaults.mode.name)],
            format=TransferFormat[data.get("format", defaults.format.name)],
            source=Source[data.get("source", defaults.source.name)],
            total_range=int(data.get("total_range", defaults.total_range)),
        )

    def to_dict(self) -> dict:
        return {
            "address": self.address,
            "port": self.port,
            "timeout": self.timeout,
            "memory_depth": int(self.memory_depth),
            "mode": self.mode.name,
            "format": self.format.name,
            "source": self.source.name,
            "total_range": self.total_range,
        }


def load_session_config(filepath: str | Path) -> SessionConfig:
    """Load session settings from a JSON file."""
    filepath = Path(filepath)
    with filepath.open() as f:
        return SessionConfig.from_dict(json.load(f))


def save_session_config(config: SessionConfig, filepath: str | Path) -> None:
    """Save session settings to a JSON file."""
    filepath = Path(filepath)
    with filepath.open("w") as f:
        json.dump(config.to_dict(), f, indent=2)
    logger.info(f"Session config saved to {filepath}")


# === Transport ===

class Transport(ABC):
    """Synchronous request/response channel to the instrument.

    One command/response pair is in flight at a time.
    """

    @abstractmethod
    def send(self, command: str) -> None:
        """Write one SCPI command (the line terminator is appended)."""
        ...

    @abstractmethod
    def read_line_reply(self, timeout: float = REPLY_TIMEOUT) -> str:
        """Read a text reply without its trailing newline."""
        ...

    @abstractmethod
    def read(self, size: int, timeout: float = DATA_TIMEOUT) -> bytes:
        """Read up to `size` raw bytes; b"" at end of response or timeout."""
        ...

    def read_all(self, timeout: float = DATA_TIMEOUT, chunk_size: int = 65536) -> bytes:
        """Read raw bytes until the response is exhausted."""
        chunks = []
        while True:
            data = self.read(chunk_size, timeout)
            if not data:
                break
            chunks.append(data)
        return b"".join(chunks)

    def query(self, command: str, timeout: float = REPLY_TIMEOUT) -> str:
        """Send SCPI query and return response."""
        self.send(command)
        return self.read_line_reply(timeout)


class VisaSocketTransport(Transport):
    """Raw SCPI socket (TCPIP::<host>::<port>::SOCKET) through PyVISA."""

    def __init__(
        self,
        address: str,
        port: int = DEFAULT_PORT,
        timeout: float = DATA_TIMEOUT,
        visa_backend: str = "@py",
        chunk_size: int = 20 * 1024,
    ) -> None:
        self._address = address
        self._port = port
        self._timeout = timeout
        self._visa_backend = visa_backend
        self._chunk_size = chunk_size
        self._rm: pyvisa.ResourceManager | None = None
        self._resource: MessageBasedResource | None = None
        self._connected = False
        self._logger = logging.getLogger(self.__class__.__name__)

    def __enter__(self) -> VisaSocketTransport:
        self.connect()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.disconnect()

    @property
    def resource_name(self) -> str:
        return f"TCPIP0::{self._address}::{self._port}::SOCKET"

    @property
    def connected(self) -> bool:
        return self._connected

    def connect(self) -> None:
        """Open the socket resource."""
        if self._connected:
            return

        try:
            self._rm = pyvisa.ResourceManager(self._visa_backend)
            self._resource = self._rm.open_resource(
                self.resource_name,
                resource_pyclass=MessageBasedResource,
                read_termination="\n",
                write_termination="\n",
            )
            self._resource.timeout = int(self._timeout * 1000)
            self._connected = True

            # Suppress pyvisa logging
            logging.getLogger("pyvisa").setLevel(logging.WARNING)

        except pyvisa.Error as e:
            raise ScopeConnectionError(
                f"Connection failed: {self.resource_name}", original_error=e
            ) from e

        try:
            idn = self.idn()
        except ScopeError:
            self.disconnect()
            raise
        self._logger.info(f"Connected: {idn}")

    def disconnect(self) -> None:
        """Close the socket resource."""
        if self._resource:
            self._resource.close()
        if self._rm:
            self._rm.close()
        self._resource = None
        self._rm = None
        self._connected = False
        self._logger.info("Disconnected")

    def idn(self) -> str:
        return self.query("*IDN?")

    def _ensure_connected(self) -> MessageBasedResource:
        if not self._connected or self._resource is None:
            raise ScopeConnectionError("Not connected to scope")
        return self._resource

    @contextlib.contextmanager
    def _temp_timeout(self, timeout: float) -> Iterator[None]:
        resource = self._ensure_connected()
        old_timeout = resource.timeout
        resource.timeout = int(timeout * 1000)
        try:
            yield
        finally:
            resource.timeout = old_timeout

    @contextlib.contextmanager
    def _binary_reads(self) -> Iterator[None]:
        # Payload bytes may contain '\n'; disable the termination character
        resource = self._ensure_connected()
        old_termination = resource.read_termination
        resource.read_termination = ""
        try:
            yield
        finally:
            resource.read_termination = old_termination

    def send(self, command: str) -> None:
        resource = self._ensure_connected()
        try:
            resource.write(command)
        except pyvisa.Error as e:
            raise TransportError(f"Write failed: {command}", original_error=e) from e
        self._logger.debug(f"WRITE: {command}")

    def read_line_reply(self, timeout: float = REPLY_TIMEOUT) -> str:
        resource = self._ensure_connected()
        with self._temp_timeout(timeout):
            try:
                reply = resource.read()
            except VisaIOError as e:
                if e.error_code == constants.StatusCode.error_timeout:
                    raise ScopeTimeoutError(
                        f"Reply timeout: {timeout}s", original_error=e
                    ) from e
                raise TransportError("Read failed", original_error=e) from e
        return reply.rstrip("\n")

    def read(self, size: int, timeout: float = DATA_TIMEOUT) -> bytes:
        resource = self._ensure_connected()
        count = min(size, self._chunk_size)
        with self._temp_timeout(timeout), self._binary_reads():
            try:
                data, _ = resource.visalib.read(resource.session, count)
            except VisaIOError as e:
                if e.error_code == constants.StatusCode.error_timeout:
                    self._logger.debug(f"Read timeout after {timeout}s")
                    return b""
                raise TransportError("Read failed", original_error=e) from e
        return bytes(data)

    def query(self, command: str, timeout: float = REPLY_TIMEOUT) -> str:
        response = super().query(command, timeout)
        self._logger.debug(f"QUERY: {command} -> {response}")
        return response


# === Block Decoder ===

def _read_exact(transport: Transport, size: int, timeout: float) -> bytes:
    data = b""
    while len(data) < size:
        chunk = transport.read(size - len(data), timeout)
        if not chunk:
            break
        data += chunk
    return data


def _read_block_header(transport: Transport, timeout: float) -> int:
    """Consume '#' + length-of-length digit + length; return declared length."""
    marker = _read_exact(transport, 2, timeout)
    if len(marker) < 1 or marker[0:1] != b"#":
        raise MalformedEnvelope(f"Invalid header: {marker!r}")
    if len(marker) < 2 or marker[1:2] not in b"123456789":
        raise MalformedEnvelope(f"Invalid header length: {marker!r}")

    digits = int(marker[1:2])
    length_field = _read_exact(transport, digits, timeout)
    if len(length_field) != digits or not length_field.isdigit():
        raise MalformedLength(f"Invalid data length: {length_field!r}")
    return int(length_field)


def _decode_byte_block(
    transport: Transport, buffer: RawSampleBuffer, declared: int, timeout: float
) -> int:
    samples = buffer.samples
    capacity = buffer.capacity
    # Payload plus, below the ceiling, its line terminator
    limit = declared if declared == capacity else declared + 1

    total = 0
    while total < declared:
        chunk = transport.read(limit - total, timeout)
        if not chunk:
            break
        samples[total:total + len(chunk)] = np.frombuffer(chunk, dtype=np.uint8)
        total += len(chunk)

    if declared == capacity and total == capacity:
        # Full-size block: one trailing terminator byte follows
        transport.read(1, timeout)
        buffer.count = total
        return total

    if total == declared:
        tail = transport.read(1, timeout)
        if tail:
            samples[total] = tail[0]
            total += 1

    if total == 0:
        if declared:
            raise TruncatedPayload(f"No payload received, expected {declared} bytes")
        buffer.count = 0
        return 0

    if samples[total - 1] == LINE_TERMINATOR:
        samples[total - 1] = 0
    elif total != declared:
        raise TruncatedPayload(
            f"Payload of {total}/{declared} bytes must end with '\\n', "
            f"got {int(samples[total - 1]):#04x}"
        )

    buffer.count = min(total, declared)
    return buffer.count


def _decode_word_block(
    transport: Transport, buffer: RawSampleBuffer, declared: int, timeout: float
) -> int:
    body = transport.read_all(timeout)
    if len(body) < declared * 2:
        raise IncompleteData(f"Incomplete data: {len(body)} of {declared * 2} bytes")
    if len(body) % 2 and body.endswith(b"\n"):
        body = body[:-1]
    if len(body) % 2:
        raise MalformedData(f"Data length is not even: {len(body)} bytes")

    words = np.frombuffer(body[:declared * 2], dtype="<u2")
    buffer.samples[:declared] = words
    buffer.count = declared
    return declared


def _decode_ascii_block(
    transport: Transport, buffer: RawSampleBuffer, declared: int, timeout: float
) -> int:
    """Split the declared text bytes into comma separated tokens.

    The declared length counts text bytes, so the transfer ceiling is applied
    to the token count. Only the declared bytes and one terminator byte are
    consumed.
    """
    body = _read_exact(transport, declared, timeout)
    if len(body) < declared:
        raise IncompleteData(f"Incomplete data: {len(body)} of {declared} bytes")
    transport.read(1, timeout)

    text = body.decode("ascii", errors="replace").strip()
    tokens = [t.strip() for t in text.split(",")] if text else []
    if len(tokens) > buffer.capacity:
        raise TransferSizeExceeded(len(tokens), buffer.capacity)
    buffer.samples[:len(tokens)] = tokens
    buffer.count = len(tokens)
    return buffer.count


def decode_block(
    transport: Transport, buffer: RawSampleBuffer, timeout: float = DATA_TIMEOUT
) -> int:
    """Decode one block-format response into `buffer`.

    Args:
        transport: Transport positioned at the start of the response
        buffer: Receive buffer; its format selects the decoding path
        timeout: Per-read timeout in seconds

    Returns:
        Number of samples decoded.
    """
    declared = _read_block_header(transport, timeout)
    logger.debug(f"Block header: {declared} ({buffer.format.name})")

    if buffer.format is TransferFormat.BYTE:
        if declared > buffer.capacity:
            raise TransferSizeExceeded(declared, buffer.capacity)
        return _decode_byte_block(transport, buffer, declared, timeout)
    if buffer.format is TransferFormat.WORD:
        if declared > buffer.capacity:
            raise TransferSizeExceeded(declared, buffer.capacity)
        return _decode_word_block(transport, buffer, declared, timeout)
    # ASCII length counts text bytes; the ceiling applies to the parsed points
    return _decode_ascii_block(transport, buffer, declared, timeout)


# === Reply Parsing ===

def _parse_enum(enum_cls: type[Enum], text: str) -> Enum:
    try:
        return enum_cls(text.strip())
    except ValueError:
        raise InvalidEnumValue(enum_cls.__name__, text) from None


def _parse_float(text: str) -> float:
    stripped = text.strip()
    if "_" in stripped:
        raise NumericParseError(text)
    try:
        value = float(stripped)
    except ValueError:
        raise NumericParseError(text) from None
    if not math.isfinite(value):
        raise NumericParseError(text)
    return value


def _parse_point(text: str) -> int:
    # Plain non-negative decimal only; int() would also take "+5" or "1_000"
    stripped = text.strip()
    if not stripped.isdigit():
        raise NumericParseError(text)
    try:
        return int(stripped)
    except ValueError:
        raise NumericParseError(text) from None


# === Trigger ===

class TriggerCommands:
    """:TRIGger subsystem; the sweep mode is read once at construction."""

    def __init__(self, transport: Transport, reply_timeout: float = REPLY_TIMEOUT) -> None:
        self._transport = transport
        self._reply_timeout = reply_timeout
        self._logger = logging.getLogger(self.__class__.__name__)
        self._sweep = self.get_sweep()

    @property
    def sweep(self) -> SweepMode:
        return self._sweep

    def get_sweep(self) -> SweepMode:
        sweep = _parse_enum(
            SweepMode, self._transport.query(":TRIGger:SWEep?", self._reply_timeout)
        )
        self._logger.debug(f"Trigger sweep: {sweep.name}")
        return sweep


# === Waveform ===

class WaveformCommands:
    """:WAVeform subsystem state.

    Every setter is paired with a getter; the state kept here is the value
    echoed back by the scope, not the one requested.
    """

    def __init__(
        self,
        transport: Transport,
        memory_depth: int,
        trigger: TriggerCommands,
        reply_timeout: float = REPLY_TIMEOUT,
        data_timeout: float = DATA_TIMEOUT,
    ) -> None:
        self._transport = transport
        self._trigger = trigger
        self._reply_timeout = reply_timeout
        self._data_timeout = data_timeout
        self._logger = logging.getLogger(self.__class__.__name__)

        self.memory_depth = int(memory_depth)
        self.mode = AcquisitionMode.MAX
        self.max_memory_size = MaxMemorySize.for_mode(self.mode, self.memory_depth)
        self.format = TransferFormat.ASCII
        self.max_transfer_size = self.format.max_transfer_size
        self.data = RawSampleBuffer.allocate(self.format)
        self.source = Source.CHAN1
        self.origin = AxisPair()
        self.reference = AxisPair()
        self.increment = AxisPair()
        self.start_point = 0
        self.stop_point = 0

        self.get_origin()
        self.get_reference()
        self.get_increment()
        self.get_mode(trigger)
        self.get_source()
        self.get_format()
        self.start(1)
        self.stop(1)

    @property
    def window(self) -> Window:
        return Window(self.start_point, self.stop_point)

    @property
    def scaling(self) -> ScalingParameters:
        return ScalingParameters(
            origin=AxisPair(self.origin.x, self.origin.y),
            reference=AxisPair(self.reference.x, self.reference.y),
            increment=AxisPair(self.increment.x, self.increment.y),
        )

    def write(self, command: str) -> None:
        self._transport.send(command)

    def query(self, command: str) -> str:
        return self._transport.query(command, self._reply_timeout)

    # --- Source ---

    def set_source(self, source: Source) -> None:
        self.write(f":WAVeform:SOURce {source.value}")

    def get_source(self) -> Source:
        self.source = _parse_enum(Source, self.query(":WAVeform:SOURce?"))
        return self.source

    def apply_source(self, source: Source) -> Source:
        self.set_source(source)
        confirmed = self.get_source()
        self._logger.info(f"Source: {confirmed.name}")
        return confirmed

    # --- Mode ---

    def _check_mode(self, mode: AcquisitionMode, trigger: TriggerCommands) -> None:
        if mode in (AcquisitionMode.MAX, AcquisitionMode.RAW) \
                and trigger.sweep is not SweepMode.SINGLE:
            raise IllegalModeTransition(mode, trigger.sweep)

    def set_mode(
        self, mode: AcquisitionMode, trigger: TriggerCommands | None = None
    ) -> None:
        self._check_mode(mode, trigger or self._trigger)
        self.write(f":WAVeform:MODE {mode.value}")

    def get_mode(self, trigger: TriggerCommands | None = None) -> AcquisitionMode:
        trigger = trigger or self._trigger
        mode = _parse_enum(AcquisitionMode, self.query(":WAVeform:MODE?"))
        self._check_mode(mode, trigger)
        self.max_memory_size = MaxMemorySize.for_mode(mode, self.memory_depth)
        self.mode = mode
        return mode

    def apply_mode(
        self, mode: AcquisitionMode, trigger: TriggerCommands | None = None
    ) -> AcquisitionMode:
        """Set and confirm the acquisition mode.

        Raises IllegalModeTransition before anything is sent when MAX or RAW
        is requested without a SINGLE trigger sweep.
        """
        trigger = trigger or self._trigger
        self.set_mode(mode, trigger)
        confirmed = self.get_mode(trigger)
        self._logger.info(f"Mode: {confirmed.name}, max memory {self.max_memory_size}")
        return confirmed

    # --- Format ---

    def set_format(self, fmt: TransferFormat) -> None:
        self.write(f":WAVeform:FORMat {fmt.value}")

    def get_format(self) -> TransferFormat:
        fmt = _parse_enum(TransferFormat, self.query(":WAVeform:FORMat?"))
        self.max_transfer_size = fmt.max_transfer_size
        self.data = RawSampleBuffer.allocate(fmt)
        self.format = fmt
        return fmt

    def apply_format(self, fmt: TransferFormat) -> TransferFormat:
        self.set_format(fmt)
        confirmed = self.get_format()
        self._logger.info(
            f"Format: {confirmed.name}, max transfer {self.max_transfer_size}"
        )
        return confirmed

    # --- Scaling ---

    def get_xorigin(self) -> float:
        self.origin.x = _parse_float(self.query(":WAVeform:XORigin?"))
        return self.origin.x

    def get_yorigin(self) -> float:
        self.origin.y = _parse_float(self.query(":WAVeform:YORigin?"))
        return self.origin.y

    def get_origin(self) -> AxisPair:
        self.get_xorigin()
        self.get_yorigin()
        return self.origin

    def get_xreference(self) -> float:
        self.reference.x = _parse_float(self.query(":WAVeform:XREFerence?"))
        return self.reference.x

    def get_yreference(self) -> float:
        self.reference.y = _parse_float(self.query(":WAVeform:YREFerence?"))
        return self.reference.y

    def get_reference(self) -> AxisPair:
        self.get_xreference()
        self.get_yreference()
        return self.reference

    def get_xincrement(self) -> float:
        self.increment.x = _parse_float(self.query(":WAVeform:XINCrement?"))
        return self.increment.x

    def get_yincrement(self) -> float:
        self.increment.y = _parse_float(self.query(":WAVeform:YINCrement?"))
        return self.increment.y

    def get_increment(self) -> AxisPair:
        self.get_xincrement()
        self.get_yincrement()
        return self.increment

    # --- Window ---

    def set_start_point(self, start_point: int) -> None:
        if start_point > self.max_memory_size.limit:
            raise MemoryBoundsExceeded(start_point, self.max_memory_size)
        self.write(f":WAVeform:STARt {start_point}")

    def get_start_point(self) -> int:
        self.start_point = _parse_point(self.query(":WAVeform:STARt?"))
        return self.start_point

    def start(self, start_point: int) -> int:
        self.set_start_point(start_point)
        return self.get_start_point()

    def set_stop_point(self, stop_point: int) -> None:
        if stop_point > self.max_memory_size.limit:
            raise MemoryBoundsExceeded(stop_point, self.max_memory_size)
        if stop_point < self.start_point:
            raise InvalidWindow(self.start_point, stop_point)
        if stop_point - self.start_point > self.max_transfer_size:
            raise TransferSizeExceeded(
                stop_point - self.start_point, self.max_transfer_size
            )
        self.write(f":WAVeform:STOP {stop_point}")

    def get_stop_point(self) -> int:
        self.stop_point = _parse_point(self.query(":WAVeform:STOP?"))
        return self.stop_point

    def stop(self, stop_point: int) -> int:
        self.set_stop_point(stop_point)
        return self.get_stop_point()

    # --- Data ---

    def get_data(self) -> RawSampleBuffer:
        """Read the current window into the receive buffer."""
        self.write(":WAVeform:DATA?")
        count = decode_block(self._transport, self.data, self._data_timeout)
        self._logger.debug(f"Received {count} samples for {self.window}")
        return self.data

    # --- Settings ---

    def read_all_settings(self) -> dict:
        """Read all current waveform settings from scope as a dictionary."""
        self.get_origin()
        self.get_reference()
        self.get_increment()
        self.get_mode()
        self.get_source()
        self.get_format()
        self.get_start_point()
        self.get_stop_point()

        return {
            "sweep": self._trigger.sweep.name,
            "mode": self.mode.name,
            "format": self.format.name,
            "source": self.source.name,
            "max_memory_size": self.max_memory_size.limit,
            "max_transfer_size": self.max_transfer_size,
            "window": {"start": self.start_point, "stop": self.stop_point},
            "scaling": {
                "origin": {"x": self.origin.x, "y": self.origin.y},
                "reference": {"x": self.reference.x, "y": self.reference.y},
                "increment": {"x": self.increment.x, "y": self.increment.y},
            },
        }

    def save_settings(self, filepath: str | Path) -> None:
        """Save current waveform settings to JSON file."""
        settings = self.read_all_settings()
        filepath = Path(filepath)
        with filepath.open("w") as f:
            json.dump(settings, f, indent=2)
        self._logger.info(f"Settings saved to {filepath}")

    def apply_settings(self, settings: dict) -> None:
        """Apply format, mode and source from a settings dictionary.

        Format goes first; mode is validated against the trigger sweep.
        """
        if "format" in settings:
            self.apply_format(TransferFormat[settings["format"]])
        if "mode" in settings:
            self.apply_mode(AcquisitionMode[settings["mode"]])
        if "source" in settings:
            self.apply_source(Source[settings["source"]])


# === Conversion and Retrieval ===

def convert_voltage(
    series: CapturedSeries,
    raw: RawSampleBuffer,
    window: Window,
    scaling: ScalingParameters,
) -> None:
    """Append one window of BYTE samples to `series` as (time, voltage).

    y = (raw - yorigin - yreference) * yincrement
    x = xorigin + k * xincrement, k counting from 0 within the window
    """
    if raw.format is not TransferFormat.BYTE:
        raise UnsupportedFormat(raw.format)

    size = window.size
    if size < 1:
        raise InvalidWindow(window.start, window.stop)
    if size > raw.capacity:
        raise TransferSizeExceeded(size, raw.capacity)

    begin = series.count
    end = begin + size
    if end > series.capacity:
        raise OutputBufferExhausted(series.count, size, series.capacity)

    samples = raw.samples[:size].astype(np.float32)
    series.y[begin:end] = (
        samples - np.float32(scaling.origin.y) - np.float32(scaling.reference.y)
    ) * np.float32(scaling.increment.y)
    series.x[begin:end] = (
        np.float32(scaling.origin.x)
        + np.arange(size, dtype=np.float32) * np.float32(scaling.increment.x)
    )
    series.count = end


def chunk_windows(total_range: int, chunk_size: int) -> Iterator[Window]:
    """Split points 1..total_range into consecutive windows of <= chunk_size."""
    if chunk_size < 1:
        raise ValueError(f"chunk_size must be positive: {chunk_size}")
    count = (total_range + chunk_size - 1) // chunk_size
    for i in range(count):
        start = i * chunk_size + 1
        yield Window(start, min(start + chunk_size - 1, total_range))


def retrieve(
    total_range: int, waveform: WaveformCommands, series: CapturedSeries
) -> None:
    """Read points 1..total_range chunk by chunk into `series`.

    Any failure aborts the whole retrieval; no chunk is retried.
    """
    if waveform.format is not TransferFormat.BYTE:
        raise UnsupportedFormat(waveform.format)

    chunk_size = waveform.max_transfer_size
    logger.info(f"Retrieving {total_range} points in chunks of {chunk_size}")
    for window in chunk_windows(total_range, chunk_size):
        logger.debug(f"Chunk start = {window.start}, stop = {window.stop}")
        waveform.start(window.start)
        waveform.stop(window.stop)
        waveform.get_data()
        convert_voltage(series, waveform.data, waveform.window, waveform.scaling)
    logger.info(f"Retrieved {series.count} points")


def export_series(series: CapturedSeries, filepath: str | Path) -> None:
    """Write one "<x>, <y>" line per valid point."""
    filepath = Path(filepath)
    x, y = series.points()
    with filepath.open("w") as f:
        for xv, yv in zip(x, y):
            f.write(f"{xv!s}, {yv!s}\n")
    logger.info(f"Exported {series.count} points to {filepath}")


# === Session ===

def open_session(
    config: SessionConfig, transport: Transport | None = None
) -> tuple[Transport, TriggerCommands, WaveformCommands]:
    """Connect and configure format, mode and source from `config`."""
    owns_transport = transport is None
    if transport is None:
        transport = VisaSocketTransport(config.address, config.port, config.timeout)
        transport.connect()

    try:
        trigger = TriggerCommands(transport)
        waveform = WaveformCommands(
            transport, config.memory_depth, trigger, data_timeout=config.timeout
        )
        waveform.apply_settings({
            "format": config.format.name,
            "mode": config.mode.name,
            "source": config.source.name,
        })
    except Exception:
        if owns_transport:
            transport.disconnect()
        raise

    return transport, trigger, waveform


def acquire(
    config: SessionConfig,
    filepath: str | Path | None = None,
    transport: Transport | None = None,
) -> CapturedSeries:
    """Capture `config.total_range` points and optionally export them."""
    owns_transport = transport is None
    transport, _, waveform = open_session(config, transport)
    try:
        series = CapturedSeries(capacity=config.memory_depth)
        retrieve(config.total_range, waveform, series)
    finally:
        if owns_transport:
            transport.disconnect()

    if filepath is not None:
        export_series(series, filepath)
    return series
