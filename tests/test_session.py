import json

import pytest

from conftest import SimulatedScope
from rigol_waveform import (
    AcquisitionMode,
    IllegalModeTransition,
    SessionConfig,
    Source,
    TransferFormat,
    acquire,
    load_session_config,
    open_session,
    save_session_config,
)


def test_session_config_defaults():
    config = SessionConfig()
    assert config.port == 5555
    assert config.mode is AcquisitionMode.RAW
    assert config.format is TransferFormat.BYTE
    assert config.total_range == 24_000_000


def test_session_config_from_partial_dict():
    config = SessionConfig.from_dict({"address": "10.0.0.2", "source": "CHAN2"})
    assert config.address == "10.0.0.2"
    assert config.source is Source.CHAN2
    assert config.format is TransferFormat.BYTE


def test_session_config_file_round_trip(tmp_path):
    config = SessionConfig(address="10.0.0.3", mode=AcquisitionMode.MAX, total_range=1000)
    path = tmp_path / "session.json"

    save_session_config(config, path)

    assert json.loads(path.read_text())["mode"] == "MAX"
    assert load_session_config(path) == config


def test_open_session_applies_config():
    sim = SimulatedScope(sweep="SING")
    config = SessionConfig(source=Source.CHAN2)

    transport, trigger, waveform = open_session(config, sim)

    assert transport is sim
    assert waveform.format is TransferFormat.BYTE
    assert waveform.mode is AcquisitionMode.RAW
    assert waveform.source is Source.CHAN2
    assert sim.commands_matching(":WAVeform:MODE ") == [":WAVeform:MODE RAW"]


def test_open_session_rejects_raw_without_single_sweep():
    sim = SimulatedScope(sweep="AUTO")

    with pytest.raises(IllegalModeTransition):
        open_session(SessionConfig(), sim)

    assert sim.commands_matching(":WAVeform:MODE ") == []


def test_acquire_exports_points(tmp_path):
    sim = SimulatedScope(sweep="SING")
    config = SessionConfig(memory_depth=2000, total_range=1000)
    path = tmp_path / "capture.txt"

    series = acquire(config, path, transport=sim)

    assert series.count == 1000
    assert sim.data_windows == [(1, 1000)]
    lines = path.read_text().splitlines()
    assert len(lines) == 1000
    assert lines[:3] == ["0.0, 0.0", "1.0, 1.0", "2.0, 2.0"]
    assert lines[256] == "256.0, 0.0"
