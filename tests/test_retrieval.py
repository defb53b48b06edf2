import math

import pytest

from conftest import SimulatedScope
from rigol_waveform import (
    CapturedSeries,
    MemoryBoundsExceeded,
    MemoryDepth,
    OutputBufferExhausted,
    TransferFormat,
    TriggerCommands,
    UnsupportedFormat,
    WaveformCommands,
    chunk_windows,
    retrieve,
)


def make_waveform(sim):
    trigger = TriggerCommands(sim)
    return WaveformCommands(sim, MemoryDepth.DS1102Z_E, trigger)


@pytest.mark.parametrize(
    "total_range, chunk_size",
    [(1, 1), (10, 3), (7, 10), (250000, 250000), (500001, 250000), (24_000_000, 250000)],
)
def test_chunk_windows_partition(total_range, chunk_size):
    windows = list(chunk_windows(total_range, chunk_size))

    assert len(windows) == math.ceil(total_range / chunk_size)
    assert windows[0].start == 1
    assert windows[-1].stop == total_range
    for previous, current in zip(windows, windows[1:]):
        assert current.start == previous.stop + 1
    assert all(1 <= w.size <= chunk_size for w in windows)


def test_chunk_windows_empty_range():
    assert list(chunk_windows(0, 250000)) == []


def test_chunk_windows_rejects_zero_chunk():
    with pytest.raises(ValueError):
        list(chunk_windows(10, 0))


def test_retrieve_three_chunks(single_scope):
    waveform = make_waveform(single_scope)
    series = CapturedSeries()

    retrieve(500001, waveform, series)

    assert single_scope.data_windows == [(1, 250000), (250001, 500000), (500001, 500001)]
    assert series.count == 500001
    # sample value is (point - 1) % 256 with unit scaling
    assert series.y[0] == 0.0
    assert series.y[255] == 255.0
    assert series.y[250000] == float(250000 % 256)
    assert series.y[500000] == float(500000 % 256)
    # time restarts at the x origin for every chunk
    assert series.x[249999] == 249999.0
    assert series.x[250000] == 0.0


def test_retrieve_zero_range_leaves_series_untouched(single_scope):
    waveform = make_waveform(single_scope)
    series = CapturedSeries(capacity=16)

    retrieve(0, waveform, series)

    assert series.count == 0
    assert not series.x.any() and not series.y.any()
    assert single_scope.data_windows == []


def test_retrieve_aborts_when_output_is_full(single_scope):
    waveform = make_waveform(single_scope)
    series = CapturedSeries(capacity=300000)

    with pytest.raises(OutputBufferExhausted) as excinfo:
        retrieve(500001, waveform, series)

    assert excinfo.value.count == 250000
    assert series.count == 250000
    assert single_scope.data_windows == [(1, 250000), (250001, 500000)]


def test_retrieve_beyond_normal_memory():
    sim = SimulatedScope(sweep="SING", mode="NORM", fmt="BYTE")
    waveform = make_waveform(sim)

    with pytest.raises(MemoryBoundsExceeded):
        retrieve(1201, waveform, CapturedSeries(capacity=2000))

    assert ":WAVeform:DATA?" not in sim.sent


@pytest.mark.parametrize("fmt", ["WORD", "ASC"])
def test_retrieve_requires_byte_format(fmt):
    sim = SimulatedScope(sweep="SING", mode="RAW", fmt=fmt)
    waveform = make_waveform(sim)
    sent_before = list(sim.sent)

    with pytest.raises(UnsupportedFormat) as excinfo:
        retrieve(10, waveform, CapturedSeries(capacity=10))

    assert excinfo.value.format is TransferFormat(fmt)
    assert sim.sent == sent_before


def test_word_data_is_decoded_by_get_data():
    sim = SimulatedScope(sweep="SING", mode="RAW", fmt="WORD")
    waveform = make_waveform(sim)
    waveform.start(65535)
    waveform.stop(65538)

    raw = waveform.get_data()

    assert raw.count == 4
    assert list(raw.samples[:4]) == [65534, 65535, 0, 1]
