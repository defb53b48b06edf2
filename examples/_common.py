from __future__ import annotations

import time

import matplotlib
matplotlib.use('Agg')  # Non-interactive backend (no X window needed)
import matplotlib.pyplot as plt

from rigol_waveform import CapturedSeries, SessionConfig, VisaSocketTransport, load_session_config


def make_transport(address: str, port: int, timeout: float) -> VisaSocketTransport:
    return VisaSocketTransport(address, port=port, timeout=timeout)


def load_or_default_config(config_path, address: str | None = None) -> SessionConfig:
    """Load a session JSON file if it exists, otherwise use the defaults."""
    config = load_session_config(config_path) if config_path and config_path.exists() else SessionConfig()
    if address:
        config.address = address
    return config


def timed(name: str):
    """Context manager to measure and print execution time."""
    class Timer:
        def __enter__(self):
            self.start = time.perf_counter()
            return self
        def __exit__(self, *args):
            elapsed = time.perf_counter() - self.start
            print(f"  [{name}] {elapsed*1000:.1f} ms")
    return Timer()


def plot_series(series: CapturedSeries, output_path: str, title: str) -> None:
    x, y = series.points()
    print(
        f"{len(series):,} points: min={y.min():.3f} V, "
        f"max={y.max():.3f} V, mean={y.mean():.3f} V, p2p={(y.max()-y.min()):.3f} V"
    )

    plt.figure(figsize=(8, 4))
    plt.plot(x, y, linewidth=1)
    plt.title(title)
    plt.xlabel("Time (s)")
    plt.ylabel("Voltage (V)")
    plt.tight_layout()
    plt.savefig(output_path, dpi=150)
    plt.close()
