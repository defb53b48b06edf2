#!/usr/bin/env python3
from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path

# Add parent directory to path for direct execution
sys.path.insert(0, str(Path(__file__).resolve().parent.parent.parent))
sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from _common import load_or_default_config, make_transport, plot_series, timed
from rigol_waveform import (
    CapturedSeries,
    ScopeError,
    export_series,
    open_session,
    retrieve,
)


def parse_args():
    p = argparse.ArgumentParser()
    p.add_argument("--address", default=None, help="Overrides the address in --config")
    p.add_argument("--config", type=Path, default=None, help="Path to JSON session file")
    p.add_argument("--points", type=int, default=None, help="Points to read (default: config total_range)")
    p.add_argument("--outdir", default=".")
    p.add_argument("--verbose", action="store_true")
    return p.parse_args()


def main() -> None:
    args = parse_args()
    logging.basicConfig(level=logging.DEBUG if args.verbose else logging.INFO)

    outdir = Path(args.outdir)
    outdir.mkdir(parents=True, exist_ok=True)
    config = load_or_default_config(args.config, args.address)
    total_range = args.points if args.points is not None else config.total_range

    transport = make_transport(config.address, config.port, config.timeout)
    try:
        with transport:
            with timed("open_session"):
                _, trigger, waveform = open_session(config, transport)
            print(f"Sweep {trigger.sweep.name}, mode {waveform.mode.name}, "
                  f"max memory {waveform.max_memory_size}")

            series = CapturedSeries(capacity=config.memory_depth)
            with timed("retrieve"):
                retrieve(total_range, waveform, series)

        data_file = outdir / "output.txt"
        with timed("export"):
            export_series(series, data_file)
        print(f"Saved data: {data_file.name}")

        with timed("plot"):
            plot_series(series, str(outdir / "capture.png"), title=f"{config.source.name} capture")
        print("Saved plot: capture.png")

    except ScopeError as e:
        print(f"Capture failed: {e}")
        raise


if __name__ == "__main__":
    main()
