#!/usr/bin/env python3
from __future__ import annotations

import argparse
import sys
from pathlib import Path

# Add parent directory to path for direct execution
sys.path.insert(0, str(Path(__file__).resolve().parent.parent.parent))

from rigol_waveform import DEFAULT_PORT, ScopeConnectionError, TriggerCommands, VisaSocketTransport


def parse_args():
    p = argparse.ArgumentParser()
    p.add_argument("--address", default="169.254.245.109")
    p.add_argument("--port", type=int, default=DEFAULT_PORT)
    return p.parse_args()


def main() -> None:
    args = parse_args()
    try:
        with VisaSocketTransport(args.address, port=args.port) as transport:
            print(f"Connected -> {transport.idn()}")
            trigger = TriggerCommands(transport)
            print(f"Trigger sweep: {trigger.sweep.name}")
    except ScopeConnectionError as e:
        print(f"Connection failed: {e}")
        raise


if __name__ == "__main__":
    main()
