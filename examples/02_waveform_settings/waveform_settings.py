#!/usr/bin/env python3
from __future__ import annotations

import argparse
import json
import sys
from pathlib import Path

# Add parent directory to path for direct execution
sys.path.insert(0, str(Path(__file__).resolve().parent.parent.parent))
sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from _common import load_or_default_config
from rigol_waveform import ScopeConfigurationError, ScopeConnectionError, open_session


def parse_args():
    p = argparse.ArgumentParser()
    p.add_argument("--address", default=None, help="Overrides the address in --config")
    p.add_argument(
        "--config",
        type=Path,
        default=Path(__file__).parent / "session.json",
        help="Path to JSON session file",
    )
    p.add_argument("--output", type=Path, default=Path("waveform_settings.json"))
    return p.parse_args()


def main() -> None:
    args = parse_args()
    config = load_or_default_config(args.config, args.address)
    print(f"Applying mode={config.mode.name}, format={config.format.name}, "
          f"source={config.source.name}")

    try:
        transport, trigger, waveform = open_session(config)
    except ScopeConfigurationError as e:
        print(f"Configuration rejected: {e}")
        raise
    except ScopeConnectionError as e:
        print(f"Connection failed: {e}")
        raise

    try:
        print(json.dumps(waveform.read_all_settings(), indent=2))
        waveform.save_settings(args.output)
        print(f"Settings saved to {args.output}")
    finally:
        transport.disconnect()


if __name__ == "__main__":
    main()
