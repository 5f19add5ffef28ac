#!/usr/bin/env python
"""Start the PulseKit ingestion service from a source checkout."""

import os
import sys
from pathlib import Path

# Change to script directory so a relative PULSEKIT_CONFIG resolves
script_dir = Path(__file__).parent.resolve()
os.chdir(script_dir)

# Add src to path
src_path = script_dir / "src"
sys.path.insert(0, str(src_path))

if __name__ == "__main__":
    if "PULSEKIT_CONFIG" not in os.environ and Path("config.yaml").exists():
        os.environ["PULSEKIT_CONFIG"] = "config.yaml"

    from pulsekit_svc.main import run
    run()
