#!/usr/bin/env python3
"""Main entry point: runs the example server and client peers."""

import sys
from pathlib import Path

# Add project to path
project_root = Path(__file__).parent
sys.path.insert(0, str(project_root))

from duplex.app import run


def main():
    """Run the example peers."""
    config_path = project_root / "config" / "config.yaml"

    if not config_path.exists():
        print("Note: config/config.yaml not found, using built-in defaults")
        print("Copy config/config.example.yaml to config/config.yaml to customise it")
        run()
        return

    run(str(config_path))


if __name__ == "__main__":
    main()
