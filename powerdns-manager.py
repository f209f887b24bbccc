#!/usr/bin/env python3

"""Run powerdns-manager from a source checkout.

The package lives under `src/powerdns_manager`; this puts `src` on the path so
`./powerdns-manager.py` works without installing.
"""

import sys
from pathlib import Path


sys.path.insert(0, str(Path(__file__).resolve().parent / "src"))

from powerdns_manager.cli import main  # noqa: E402


if __name__ == "__main__":
    main()
