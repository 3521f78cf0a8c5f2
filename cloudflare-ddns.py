#!/usr/bin/env python3

"""Run cloudflare-ddns from a source checkout.

Cron jobs on hosts without the package installed call this script; it puts
`src/` first on the import path and hands over to the CLI.
"""

import sys
from pathlib import Path


sys.path.insert(0, str(Path(__file__).resolve().parent / "src"))

from cloudflare_ddns.cli import main  # noqa: E402


if __name__ == "__main__":
    main()
