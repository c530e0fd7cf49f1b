#!/usr/bin/env python3
"""
Return every expired wallet balance to the faucet.

Meant to run on a schedule (cron, a scheduled container task). Prints the
sweep report as JSON and exits non-zero when the sweep could not run.
"""

import sys

from nano_faucet.services.sweep import main

if __name__ == "__main__":
    sys.exit(main())
