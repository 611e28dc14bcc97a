#!/usr/bin/env python3
"""
Main entry point for the mailfinder package.
"""

import sys
import traceback

from mailfinder.cli import main

if __name__ == '__main__':
    try:
        sys.exit(main())
    except KeyboardInterrupt:
        sys.stderr.write("\nInterrupted by user\n")
        sys.exit(130)
    except Exception:
        traceback.print_exc()
        sys.exit(1)
