"""Main entry point for running zap."""

import sys

from zfs_zap.cli import main

if __name__ == "__main__":
    sys.exit(main())
