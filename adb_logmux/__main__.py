"""
Entry point for running adb-logmux as a Python module:

    python -m adb_logmux
"""

import sys

from adb_logmux.app import main

if __name__ == "__main__":
    sys.exit(main())
