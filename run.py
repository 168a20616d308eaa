"""Run the port supervisor."""

import sys

from portguard.__main__ import main

if __name__ == "__main__":
    sys.exit(main())
