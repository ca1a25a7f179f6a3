"""Allow ``python -m miniflux_offline``."""

import sys

from miniflux_offline.cli import main

if __name__ == "__main__":
    sys.exit(main())
