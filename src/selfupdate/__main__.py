"""Allow running the tool with ``python -m selfupdate``."""

import sys

from selfupdate.cli import main

sys.exit(main())
