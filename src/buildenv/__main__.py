"""Allow ``python -m buildenv``."""

import sys

from buildenv.cli import main

sys.exit(main())
