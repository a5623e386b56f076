"""Allow ``python -m capability_eval``."""

import sys

from .cli import main

sys.exit(main())
