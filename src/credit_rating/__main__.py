"""Allow ``python -m credit_rating``."""

import sys

from credit_rating.cli import main

sys.exit(main())
