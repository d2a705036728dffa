"""Allow `python -m tablediff`."""

import sys

from .cli import main


sys.exit(main())
