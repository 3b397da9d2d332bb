"""Allow ``python -m migdiff``."""

from .cli import main

raise SystemExit(main())
