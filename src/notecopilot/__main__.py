"""Allow ``python -m notecopilot``."""

from .app import main

raise SystemExit(main())
