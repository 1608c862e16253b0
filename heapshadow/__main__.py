"""Allow ``python -m heapshadow``."""

from heapshadow.main import main

raise SystemExit(main())
