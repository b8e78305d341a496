"""Allow ``python -m itemize_sync``."""

from itemize_sync.cli import app

app()
