"""Allow ``python -m wslcompact``."""

from wslcompact.cli import app

app()
