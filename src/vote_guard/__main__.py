"""Allow ``python -m vote_guard``."""

from .cli import main

main()
