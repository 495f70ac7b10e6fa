"""Allow ``python -m knowledge.cli`` execution."""

from knowledge.cli.knowledge import main

main()
