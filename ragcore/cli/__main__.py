"""Allow ``python -m ragcore.cli`` execution."""

from ragcore.cli.commands import main

main()
