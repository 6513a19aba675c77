"""Tally MCP server. Run with ``python server.py`` or the ``tally`` console script."""

from tally.server import main

if __name__ == "__main__":
    main()
