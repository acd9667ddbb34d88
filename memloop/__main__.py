"""Run the MCP stdio server: python -m memloop."""

from memloop.server import main

main()
