"""Command-line interface for gcal-mcp."""
