"""gcal-mcp: Google Calendar tools for MCP clients."""

from gcal_mcp.__version__ import __version__

__all__ = ["__version__"]
