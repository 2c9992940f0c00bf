"""dbnexus-mcp: multi-dialect database access over the Model Context Protocol."""

__version__ = "0.1.0"
