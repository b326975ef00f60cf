"""MCP server for the ZenTao project management RESTful API."""

__version__ = "0.1.0"
