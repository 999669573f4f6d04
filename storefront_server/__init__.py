"""Storefront MCP server: catalog, cart and checkout on a hosted document store."""

__version__ = "0.1.0"
