"""CLI entry point for the Storefront MCP server."""

import argparse
import asyncio
import logging
import os


def main() -> None:
    """CLI entry point."""
    parser = argparse.ArgumentParser(description="Storefront MCP Server")
    parser.add_argument(
        "--mode",
        choices=["stdio", "http"],
        default="stdio",
        help="Server mode: stdio (for MCP protocol) or http (for REST API)",
    )
    parser.add_argument(
        "--backend",
        choices=["firestore", "memory"],
        help="Document store backend (overrides STOREFRONT_BACKEND)",
    )
    parser.add_argument(
        "--app-id",
        help="Application namespace id (overrides STOREFRONT_APP_ID)",
    )
    parser.add_argument(
        "--host",
        default="0.0.0.0",
        help="Host to bind to (HTTP mode only, default: 0.0.0.0)",
    )
    parser.add_argument(
        "--port",
        type=int,
        default=8000,
        help="Port to bind to (HTTP mode only, default: 8000)",
    )
    parser.add_argument(
        "--reload",
        action="store_true",
        help="Enable hot reloading (HTTP mode only, watches for file changes)",
    )
    parser.add_argument(
        "--debug",
        action="store_true",
        help="Enable debug logging",
    )

    args = parser.parse_args()

    # Settings are read from the environment, also by reloaded workers
    if args.backend:
        os.environ["STOREFRONT_BACKEND"] = args.backend
    if args.app_id:
        os.environ["STOREFRONT_APP_ID"] = args.app_id
    if args.debug:
        logging.getLogger("storefront_server").setLevel(logging.DEBUG)

    if args.mode == "http":
        from .http_server import run_http_server
        run_http_server(host=args.host, port=args.port, reload=args.reload)
    else:
        from .server import main as server_main
        asyncio.run(server_main())


if __name__ == "__main__":
    main()
