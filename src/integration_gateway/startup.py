"""
Integration Gateway Startup
===========================

Runs the gateway's FastAPI app under uvicorn.

Usage:
    python -m integration_gateway.startup --port 8080
    integration-gateway --host 127.0.0.1 --port 8080 --debug
"""

import argparse
import logging
import os

logger = logging.getLogger(__name__)


def main(argv=None):
    """
    Entry point for the integration gateway.

    CLI Args:
        --host HOST      Host to bind to (default: $INTEGRATION_GATEWAY_HOST or 0.0.0.0)
        --port PORT      Port to listen on (default: $INTEGRATION_GATEWAY_PORT or 8080)
        --debug          DEBUG logging
        --ssl-keyfile    TLS key file for the listener
        --ssl-certfile   TLS certificate file for the listener
    """
    import uvicorn

    from integration_gateway.app import create_app

    parser = argparse.ArgumentParser(description="Integration Gateway")
    parser.add_argument(
        "--host",
        "-H",
        type=str,
        default=os.getenv("INTEGRATION_GATEWAY_HOST", "0.0.0.0"),
    )
    parser.add_argument(
        "--port",
        "-p",
        type=int,
        default=int(os.getenv("INTEGRATION_GATEWAY_PORT", "8080")),
    )
    parser.add_argument("--debug", "-d", action="store_true")
    parser.add_argument("--ssl-keyfile", type=str)
    parser.add_argument("--ssl-certfile", type=str)
    args = parser.parse_args(argv)

    log_level = "debug" if args.debug else "info"
    logging.basicConfig(
        level=logging.DEBUG if args.debug else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    uvicorn_config = {
        "app": create_app(),
        "host": args.host,
        "port": args.port,
        "log_level": log_level,
    }
    if args.ssl_keyfile:
        uvicorn_config["ssl_keyfile"] = args.ssl_keyfile
    if args.ssl_certfile:
        uvicorn_config["ssl_certfile"] = args.ssl_certfile

    logger.info(f"Starting integration gateway on {args.host}:{args.port}")
    uvicorn.run(**uvicorn_config)


if __name__ == "__main__":
    main()
