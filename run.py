#!/usr/bin/env python3
"""
Mantrailing Card Entry Point

Starts the FastAPI server with the card service.
"""

import sys

import uvicorn

from mantrailing_card.config import get_config
from mantrailing_card.logging_config import setup_logging


def run_server(host: str, port: int, debug: bool = False):
    """Run the FastAPI server"""
    uvicorn.run(
        "mantrailing_card.api_modular:app",
        host=host,
        port=port,
        reload=debug,
        log_level="info"
    )


if __name__ == "__main__":
    config = get_config()
    logger = setup_logging(config.log_level, log_format=config.log_format, log_file=config.log_file)
    logger.info(f"Starting Mantrailing Card API on {config.api_host}:{config.api_port}")

    try:
        run_server(host=config.api_host, port=config.api_port)
    except KeyboardInterrupt:
        logger.info("Shutting down Mantrailing Card API")
    except Exception as e:
        logger.error(f"Error starting server: {e}")
        sys.exit(1)
