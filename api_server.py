#!/usr/bin/env python
"""
Uvicorn entry point for the PodcastFlow Pro API
"""
import logging
import os
import sys

# Add src to Python path (relative to api_server.py)
src_path = os.path.join(os.path.dirname(__file__), "src")
if os.path.exists(src_path) and src_path not in sys.path:
    sys.path.insert(0, src_path)

from podcastflow.app import app  # noqa: E402
from podcastflow.config import config  # noqa: E402


if __name__ == "__main__":
    import uvicorn

    logging.basicConfig(
        level=logging.INFO,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )
    logger = logging.getLogger(__name__)

    logger.info("=" * 50)
    logger.info("PodcastFlow Pro API - Starting Up")
    logger.info("=" * 50)
    logger.info(f"Environment: {config.ENV}")
    logger.info(f"PORT: {config.PORT}")
    logger.info(f"Scheduler: {'enabled' if config.SCHEDULER_ENABLED else 'disabled'}")
    logger.info(f"Email provider: {config.EMAIL_PROVIDER}")
    logger.info(f"Health check endpoint: http://0.0.0.0:{config.PORT}/health")
    logger.info("=" * 50)

    try:
        uvicorn.run(
            app,
            host="0.0.0.0",
            port=config.PORT,
            log_config=None,
            access_log=True,
        )
    except Exception as e:
        logger.error(f"Failed to start server: {e}", exc_info=True)
        sys.exit(1)
