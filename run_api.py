"""
Script to run the Change Relay API server.

This script starts the FastAPI application using uvicorn.
"""

import logging

import uvicorn

from app.config import print_config_summary, settings

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)

logger = logging.getLogger(__name__)

if __name__ == "__main__":
    print_config_summary()

    logger.info(f"Starting Change Relay API on {settings.HOST}:{settings.PORT}")
    if settings.ENABLE_DOCS:
        logger.info("API Documentation available at /docs")

    uvicorn.run(
        "app.api.main:app",
        host=settings.HOST,
        port=settings.PORT,
        reload=settings.DEBUG,
        log_level=settings.LOG_LEVEL.lower(),
    )
