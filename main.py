"""
HubSpot Deal Analytics — Entry Point
======================================

Run: python main.py
"""

import logging
import os

from dotenv import load_dotenv

load_dotenv()

# Configure logging
logging.basicConfig(
    level=getattr(logging, os.getenv("LOG_LEVEL", "INFO").upper(), logging.INFO),
    format="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
)
logger = logging.getLogger("deal-analytics")

PORT = int(os.getenv("DASHBOARD_PORT", "8001"))

if __name__ == "__main__":
    import uvicorn

    logger.info("=" * 60)
    logger.info("  HUBSPOT DEAL ANALYTICS")
    logger.info("=" * 60)
    logger.info(f"  Environment : {os.getenv('ENVIRONMENT', 'development')}")
    logger.info(f"  Server      : http://0.0.0.0:{PORT}")
    logger.info(f"  API Docs    : http://localhost:{PORT}/docs")
    logger.info(f"  Debug       : {os.getenv('DEBUG', 'false')}")
    logger.info("=" * 60)

    uvicorn.run(
        "dashboard.api.main:app",
        host="0.0.0.0",
        port=PORT,
        reload=os.getenv("DEBUG", "false").lower() == "true",
    )
