"""
Initialize database tables
Run this once to create tables
"""

import asyncio
import logging

from offer_engine.db.database import init_db


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    asyncio.run(init_db())
