#!/usr/bin/env python3
"""
Database initialization script
Creates the ledger tables and checks the connection
"""

import logging
import os
import sys

# Add parent directory to path
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))

from dotenv import load_dotenv
load_dotenv()

from sqlalchemy import inspect, text

from edgeledger.models import Base, SessionLocal, engine

logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


def init_database(drop_existing: bool = False):
    """
    Create all ledger tables.

    Args:
        drop_existing: If True, drops all tables first (DANGER: data loss!)
    """
    logger.info("Initializing edge ledger database at %s", engine.url.render_as_string(hide_password=True))

    if drop_existing:
        logger.warning("Dropping all existing tables!")
        response = input("Are you sure? This will delete all data. Type 'yes' to confirm: ")
        if response.lower() != 'yes':
            logger.info("Aborted.")
            return False
        Base.metadata.drop_all(bind=engine)
        logger.info("Existing tables dropped")

    Base.metadata.create_all(bind=engine)
    tables = inspect(engine).get_table_names()
    logger.info("Tables: %s", ", ".join(tables))
    return True


def check_connection():
    """Test database connection"""
    try:
        db = SessionLocal()
        db.execute(text("SELECT 1"))
        db.close()
        logger.info("Database connection successful")
        return True
    except Exception as e:
        logger.error("Database connection failed: %s", e)
        return False


if __name__ == "__main__":
    import argparse

    parser = argparse.ArgumentParser(description="Initialize the edge ledger database")
    parser.add_argument("--drop", action="store_true", help="Drop existing tables (DANGER!)")
    parser.add_argument("--check", action="store_true", help="Only check connection")

    args = parser.parse_args()

    if args.check:
        sys.exit(0 if check_connection() else 1)
    if not check_connection():
        logger.error("Cannot initialize database - connection failed")
        sys.exit(1)
    init_database(drop_existing=args.drop)
