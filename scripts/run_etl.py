"""
Script to download and import every IMDb dataset
"""

import asyncio
import sys
import os

# Add current directory to path to allow imports from core, ingestion, etc.
sys.path.append(os.getcwd())

from core.database import create_engine
from core.exceptions import ETLException
from core.logging import setup_logging
from ingestion.runner import ImportRunner


async def run_etl():
    """Run the import for all catalog datasets"""
    engine = create_engine()
    runner = ImportRunner(engine)
    await runner.run()


def main() -> int:
    setup_logging()
    try:
        asyncio.run(run_etl())
    except ETLException:
        # Already logged by the runner; the pool is closed
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
