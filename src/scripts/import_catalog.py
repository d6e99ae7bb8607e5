#!/usr/bin/env python3
"""
Import Video Catalog Script

Registers the files under <storage.local_root>/videos (and thumbnails
matched by name) in the catalog database, probing durations with mutagen.
"""

import argparse
import sys
import logging
from pathlib import Path

# Add src/ to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from mixexport.catalog import import_directory
from mixexport.config import Config
from mixexport.db import Database

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="[%(asctime)s] [%(levelname)s] [%(name)s] %(message)s",
)
logger = logging.getLogger(__name__)


def main(argv=None):
    """Main import entrypoint."""
    parser = argparse.ArgumentParser(description="Seed the video catalog from local files")
    parser.add_argument("--free", action="store_true", help="Mark imported videos as non-premium")
    parser.add_argument("--config", help="Path to mixexport.toml")
    args = parser.parse_args(argv)

    try:
        config = Config.load(args.config)
        root = Path(config.get("storage", "local_root", "uploads"))
        with Database(config.get("database", "path")) as db:
            added = import_directory(
                db,
                str(root / "videos"),
                thumbnails_dir=str(root / "thumbnails"),
                premium=not args.free,
            )
            stats = db.get_stats()
        logger.info(f"✅ {len(added)} new videos; catalog now has {stats['total_videos']}")
        return 0

    except KeyboardInterrupt:
        logger.warning("Import interrupted by user")
        return 130
    except Exception as e:
        logger.error(f"Import failed: {e}", exc_info=True)
        return 1


if __name__ == "__main__":
    sys.exit(main())
