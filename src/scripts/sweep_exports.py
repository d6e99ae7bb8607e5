#!/usr/bin/env python3
"""
Sweep Expired Mix Exports Script

Cron entrypoint: deletes artifacts older than retention.artifact_ttl_minutes
and releases credit reservations older than retention.reservation_ttl_minutes.
"""

import sys
import logging
from pathlib import Path

# Add src/ to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from mixexport.config import Config
from mixexport.export.service import MixExportService

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="[%(asctime)s] [%(levelname)s] [%(name)s] %(message)s",
)
logger = logging.getLogger(__name__)


def main():
    """Main sweep entrypoint."""
    service = None
    try:
        config = Config.load()
        service = MixExportService.from_config(config)
        summary = service.sweep()
        logger.info(
            f"✅ Sweep complete: {summary['artifacts_removed']} artifacts removed, "
            f"{summary['reservations_released']} reservations released"
        )
        return 0

    except KeyboardInterrupt:
        logger.warning("Sweep interrupted by user")
        return 130
    except Exception as e:
        logger.error(f"Sweep failed: {e}", exc_info=True)
        return 1
    finally:
        if service is not None:
            service.close()


if __name__ == "__main__":
    sys.exit(main())
