#!/usr/bin/env python3
"""
Create DJ Mix Export Script

Builds a mix package for a user from the command line and prints the
artifact location.

Usage:
    create_mix.py USER_ID "Friday Warmup" 12 7 33 --template club-set --bpm 124
"""

import argparse
import sys
import logging
from pathlib import Path

# Add src/ to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from mixexport.config import Config
from mixexport.errors import MixExportError
from mixexport.export import templates
from mixexport.export.service import MixExportService

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="[%(asctime)s] [%(levelname)s] [%(name)s] %(message)s",
)
logger = logging.getLogger(__name__)


def _parse_args(argv):
    parser = argparse.ArgumentParser(description="Create a DJ mix export package")
    parser.add_argument("user_id", type=int)
    parser.add_argument("name")
    parser.add_argument("video_ids", type=int, nargs="+")
    parser.add_argument("--template", default="club-set",
                        choices=[t.id for t in templates.TEMPLATES])
    parser.add_argument("--bpm", type=float)
    parser.add_argument("--key")
    parser.add_argument("--genre")
    parser.add_argument("--notes")
    parser.add_argument("--config", help="Path to mixexport.toml")
    return parser.parse_args(argv)


def main(argv=None):
    """Main export entrypoint."""
    args = _parse_args(argv)
    service = None
    try:
        logger.info("🎛️  Starting mix export...")

        config = Config.load(args.config)
        logger.info(f"Config loaded: {config}")

        service = MixExportService.from_config(config)
        request = MixExportService.request_from_template(
            args.template,
            args.name,
            args.video_ids,
            bpm=args.bpm,
            key=args.key,
            genre=args.genre,
            notes=args.notes,
        )
        artifact = service.create_export(request, args.user_id)

        logger.info(f"✅ Mix exported: {artifact.temp_file_path}")
        if artifact.excluded_ids:
            logger.warning(f"Skipped unavailable videos: {list(artifact.excluded_ids)}")
        print(artifact.temp_file_path)
        return 0

    except MixExportError as e:
        logger.error(f"Export rejected: {e}")
        return 2
    except KeyboardInterrupt:
        logger.warning("Export interrupted by user")
        return 130
    except Exception as e:
        logger.error(f"Export failed: {e}", exc_info=True)
        return 1
    finally:
        if service is not None:
            service.close()


if __name__ == "__main__":
    sys.exit(main())
