"""
Command-line interface for calibration file conversion.

Usage:
    calibration-convert INPUT [OUTPUT] [--config CONFIG] [--verbose]
"""

import argparse
import logging
import sys
from typing import List, Optional

from .calibration_parser import CalibrationParseError, UnsupportedFormatError
from .calibration_writer import CalibrationWriteError
from .config import SystemConfig
from .system import CameraSystem


def setup_logging(verbose: bool = False, level_name: str = 'INFO') -> None:
    """Configure logging."""
    level = logging.DEBUG if verbose else getattr(logging, level_name.upper())
    logging.basicConfig(
        level=level,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        handlers=[logging.StreamHandler(sys.stdout)]
    )


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point for CLI."""
    parser = argparse.ArgumentParser(
        description='Read a camera calibration file and convert it to the native XML format',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog='''
Examples:
    # Print a summary of a VIC3D calibration
    calibration-convert cal.xml

    # Convert a legacy text calibration to the native format
    calibration-convert cal.txt cal_native.xml

    # Verbose output
    calibration-convert cal.txt cal_native.xml -v
'''
    )

    parser.add_argument(
        'input',
        type=str,
        help='Calibration file (native XML, VIC3D .xml or legacy .txt)'
    )

    parser.add_argument(
        'output',
        type=str,
        nargs='?',
        default=None,
        help='Output path for the native XML calibration file'
    )

    parser.add_argument(
        '--config', '-c',
        type=str,
        default=None,
        help='Path to YAML configuration file'
    )

    parser.add_argument(
        '--verbose', '-v',
        action='store_true',
        help='Enable verbose output'
    )

    args = parser.parse_args(argv)

    try:
        config = SystemConfig.from_yaml(args.config) if args.config else SystemConfig()
    except FileNotFoundError as e:
        setup_logging(args.verbose)
        logging.getLogger(__name__).error(f"File not found: {e}")
        return 1
    except ValueError as e:
        setup_logging(args.verbose)
        logging.getLogger(__name__).error(f"Configuration error: {e}")
        return 1

    setup_logging(args.verbose, config.log_level)
    logger = logging.getLogger(__name__)

    try:
        logger.info(f"Reading calibration file {args.input}")
        system = CameraSystem.from_file(args.input, config)

        print("\n" + "=" * 60)
        print("CAMERA SYSTEM")
        print("=" * 60)
        print(system)
        print("=" * 60)

        if args.output:
            system.write_calibration_file(args.output)
            logger.info(f"Native calibration file written to {args.output}")

        return 0

    except FileNotFoundError as e:
        logger.error(f"File not found: {e}")
        return 1
    except UnsupportedFormatError as e:
        logger.error(f"Unsupported format: {e}")
        return 1
    except CalibrationParseError as e:
        logger.error(f"Calibration error: {e}")
        return 1
    except CalibrationWriteError as e:
        logger.error(f"Write error: {e}")
        return 1
    except Exception as e:
        logger.exception(f"Unexpected error: {e}")
        return 1


if __name__ == '__main__':
    sys.exit(main())
