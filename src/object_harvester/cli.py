"""
Command-line interface for Object Harvester.

Usage:
    object-harvester run video.mp4 --output output/
    object-harvester run photo.jpg --output output/
    object-harvester run --webcam 0 --show
    object-harvester config --show
    object-harvester config --generate config.yaml
"""

import argparse
import logging
import sys
from pathlib import Path
from typing import Optional

import yaml

from . import __version__
from .config import OCCLUSION_THRESHOLD_LENIENT, PipelineConfig, get_default_config
from .errors import HarvesterError
from .pipeline import run_pipeline


def create_parser() -> argparse.ArgumentParser:
    """Create the argument parser."""
    parser = argparse.ArgumentParser(
        prog="object-harvester",
        description="Harvest each newly seen object from images, videos or a webcam",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  Harvest objects from a video:
    object-harvester run video.mp4 -o output/

  Harvest from the default webcam with a preview window:
    object-harvester run --webcam 0 --show

  Use a custom config file:
    object-harvester run video.mp4 -c config.yaml -o output/

  Generate a default config file:
    object-harvester config --generate my_config.yaml

Press 'q' in the preview window to stop, 'r' to reset the session.
        """,
    )

    parser.add_argument(
        "--version",
        action="version",
        version=f"%(prog)s {__version__}",
    )

    parser.add_argument(
        "-v", "--verbose",
        action="count",
        default=0,
        help="Increase verbosity (use -vv for debug)",
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # Run command
    run_parser = subparsers.add_parser(
        "run",
        help="Harvest objects from an image, video or webcam",
    )
    run_parser.add_argument(
        "input",
        type=Path,
        nargs="?",
        help="Input image or video file",
    )
    run_parser.add_argument(
        "--webcam",
        type=int,
        metavar="INDEX",
        help="Use the webcam with this device index instead of a file",
    )
    run_parser.add_argument(
        "-o", "--output",
        type=Path,
        default=Path("output"),
        help="Output directory (default: output/)",
    )
    run_parser.add_argument(
        "-c", "--config",
        type=Path,
        help="Path to config YAML file",
    )
    run_parser.add_argument(
        "-n", "--num-frames",
        type=int,
        help="Stop after this many frames",
    )
    run_parser.add_argument(
        "--lenient",
        action="store_true",
        help=f"Use the lenient occlusion threshold ({OCCLUSION_THRESHOLD_LENIENT})",
    )
    run_parser.add_argument(
        "--show",
        action="store_true",
        help="Show a preview window",
    )
    run_parser.add_argument(
        "--no-progress",
        action="store_true",
        help="Disable progress bars",
    )

    # Config command
    config_parser = subparsers.add_parser(
        "config",
        help="Configuration utilities",
    )
    config_group = config_parser.add_mutually_exclusive_group(required=True)
    config_group.add_argument(
        "--show",
        action="store_true",
        help="Show current default configuration",
    )
    config_group.add_argument(
        "--generate",
        type=Path,
        metavar="FILE",
        help="Generate a default config file",
    )

    return parser


def setup_logging(verbosity: int) -> None:
    """Configure logging based on verbosity level."""
    if verbosity >= 2:
        level = logging.DEBUG
    elif verbosity >= 1:
        level = logging.INFO
    else:
        level = logging.WARNING

    logging.basicConfig(
        level=level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )


def cmd_run(args: argparse.Namespace) -> int:
    """Handle the run command."""
    if args.input is None and args.webcam is None:
        print("Error: Give an input file or --webcam INDEX", file=sys.stderr)
        return 1

    # Load config
    if args.config:
        if not args.config.exists():
            print(f"Error: Config file not found: {args.config}", file=sys.stderr)
            return 1
        config = PipelineConfig.from_yaml(args.config)
    else:
        config = get_default_config()

    # Override config with CLI args
    config.output.output_dir = args.output
    if args.num_frames:
        config.source.max_frames = args.num_frames
    if args.lenient:
        config.occlusion.threshold = OCCLUSION_THRESHOLD_LENIENT
    if args.show:
        config.output.show_window = True

    target = args.webcam if args.webcam is not None else args.input
    if isinstance(target, Path) and not target.exists():
        print(f"Error: Input not found: {target}", file=sys.stderr)
        return 1

    try:
        stats = run_pipeline(
            input_path=target,
            output_dir=args.output,
            config=config,
            show_progress=not args.no_progress,
        )
    except HarvesterError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    except Exception as e:
        logging.exception("Pipeline failed")
        print(f"Error: {e}", file=sys.stderr)
        return 1

    print(f"\nProcessing complete!")
    print(f"Processed {stats.ticks} frame(s), harvested {stats.harvested} object(s)")
    if stats.failed_ticks:
        print(f"{stats.failed_ticks} frame(s) skipped after detector errors")
    print(f"Results saved to: {args.output}")

    return 0


def cmd_config(args: argparse.Namespace) -> int:
    """Handle the config command."""
    config = get_default_config()

    if args.show:
        print(yaml.dump(config.to_dict(), default_flow_style=False, sort_keys=False))
        return 0

    if args.generate:
        config.to_yaml(args.generate)
        print(f"Generated config file: {args.generate}")
        return 0

    return 1


def main(argv: Optional[list] = None) -> int:
    """Main entry point."""
    parser = create_parser()
    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        return 0

    setup_logging(args.verbose)

    if args.command == "run":
        return cmd_run(args)
    elif args.command == "config":
        return cmd_config(args)

    return 1


if __name__ == "__main__":
    sys.exit(main())
