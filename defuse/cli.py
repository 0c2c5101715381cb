"""Command line entry point: print def-use edges of Python files as JSON."""

import argparse
import json
import logging
import sys
from pathlib import Path

from .defuseignore import find_python_files
from .dfg_extractor import DataflowInfo, extract_python_dataflow
from .slicer_config import SlicerConfig, SlicerConfigError
from .slicing import backward_slice, forward_slice, slice_lines

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="defuse",
        description="Compute static def-use dataflow edges for Python code.",
    )
    parser.add_argument("path", type=Path, help="Python file or project directory")
    parser.add_argument(
        "-f",
        "--function",
        help="Analyze only this function's body (default: module-level code)",
    )
    parser.add_argument(
        "-c",
        "--config",
        type=Path,
        help="JSON file with mutation rules (functionConfigs)",
    )
    parser.add_argument(
        "--no-default-rules",
        action="store_true",
        help="Don't assume built-in container methods like append mutate their receiver",
    )
    parser.add_argument(
        "-s",
        "--slice",
        type=int,
        nargs="+",
        metavar="LINE",
        help="Also report the slice seeded at these lines",
    )
    parser.add_argument(
        "--forward",
        action="store_true",
        help="Compute forward instead of backward slices",
    )
    parser.add_argument(
        "--no-ignore",
        action="store_true",
        help="Analyze every .py file in a directory, ignoring .defuseignore/.gitignore",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    return parser


def _load_config(args: argparse.Namespace) -> SlicerConfig:
    config = SlicerConfig() if args.no_default_rules else SlicerConfig.default()
    if args.config:
        config = config.merged_with(SlicerConfig.from_json_file(args.config))
    return config


def _render(info: DataflowInfo, args: argparse.Namespace) -> dict:
    result = info.to_dict()
    if args.slice:
        slicer = forward_slice if args.forward else backward_slice
        locations = slicer(info.dataflows, args.slice)
        result["slice"] = {
            "direction": "forward" if args.forward else "backward",
            "seeds": args.slice,
            "lines": sorted(slice_lines(locations)),
        }
    return result


def _analyze_file(path: Path, args: argparse.Namespace, config: SlicerConfig) -> dict:
    source = path.read_text(encoding="utf-8")
    info = extract_python_dataflow(source, args.function, config)
    result = _render(info, args)
    result["file"] = str(path)
    return result


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )

    try:
        config = _load_config(args)
    except SlicerConfigError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    if args.path.is_dir():
        results = []
        status = 0
        for path in find_python_files(args.path, respect_ignore=not args.no_ignore):
            try:
                results.append(_analyze_file(path, args, config))
            except (OSError, SyntaxError, ValueError) as e:
                logger.warning(f"Skipping {path}: {e}")
                status = 1
        print(json.dumps(results, indent=2))
        return status

    try:
        result = _analyze_file(args.path, args, config)
    except (OSError, SyntaxError, ValueError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    print(json.dumps(result, indent=2))
    return 0
