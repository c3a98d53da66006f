"""Command-line interface for single-image and batch text recognition.

Batch mode processes images strictly one at a time and writes each result
as a JSON line as soon as it is available, so an interrupted run keeps
everything recognized so far.
"""

import argparse
import dataclasses
import json
import sys
from collections.abc import Iterator
from pathlib import Path

from docscan.ocr.errors import RecognitionError
from docscan.ocr.models import BatchItem, RawImage, RecognitionOutcome
from docscan.ocr.orchestrator import NO_TEXT_MESSAGE, Orchestrator
from docscan.utils.config import load_config
from docscan.utils.logger import get_logger, setup_logging

logger = get_logger(__name__)

_SUPPORTED_EXTENSIONS = (
    "*.png",
    "*.jpg",
    "*.jpeg",
    "*.webp",
    "*.bmp",
    "*.tiff",
    "*.tif",
)
_MODES = ["auto", "local", "remote"]


def _find_images(input_dir: Path) -> list[Path]:
    """Find all supported image files in a directory.

    Args:
        input_dir: Directory to scan for images.

    Returns:
        Sorted list of image file paths.
    """
    files: list[Path] = []
    for ext in _SUPPORTED_EXTENSIONS:
        files.extend(input_dir.glob(ext))
        files.extend(input_dir.glob(ext.upper()))
    return sorted(set(files))


def _outcome_to_dict(outcome: RecognitionOutcome) -> dict[str, object]:
    result: dict[str, object] = {
        "text": outcome.text,
        "engine_used": outcome.engine_used.value,
        "confidence": outcome.confidence,
        "fallback_used": outcome.fallback_used,
    }
    if outcome.diagnostics is not None:
        result["diagnostics"] = dataclasses.asdict(outcome.diagnostics)
    return result


def _item_to_dict(item: BatchItem) -> dict[str, object]:
    if item.outcome is not None:
        return {"filename": item.name, "status": "success"} | _outcome_to_dict(
            item.outcome
        )
    return {"filename": item.name, "status": "failed", "error": item.error}


def recognize_single(
    file_path: Path,
    mode: str = "auto",
    debug: bool = False,
    config_path: Path | None = None,
) -> dict[str, object]:
    """Recognize one image file.

    Args:
        file_path: Path to the image.
        mode: Engine selection policy.
        debug: Include diagnostics in the result.
        config_path: Optional configuration file.

    Returns:
        Dictionary with filename, text, engine and confidence.
    """
    config = load_config(config_path)
    with Orchestrator.from_config(config) as orchestrator:
        outcome = orchestrator.recognize(
            RawImage.from_path(file_path), mode=mode, debug=debug or None
        )
    return {"filename": file_path.name} | _outcome_to_dict(outcome)


def process_folder(
    input_dir: Path,
    output_path: Path,
    mode: str = "auto",
    verbose: bool = False,
    config_path: Path | None = None,
) -> dict[str, int]:
    """Recognize every image in a folder, appending one JSON line per image.

    Args:
        input_dir: Directory containing image files.
        output_path: JSON Lines output file.
        mode: Engine selection policy.
        verbose: Whether to print each result as it completes.
        config_path: Optional configuration file.

    Returns:
        Summary dict with total, successful, and failed counts.
    """
    files = _find_images(input_dir)
    if not files:
        logger.warning("No images found in %s", input_dir)
        return {"total": 0, "successful": 0, "failed": 0}

    logger.info("Found %d images to process", len(files))
    config = load_config(config_path)
    successful = 0
    failed = 0

    output_path.parent.mkdir(parents=True, exist_ok=True)
    unreadable: list[BatchItem] = []

    def _load() -> Iterator[tuple[str, RawImage]]:
        for path in files:
            try:
                yield path.name, RawImage.from_path(path)
            except OSError as exc:
                logger.error("Cannot read %s: %s", path.name, exc)
                unreadable.append(BatchItem(name=path.name, error=str(exc)))

    with Orchestrator.from_config(config) as orchestrator, open(
        output_path, "w"
    ) as out:
        items = orchestrator.recognize_many(_load(), mode=mode)
        for i, item in enumerate(items, 1):
            record = _item_to_dict(item)
            out.write(json.dumps(record) + "\n")
            out.flush()
            if item.ok:
                successful += 1
            else:
                failed += 1
            if verbose:
                print(f"[{i}/{len(files)}] {item.name}: {record['status']}")

        for item in unreadable:
            out.write(json.dumps(_item_to_dict(item)) + "\n")
            failed += 1

    summary = {"total": len(files), "successful": successful, "failed": failed}
    _print_summary(summary, output_path)
    return summary


def _print_summary(summary: dict[str, int], output_path: Path) -> None:
    """Print batch processing summary to stdout.

    Args:
        summary: Counts of total, successful, and failed images.
        output_path: Path to the JSON Lines output.
    """
    print(f"\n{'=' * 50}")
    print("Batch Recognition Complete")
    print(f"{'=' * 50}")
    print(f"Total:      {summary['total']}")
    print(f"Successful: {summary['successful']}")
    print(f"Failed:     {summary['failed']}")
    print(f"Output:     {output_path}")


def main(argv: list[str] | None = None) -> None:
    """Parse CLI arguments and dispatch to the appropriate command.

    Args:
        argv: Command-line arguments (defaults to sys.argv).
    """
    parser = argparse.ArgumentParser(
        description="Document Scanner OCR",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument("-c", "--config", type=Path, help="YAML configuration file")

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    single_parser = subparsers.add_parser("recognize", help="Recognize one image")
    single_parser.add_argument("file", type=Path, help="Image file to process")
    single_parser.add_argument(
        "-m", "--mode", choices=_MODES, default="auto", help="Engine (default: auto)"
    )
    single_parser.add_argument(
        "--debug", action="store_true", help="Include diagnostics in the output"
    )
    single_parser.add_argument("-o", "--output", type=Path, help="Output JSON file")

    batch_parser = subparsers.add_parser("batch", help="Recognize a folder of images")
    batch_parser.add_argument(
        "input_dir", type=Path, help="Input directory with images"
    )
    batch_parser.add_argument(
        "-o",
        "--output",
        type=Path,
        default=Path("results.jsonl"),
        help="Output JSON Lines file (default: results.jsonl)",
    )
    batch_parser.add_argument(
        "-m", "--mode", choices=_MODES, default="auto", help="Engine (default: auto)"
    )
    batch_parser.add_argument(
        "-v", "--verbose", action="store_true", help="Verbose output"
    )

    args = parser.parse_args(argv)

    setup_logging(debug=getattr(args, "debug", False))

    if args.command == "recognize":
        if not args.file.exists():
            print(f"Error: {args.file} does not exist", file=sys.stderr)
            sys.exit(1)
        try:
            result = recognize_single(args.file, args.mode, args.debug, args.config)
        except RecognitionError as exc:
            logger.error("Recognition failed for %s: %s", args.file.name, exc)
            print(f"Error: {NO_TEXT_MESSAGE}", file=sys.stderr)
            sys.exit(2)
        output_str = json.dumps(result, indent=2)
        if args.output:
            args.output.parent.mkdir(parents=True, exist_ok=True)
            args.output.write_text(output_str)
            print(f"Output written to {args.output}")
        else:
            print(output_str)
    elif args.command == "batch":
        if not args.input_dir.is_dir():
            print(f"Error: {args.input_dir} is not a directory", file=sys.stderr)
            sys.exit(1)
        process_folder(
            args.input_dir, args.output, args.mode, args.verbose, args.config
        )
    else:
        parser.print_help()
        sys.exit(0)


if __name__ == "__main__":
    main()
