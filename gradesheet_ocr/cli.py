"""Command-line interface for gradesheet extraction and CSV export.

Provides subcommands for extracting a single gradesheet to JSON and
for processing folders of gradesheet photos into one CSV.
"""

import argparse
import csv
import json
import sys
import time
from pathlib import Path

from gradesheet_ocr.benchmark.evaluator import compute_extraction_accuracy
from gradesheet_ocr.correction.corrector import CorrectionContext
from gradesheet_ocr.exceptions import GradesheetOCRError
from gradesheet_ocr.extraction.models import MarkType
from gradesheet_ocr.pipeline.orchestrator import GradesheetPipeline
from gradesheet_ocr.utils.config import load_config
from gradesheet_ocr.utils.logger import get_logger, setup_logging

logger = get_logger(__name__)

_SUPPORTED_EXTENSIONS = ("*.png", "*.jpg", "*.jpeg", "*.tiff", "*.tif", "*.webp", "*.bmp")
_META_COLUMNS = [
    "filename",
    "status",
    "processing_time_s",
    "confidence",
    "accuracy_estimate",
    "student_number",
    "student_name",
    "uncertain_fields",
    "error",
]
_COLUMNS = _META_COLUMNS + [t.value for t in MarkType]


def _find_images(input_dir: Path) -> list[Path]:
    """Find all supported gradesheet images in a directory.

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


def _read_names(path: Path | None) -> list[str]:
    if path is None:
        return []
    return [line.strip() for line in path.read_text(encoding="utf-8").splitlines() if line.strip()]


def process_folder(
    input_dir: Path,
    output_csv: Path,
    verbose: bool = False,
) -> dict[str, int]:
    """Extract every gradesheet in a folder and export one CSV row per student.

    Args:
        input_dir: Directory containing gradesheet images.
        output_csv: Path for the output CSV file.
        verbose: Whether to print per-file progress.

    Returns:
        Summary dict with total, successful, and failed counts.
    """
    pipeline = GradesheetPipeline(load_config())

    files = _find_images(input_dir)
    if not files:
        logger.warning("No gradesheet images found in %s", input_dir)
        return {"total": 0, "successful": 0, "failed": 0}

    logger.info("Found %d gradesheets to process", len(files))

    rows: list[dict[str, object]] = []
    successful = 0
    failed = 0

    for i, file_path in enumerate(files, 1):
        if verbose:
            print(f"Processing [{i}/{len(files)}]: {file_path.name}")

        start_time = time.time()
        try:
            file_rows = _process_single_file(file_path, pipeline)
        except GradesheetOCRError as exc:
            logger.error("Failed to process %s: %s", file_path.name, exc)
            rows.append({"filename": file_path.name, "status": "failed", "error": str(exc)})
            failed += 1
            continue

        elapsed = round(time.time() - start_time, 2)
        for row in file_rows:
            row["processing_time_s"] = elapsed
        rows.extend(file_rows)
        successful += 1

    _write_csv(rows, output_csv)
    logger.info("Results written to %s", output_csv)

    summary = {"total": len(files), "successful": successful, "failed": failed}
    _print_summary(summary, output_csv)
    return summary


def _process_single_file(
    file_path: Path, pipeline: GradesheetPipeline
) -> list[dict[str, object]]:
    """Run one gradesheet through the pipeline and flatten it to rows.

    Args:
        file_path: Path to the gradesheet image.
        pipeline: Pipeline instance shared across files.

    Returns:
        One row dictionary per extracted student.
    """
    result = pipeline.run_sync(file_path.read_bytes())
    accuracy = compute_extraction_accuracy(result.students, result.detected)

    rows: list[dict[str, object]] = []
    for student in result.students:
        row: dict[str, object] = {
            "filename": file_path.name,
            "status": "success",
            "confidence": round(result.confidence, 3),
            "accuracy_estimate": accuracy,
            "student_number": student.number,
            "student_name": student.name,
            "uncertain_fields": ";".join(k for k, v in student.uncertain.items() if v),
            "error": None,
        }
        for mark_type in MarkType:
            row[mark_type.value] = student.mark(mark_type) if result.detected[mark_type] else None
        rows.append(row)
    return rows


def _write_csv(rows: list[dict[str, object]], output_path: Path) -> None:
    """Write student rows to a CSV file.

    Args:
        rows: List of row dictionaries.
        output_path: Path for the output CSV file.
    """
    if not rows:
        return

    output_path.parent.mkdir(parents=True, exist_ok=True)
    with open(output_path, "w", newline="", encoding="utf-8") as f:
        writer = csv.DictWriter(f, fieldnames=_COLUMNS, extrasaction="ignore")
        writer.writeheader()
        writer.writerows(rows)


def _print_summary(summary: dict[str, int], output_csv: Path) -> None:
    """Print batch processing summary to stdout.

    Args:
        summary: Counts of total, successful, and failed gradesheets.
        output_csv: Path to the output CSV.
    """
    print(f"\n{'=' * 50}")
    print("Batch Processing Complete")
    print(f"{'=' * 50}")
    print(f"Total:      {summary['total']}")
    print(f"Successful: {summary['successful']}")
    print(f"Failed:     {summary['failed']}")
    print(f"Output:     {output_csv}")


def extract_single(
    file_path: Path,
    expected_count: int | None = None,
    names_path: Path | None = None,
) -> dict[str, object]:
    """Extract one gradesheet and return a JSON-ready result.

    Args:
        file_path: Path to the gradesheet image.
        expected_count: Optional class size for consistency checks.
        names_path: Optional roster file, one name per line.

    Returns:
        Dictionary with the filename and the full pipeline result.
    """
    pipeline = GradesheetPipeline(load_config())
    context = CorrectionContext(
        reference_names=_read_names(names_path), expected_count=expected_count
    )
    result = pipeline.run_sync(file_path.read_bytes(), context=context)
    output: dict[str, object] = {"filename": file_path.name}
    output.update(result.to_dict())
    output["accuracy_estimate"] = compute_extraction_accuracy(
        result.students, result.detected
    )
    return output


def main(argv: list[str] | None = None) -> None:
    """Parse CLI arguments and dispatch to the appropriate command.

    Args:
        argv: Command-line arguments (defaults to sys.argv).
    """
    parser = argparse.ArgumentParser(
        description="Gradesheet OCR",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    batch_parser = subparsers.add_parser("batch", help="Process a folder of gradesheets")
    batch_parser.add_argument("input_dir", type=Path, help="Input directory with images")
    batch_parser.add_argument(
        "-o",
        "--output",
        type=Path,
        default=Path("results.csv"),
        help="Output CSV file (default: results.csv)",
    )
    batch_parser.add_argument(
        "-v", "--verbose", action="store_true", help="Verbose output"
    )

    single_parser = subparsers.add_parser("extract", help="Process a single gradesheet")
    single_parser.add_argument("file", type=Path, help="Gradesheet image to process")
    single_parser.add_argument("-o", "--output", type=Path, help="Output JSON file")
    single_parser.add_argument(
        "--expected-count", type=int, help="Expected number of students"
    )
    single_parser.add_argument(
        "--names", type=Path, help="Class roster, one name per line"
    )

    args = parser.parse_args(argv)

    setup_logging()

    if args.command == "batch":
        if not args.input_dir.is_dir():
            print(f"Error: {args.input_dir} is not a directory", file=sys.stderr)
            sys.exit(1)
        try:
            summary = process_folder(args.input_dir, args.output, args.verbose)
        except GradesheetOCRError as exc:
            print(f"Error: {exc}", file=sys.stderr)
            sys.exit(2)
        if summary["total"] and not summary["successful"]:
            sys.exit(2)
    elif args.command == "extract":
        if not args.file.exists():
            print(f"Error: {args.file} does not exist", file=sys.stderr)
            sys.exit(1)
        try:
            result = extract_single(args.file, args.expected_count, args.names)
        except GradesheetOCRError as exc:
            print(f"Error: {exc}", file=sys.stderr)
            sys.exit(2)
        output_str = json.dumps(result, indent=2, ensure_ascii=False)
        if args.output:
            args.output.parent.mkdir(parents=True, exist_ok=True)
            args.output.write_text(output_str, encoding="utf-8")
            print(f"Output written to {args.output}")
        else:
            print(output_str)
    else:
        parser.print_help()
        sys.exit(0)


if __name__ == "__main__":
    main()
