"""Command line entry point: ``fapiao-parser parse`` and ``fapiao-parser serve``."""
import argparse
import asyncio
import logging
import sys
import time
from pathlib import Path
from typing import List, Optional

from tqdm import tqdm

from .client import ModelClient
from .config import Settings
from .core.exceptions import ConfigurationError, FapiaoParserError
from .core.models import PipelineResult, SourceFile
from .core.spreadsheet import OpenpyxlSpreadsheetReader, read_template_headers
from .logging_config import setup_logging
from .pipeline import FapiaoPipeline
from .reports import (
    CSV_EXPORT_FILE,
    EXCEL_EXPORT_FILE,
    JSON_EXPORT_FILE,
    write_csv_export,
    write_excel_export,
    write_json_export,
)

logger = logging.getLogger(__name__)


def build_parser(settings: Settings) -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="fapiao-parser",
        description="Extract structured data from fapiao images and PDFs with a multimodal model",
    )
    parser.add_argument("--logs", default=str(settings.logs_directory),
                        help=f"Logs folder (default: {settings.logs_directory})")
    subparsers = parser.add_subparsers(dest="command", required=True)

    parse = subparsers.add_parser("parse", help="Parse fapiao files and write JSON/CSV/Excel exports")
    parse.add_argument("files", nargs="+", help="Fapiao images or PDFs")
    parse.add_argument("--template", help="Spreadsheet whose first row defines the table columns")
    parse.add_argument("--no-summary", action="store_true", help="Skip the summary")
    parse.add_argument("--no-csv", action="store_true", help="Skip the CSV table")
    parse.add_argument("--excel", action="store_true", help=f"Also write {EXCEL_EXPORT_FILE}")
    parse.add_argument("--token", help="API token (default: FAPIAO_API_TOKEN or DASHSCOPE_API_KEY)")
    parse.add_argument("--batch-size", type=int, default=settings.batch_size,
                       help=f"Files per model call (default: {settings.batch_size})")
    parse.add_argument("--output", default=str(settings.output_directory),
                       help=f"Output folder for results (default: {settings.output_directory})")

    serve = subparsers.add_parser("serve", help="Run the local HTTP proxy")
    serve.add_argument("--host", default="127.0.0.1", help="Bind address (default: 127.0.0.1)")
    serve.add_argument("--port", type=int, default=3001, help="Port (default: 3001)")

    return parser


async def run_parse(args: argparse.Namespace, settings: Settings) -> PipelineResult:
    files = [SourceFile.from_path(path, settings.max_file_size_mb) for path in args.files]
    template = SourceFile.from_path(args.template, settings.max_file_size_mb) if args.template else None

    with tqdm(total=100, desc=f"Processing {len(files)} files", unit="%") as pbar:
        def on_progress(percent: int, message: str) -> None:
            pbar.update(percent - pbar.n)
            pbar.set_postfix_str(message)

        async with ModelClient(settings) as client:
            pipeline = FapiaoPipeline(client, settings)
            result = await pipeline.run(
                files,
                template,
                want_summary=not args.no_summary,
                want_csv=not args.no_csv,
                progress=on_progress,
                token=args.token,
            )

    output = Path(args.output)
    json_path = write_json_export(result, output / JSON_EXPORT_FILE, include_summary=not args.no_summary)
    if not args.no_csv:
        write_csv_export(result.csv, output / CSV_EXPORT_FILE)
    if args.excel:
        headers = None
        if template is not None:
            headers = read_template_headers(template, OpenpyxlSpreadsheetReader())
        write_excel_export(result, output / EXCEL_EXPORT_FILE, headers, include_summary=not args.no_summary)

    for miss in result.recovery_misses:
        logger.warning(
            f"[{miss.stage.upper()}] No structured data recovered; "
            f"raw reply saved under recoveryMisses in {json_path}"
        )
    return result


def serve(args: argparse.Namespace, settings: Settings) -> None:
    import uvicorn

    from .server import create_app

    logger.info(f"Starting proxy on http://{args.host}:{args.port}")
    # Keep the dictConfig applied by setup_logging
    uvicorn.run(create_app(settings), host=args.host, port=args.port, log_config=None)


def main(argv: Optional[List[str]] = None) -> int:
    try:
        settings = Settings.from_env()
    except ConfigurationError as e:
        # Logging is not configured yet
        print(f"Error: {e}", file=sys.stderr)
        return 1
    args = build_parser(settings).parse_args(argv)

    setup_logging(Path(args.logs), level=settings.log_level)

    if args.command == "serve":
        serve(args, settings)
        return 0

    if args.batch_size < 1:
        logger.error("--batch-size must be at least 1")
        return 2
    settings = settings.model_copy(update={"batch_size": args.batch_size})

    start_time = time.time()
    try:
        result = asyncio.run(run_parse(args, settings))
    except FapiaoParserError as e:
        logger.error(str(e))
        return 1

    elapsed_time = time.time() - start_time
    logger.info(f"Parsed {len(result.records)} record(s) in {elapsed_time:.2f} seconds")
    logger.info(f"Results saved to {args.output}/")
    return 0


if __name__ == "__main__":
    sys.exit(main())
