from __future__ import annotations

import argparse
from dataclasses import replace
import signal
import sys
from typing import Sequence

from docingest.config import Settings, get_settings
from docingest.pipeline.context import PipelineContext, build_context
from docingest.pipeline.coordinator import ingest, remove
from docingest.pipeline.run_log import NORMAL, QUIET, VERBOSE, RunLog


def _build_parser(settings: Settings) -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="docingest",
        description="Extract, chunk, embed and index documents matching a path or glob",
    )
    parser.add_argument(
        "selector",
        help="File, directory or glob pattern (quote it) selecting the input documents",
    )
    parser.add_argument(
        "--index-name",
        default=settings.index_name,
        help="Target index name",
    )
    parser.add_argument(
        "--container",
        default=settings.blob_container,
        help="Blob container receiving the original document bytes",
    )
    parser.add_argument(
        "--db-url",
        default=settings.database_url,
        help="SQLAlchemy URL of the index database",
    )
    parser.add_argument(
        "--source-root",
        default=settings.source_root,
        help="Corpus root that document ids and blob keys are relative to",
    )
    parser.add_argument(
        "--blob-root",
        default=settings.blob_root,
        help="Directory holding the blob containers",
    )
    parser.add_argument(
        "--chunk-size",
        type=int,
        default=settings.chunk_size,
        help="Chunk size in tokens",
    )
    parser.add_argument(
        "--chunk-overlap",
        type=int,
        default=settings.chunk_overlap,
        help="Chunk overlap in tokens",
    )
    parser.add_argument(
        "--concurrency",
        type=int,
        default=settings.concurrency,
        help="Maximum number of documents processed at once",
    )
    parser.add_argument(
        "--force",
        action="store_true",
        help="Re-ingest documents even when their content is unchanged",
    )
    parser.add_argument(
        "--remove",
        action="store_true",
        help="Remove the selected documents from the index and blob store instead of ingesting",
    )
    verbosity = parser.add_mutually_exclusive_group()
    verbosity.add_argument("-v", "--verbose", action="store_true", help="Log every stage and batch")
    verbosity.add_argument("-q", "--quiet", action="store_true", help="Only log failures")
    return parser


def _install_signal_handlers(context: PipelineContext) -> None:
    def _cancel(signum: int, frame: object) -> None:
        del frame
        context.log.error("cancellation requested", signal=signal.Signals(signum).name)
        context.cancel_event.set()

    signal.signal(signal.SIGINT, _cancel)
    signal.signal(signal.SIGTERM, _cancel)


def main(argv: Sequence[str] | None = None) -> None:
    try:
        settings = get_settings()
    except ValueError as exc:
        print(f"[docingest] failed: invalid configuration: {exc}", file=sys.stderr, flush=True)
        raise SystemExit(2) from exc

    parser = _build_parser(settings)
    args = parser.parse_args(argv)

    verbosity = VERBOSE if args.verbose else QUIET if args.quiet else NORMAL
    log = RunLog(verbosity=verbosity)

    try:
        run_settings = replace(
            settings,
            index_name=args.index_name,
            blob_container=args.container,
            database_url=args.db_url,
            blob_root=args.blob_root,
            source_root=args.source_root,
            chunk_size=args.chunk_size,
            chunk_overlap=args.chunk_overlap,
            concurrency=args.concurrency,
            skip_unchanged=settings.skip_unchanged and not args.force,
        )
        context = build_context(run_settings, log=log)
    except (ValueError, OSError) as exc:
        print(f"[docingest] failed: {exc}", file=sys.stderr, flush=True)
        raise SystemExit(2) from exc

    try:
        _install_signal_handlers(context)
        if args.remove:
            run = remove(args.selector, context)
        else:
            run = ingest(args.selector, context)
    except (ValueError, FileNotFoundError) as exc:
        print(f"[docingest] failed: {exc}", file=sys.stderr, flush=True)
        raise SystemExit(2) from exc
    finally:
        context.close()

    print("\n".join(run.summary_lines()), flush=True)
    raise SystemExit(run.exit_code)


if __name__ == "__main__":
    main()
