"""Command line: python -m logpart {generate,ingest,query} ..."""
import argparse
import logging
import pathlib
import sys
import time

from . import analytics
from .config import Settings
from .errors import LogPartError
from .generator import WORKLOADS, StorageWriter, generate
from .pipeline import Pipeline
from .sink import OutputFormat, ResultSink
from .storage import LocalStorage, open_destination, open_storage


def parse_args(argv=None):
    parser = argparse.ArgumentParser(prog="logpart", description="Partitioned access-log store and analytics.")
    parser.add_argument("--storage", help="Store location: a directory or s3://bucket/prefix")
    parser.add_argument("--workers", type=int, help="Worker threads for partition writes and scans")
    parser.add_argument("--log-level", default="INFO", choices=["DEBUG", "INFO", "WARNING", "ERROR"])
    commands = parser.add_subparsers(dest="command", required=True)

    gen = commands.add_parser("generate", help="Write synthetic access logs")
    gen.add_argument("destination", help="Directory or s3://bucket/prefix to write log files into")
    gen.add_argument("--workload", choices=list(WORKLOADS.keys()), default="tiny")
    gen.add_argument("--malformed-rate", type=float, default=0.0)
    gen.add_argument("--seed", type=int, default=42)

    ingest = commands.add_parser("ingest", help="Parse raw logs into the partitioned store")
    ingest.add_argument("input", help="Log file, directory, or s3://bucket/prefix")
    ingest.add_argument("--delimiter")
    ingest.add_argument("--batch-size", type=int)
    ingest.add_argument("--segment-max-records", type=int)
    ingest.add_argument("--segment-max-bytes", type=int)
    ingest.add_argument("--strict-field-count", action="store_true", default=None)

    query = commands.add_parser("query", help="Run one of the built-in analytics")
    query.add_argument("report", choices=sorted(analytics.PRESETS) + ["status-rates"])
    query.add_argument("--k", type=int, default=10, help="top-pages: how many pages")
    query.add_argument("--prefix-length", type=int, default=analytics.MINUTE_PREFIX, help="volume: timestamp prefix")
    query.add_argument("--threshold", type=int, default=3, help="repeat-failures: HAVING count > threshold")
    query.add_argument("--limit", type=int)
    query.add_argument("--timeout", type=float)
    query.add_argument("--output", help="Write the result to this path or s3:// URL (overwrites)")
    query.add_argument("--format", choices=[f.value for f in OutputFormat], default=OutputFormat.DELIMITED.value)
    query.add_argument("--header", action="store_true")
    return parser.parse_args(argv)


def _settings(args) -> Settings:
    return Settings.from_env().with_overrides(
        storage=args.storage,
        max_workers=args.workers,
        delimiter=getattr(args, "delimiter", None),
        batch_size=getattr(args, "batch_size", None),
        segment_max_records=getattr(args, "segment_max_records", None),
        segment_max_bytes=getattr(args, "segment_max_bytes", None),
        strict_field_count=getattr(args, "strict_field_count", None),
        query_timeout=getattr(args, "timeout", None),
    )


def _build_job(args):
    if args.report == "status-rates":
        return analytics.status_class_distribution()
    if args.report == "top-pages":
        return analytics.top_pages(args.k)
    if args.report == "volume":
        return analytics.volume_by_time(args.prefix_length)
    if args.report == "repeat-failures":
        return analytics.repeat_failures(args.threshold)
    if args.report in ("user-agents", "distinct-clients"):
        return analytics.PRESETS[args.report](args.limit)
    return analytics.PRESETS[args.report]()


def run_generate(args) -> None:
    num_files, lines_per_file = WORKLOADS[args.workload]
    print(f"\n--- Generating {num_files} file(s) of {lines_per_file} line(s) into {args.destination} ---")
    writer = StorageWriter(open_storage(args.destination), "")
    generate(num_files, lines_per_file, writer, seed=args.seed, malformed_rate=args.malformed_rate)


def run_ingest(args, settings: Settings) -> None:
    pipeline = Pipeline.open(settings)
    if args.input.startswith("s3://"):
        report = pipeline.ingest_source(open_storage(args.input))
    else:
        path = pathlib.Path(args.input)
        if path.is_file():
            report = pipeline.ingest_source(LocalStorage(path.parent), path.name)
        else:
            report = pipeline.ingest_source(LocalStorage(path))

    print("\n--- RESULTS ---")
    print(f"Accepted: {report.accepted:,}")
    print(f"Rejected: {report.rejected:,}")
    for reason, count in sorted(report.reject_reasons.items()):
        print(f"  {reason.value:<20}: {count:>12,}")
    print(f"Partitions written: {', '.join(str(k) for k in sorted(report.partitions_written, key=str))}")


def run_query(args, settings: Settings) -> None:
    pipeline = Pipeline.open(settings)
    job = _build_job(args)
    result = pipeline.query(job)

    if args.output:
        storage, path = open_destination(args.output)
        ResultSink(storage, header=args.header, output_format=args.format).write(result, path)

    print("\n--- RESULTS ---")
    print(job.describe())
    if args.report == "status-rates":
        rates = analytics.status_rates(result)
        print(f"2xx Success Rate: {rates['rate_2xx'] * 100:.2f}%")
        print(f"4xx Client Error Rate: {rates['rate_4xx'] * 100:.2f}%")
        print(f"5xx Server Error Rate: {rates['rate_5xx'] * 100:.2f}%")
    else:
        for key, value in result.items():
            print(f"  {key}: {value:,}")
    print(f"Rows scanned: {result.rows_scanned:,} (skipped at ingest: {result.rows_skipped:,})")
    print(f"Partitions scanned: {result.partitions_scanned}")


def main(argv=None) -> int:
    args = parse_args(argv)
    logging.basicConfig(level=args.log_level, format="%(asctime)s %(levelname)s %(name)s: %(message)s")

    start_time = time.time()
    try:
        if args.command == "generate":
            run_generate(args)
        elif args.command == "ingest":
            run_ingest(args, _settings(args))
        else:
            run_query(args, _settings(args))
    except LogPartError as e:
        print(f"error [{e.code}]: {e}", file=sys.stderr)
        return 1
    elapsed_time = time.time() - start_time
    print(f"Execution Time (Wall Clock): {elapsed_time:.4f} seconds")
    print("---------------")
    return 0


if __name__ == "__main__":
    sys.exit(main())
