"""
Command-line interface.

Runs one extraction job over the URLs given on the command line (or found
in a CSV file) through the threaded job queue and writes the CSV export.
"""
import argparse
import logging
import os
import sys
import time
from pathlib import Path
from typing import List, Optional

from mailfinder.config import Config, ConfigurationError, config as default_config
from mailfinder.errors import AdmissionError, QuotaExceededError
from mailfinder.export import extract_urls_from_csv
from mailfinder.gates import DailyQuotaGate, WorkerQueue
from mailfinder.http import HtmlFetcher, HttpClient
from mailfinder.models import JobStatus, Mode, ResultStatus
from mailfinder.orchestrator import Orchestrator
from mailfinder.pipeline import ExtractionPipeline
from mailfinder.store import build_store
from mailfinder.strategies import default_strategies

# Initialize logger
log = logging.getLogger(__name__)

CLI_OWNER = "cli"


class CLIError(Exception):
    """Bad command-line input (missing files, unwritable output)."""
    pass


class CLI:
    """Command-line runner around the orchestrator."""

    def __init__(self, cfg: Optional[Config] = None):
        self.config = cfg or default_config
        self.parser = self._create_parser()

    def _create_parser(self) -> argparse.ArgumentParser:
        parser = argparse.ArgumentParser(
            prog="mailfinder",
            description="Find publicly listed contact email addresses for websites",
            formatter_class=argparse.ArgumentDefaultsHelpFormatter,
        )
        parser.add_argument("urls", nargs="*", help="Website URLs or bare domains")
        parser.add_argument("--csv", dest="csv_file", help="CSV file whose cells list websites")
        parser.add_argument("-o", "--output", default="emails.csv", help="Output CSV file")
        parser.add_argument("-v", "--verbose", action="store_true", help="Enable verbose logging")
        parser.add_argument("--no-browser", action="store_true", help="Skip the headless browser crawl")
        parser.add_argument(
            "--timeout",
            type=float,
            default=self.config.cascade_timeout,
            help="Per-URL extraction ceiling in seconds",
        )
        parser.add_argument("--config", help="Path to custom .env configuration file")
        return parser

    def setup_logging(self, verbose: bool) -> str:
        """Log to stdout and to a timestamped file; returns the file name."""
        logfile = f"mailfinder_{time.strftime('%Y%m%d_%H%M%S')}.log"
        level = logging.DEBUG if verbose else logging.INFO

        logging.basicConfig(
            level=level,
            format="%(asctime)s | %(levelname)-7s | %(name)-20s | %(message)s",
            handlers=[
                logging.FileHandler(logfile, encoding="utf-8"),
                logging.StreamHandler(sys.stdout),
            ],
        )

        logging.getLogger("requests").setLevel(logging.WARNING)
        logging.getLogger("urllib3").setLevel(logging.WARNING)
        logging.getLogger("asyncio").setLevel(logging.WARNING)

        return logfile

    def collect_urls(self, args: argparse.Namespace) -> List[str]:
        urls = list(args.urls)
        if args.csv_file:
            if not os.path.isfile(args.csv_file):
                raise CLIError(f"CSV file not found: {args.csv_file}")
            with open(args.csv_file, "r", encoding="utf-8-sig") as f:
                urls.extend(extract_urls_from_csv(f.read()))
        if not urls:
            raise CLIError("No URLs given; pass URLs or --csv FILE")
        return urls

    def validate_output_file(self, file_path: str) -> None:
        output_dir = os.path.dirname(file_path)
        if output_dir and not os.path.isdir(output_dir):
            raise CLIError(f"Output directory does not exist: {output_dir}")
        test_dir = output_dir or "."
        if not os.access(test_dir, os.W_OK):
            raise CLIError(f"Cannot write to output directory: {test_dir}")

    def extract(self, args: argparse.Namespace) -> bool:
        logfile = self.setup_logging(args.verbose)

        cfg = Config(args.config) if args.config else self.config
        cfg.update_from_dict({
            "cascade_timeout": max(0.0, args.timeout),
            "browser_enabled": cfg.browser_enabled and not args.no_browser,
        })
        try:
            cfg.validate_or_raise()
        except ConfigurationError as e:
            log.error("Configuration error: %s", e)
            return False

        try:
            urls = self.collect_urls(args)
            self.validate_output_file(args.output)
        except CLIError as e:
            log.error("%s", e)
            return False

        mode = Mode.CSV if args.csv_file else (Mode.SINGLE if len(urls) == 1 else Mode.MULTIPLE)
        log.info("mailfinder starting: %d URLs (%s mode)", len(urls), mode)
        log.info("Output file: %s", args.output)
        log.info("Headless browser: %s", "on" if cfg.browser_enabled else "off")

        http_client = HttpClient(cfg)
        store = build_store(cfg.progress_store_path)
        pipeline = ExtractionPipeline(
            store, default_strategies(cfg, fetcher=HtmlFetcher(http_client, cfg)), cfg
        )
        orchestrator = Orchestrator(
            store=store,
            quota_gate=DailyQuotaGate(cfg.daily_extraction_limit),
            pipeline=pipeline,
            cfg=cfg,
        )

        start_time = time.time()
        with WorkerQueue(orchestrator.run_job, worker_count=1) as job_queue:
            orchestrator.job_queue = job_queue
            try:
                job_id = orchestrator.start_extraction(CLI_OWNER, urls, mode)
            except AdmissionError as e:
                for error in e.errors:
                    log.error("Rejected: %s", error)
                return False
            except QuotaExceededError as e:
                log.error("%s", e)
                return False
            job_queue.wait()

        job = store.get_job(job_id)
        try:
            Path(args.output).write_text(orchestrator.export_csv(job_id), encoding="utf-8")
        except OSError as e:
            log.error("Failed to save output file: %s", e)
            return False

        elapsed = time.time() - start_time
        with_email = sum(1 for r in job.results if r.emails and not r.guessed)
        guessed = sum(1 for r in job.results if r.guessed)
        failed = sum(1 for r in job.results if r.status == ResultStatus.FAILED)
        without = len(job.results) - with_email - guessed - failed
        unique = len({e for r in job.results for e in r.emails})
        http_stats = http_client.stats
        total_http_errors = sum(
            v for k, v in http_stats.items()
            if k.startswith("status_") and k.split("_", 1)[1].isdigit()
            and 400 <= int(k.split("_", 1)[1]) < 600
        )

        log.info(
            "\n+--------------------------------------------------+\n"
            "| RUN SUMMARY                                      |\n"
            "+--------------------------------------------------+\n"
            f"| Job             : {job.job_id}\n"
            f"| Status          : {job.status}\n"
            f"| URLs            : {len(job.urls):>3}\n"
            f"| With e-mail     : {with_email:>3}\n"
            f"| Guessed only    : {guessed:>3}\n"
            f"| Without e-mail  : {without:>3}\n"
            f"| Failed          : {failed:>3}\n"
            f"| Unique e-mails  : {unique:>3}\n"
            f"| Runtime         : {elapsed:6.1f} s\n"
            f"| HTTP Requests   : {http_stats['total_requests']:>3}\n"
            f"| HTTP errors     : {total_http_errors:>3}\n"
            f"| No-response     : {http_stats.get('status_no-response', 0):>3}\n"
            "+--------------------------------------------------+"
        )
        log.info("Saved results -> %s", args.output)
        log.info("Verbose log -> %s", Path(logfile).resolve())
        return job.status != JobStatus.FAILED

    def run(self, args: Optional[List[str]] = None) -> int:
        """Parse ``args`` and run one extraction; returns the process exit code."""
        try:
            parsed_args = self.parser.parse_args(args)
            return 0 if self.extract(parsed_args) else 1
        except Exception as e:
            log.error("Unhandled exception: %s", e, exc_info=True)
            return 1


def main(args: Optional[List[str]] = None) -> int:
    """Main entry point for mailfinder."""
    return CLI().run(args)
