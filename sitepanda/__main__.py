#!/usr/bin/env python3
"""
Sitepanda Command Line
======================
Scrape a site with a headless browser and save its readable content as
Markdown, wrapped in ``<page>`` blocks or a JSON array.

    sitepanda scrape https://docs.example.com/ -m '/guide/**' -o out.json
    sitepanda scrape --url-file urls.txt --limit 20
    sitepanda init lightpanda

Logs go to stderr; scraped content goes to stdout or ``--outfile``.

Run with: python -m sitepanda
"""

import argparse
import logging
import sys
from pathlib import Path
from typing import List, Optional

from dotenv import load_dotenv

from . import __version__
from .crawler import TerminalStatus
from .errors import SitepandaError
from .provisioning import install_browser
from .run_config import (
    SUPPORTED_BROWSERS,
    SUPPORTED_FORMATS,
    ScrapeConfig,
    default_browser,
)
from .scrape import ScrapeOutcome, run

logger = logging.getLogger(__name__)

_STATUS_LABELS = {
    TerminalStatus.COMPLETED: "Completed",
    TerminalStatus.CANCELLED: "Cancelled by user",
    TerminalStatus.FAILED: "Failed",
}


def configure_logging(silent: bool = False, stream=None) -> None:
    logging.basicConfig(
        level=logging.CRITICAL + 1 if silent else logging.INFO,
        format='%(asctime)s | %(levelname)s | %(message)s',
        datefmt='%H:%M:%S',
        stream=stream or sys.stderr,
        force=True,
    )
    # Keep library chatter out of the run log
    logging.getLogger("asyncio").setLevel(logging.WARNING)
    logging.getLogger("urllib3").setLevel(logging.WARNING)


def load_environment() -> None:
    """Load ``.env`` from the project root, else from the working directory."""
    env_path = Path(__file__).resolve().parent.parent / '.env'
    if env_path.exists():
        load_dotenv(env_path)
    else:
        load_dotenv()


# ---------------------------------------------------------------------------
# Argument parsing
# ---------------------------------------------------------------------------

def _add_global_flags(parser: argparse.ArgumentParser, defaults: bool) -> None:
    # Sub-parsers use SUPPRESS so a flag given before the subcommand survives.
    parser.add_argument(
        '-b', '--browser', type=str.lower, choices=SUPPORTED_BROWSERS,
        default=default_browser() if defaults else argparse.SUPPRESS,
        help="Browser to use: 'chromium' (default, or $SITEPANDA_BROWSER) or 'lightpanda'",
    )
    parser.add_argument(
        '--silent', action='store_true',
        default=False if defaults else argparse.SUPPRESS,
        help='Do not print any logs',
    )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog='sitepanda',
        description='Scrape websites with a headless browser and save content as Markdown.',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  sitepanda scrape https://example.com/docs/
  sitepanda scrape https://example.com/ -m '/blog/**' --limit 10 -o blog.json
  sitepanda scrape --url-file urls.txt -f json
  sitepanda -b lightpanda scrape https://example.com/
  sitepanda init chromium
        """,
    )
    parser.add_argument('--version', action='version', version=__version__)
    _add_global_flags(parser, defaults=True)
    sub = parser.add_subparsers(dest='command', metavar='{scrape,init}')

    scrape = sub.add_parser('scrape', help='Scrape websites and save content as Markdown')
    _add_global_flags(scrape, defaults=False)
    scrape.add_argument('url', nargs='?', help='Start URL (omit when using --url-file)')
    scrape.add_argument('-o', '--outfile', type=str, help='Write results here instead of stdout')
    scrape.add_argument('--url-file', type=str, help='File with one URL per line to fetch (no link following)')
    scrape.add_argument(
        '-m', '--match', action='append', default=[],
        help='Glob for page paths whose content is saved (repeatable, comma-separated)',
    )
    scrape.add_argument(
        '--follow-match', action='append', default=[],
        help='Glob for link paths to follow (repeatable, comma-separated)',
    )
    scrape.add_argument('--limit', type=int, default=0, help='Maximum pages to save (0 = unlimited)')
    scrape.add_argument('--content-selector', type=str, help='CSS selector for the main content area')
    scrape.add_argument(
        '-w', '--wait-for-network-idle', '--wni', dest='wait_for_network_idle',
        action='store_true', help='Wait for network idle instead of the load event',
    )
    scrape.add_argument(
        '-f', '--output-format', type=str.lower, choices=SUPPORTED_FORMATS, default='xml',
        help="Output format (default: xml; a .json outfile implies json)",
    )
    scrape.add_argument(
        '--verbose-browser', action='store_true',
        help='Show the browser process output in the log',
    )

    init = sub.add_parser('init', help='Download and install a browser')
    _add_global_flags(init, defaults=False)
    init.add_argument(
        'target', nargs='?', type=str.lower, choices=SUPPORTED_BROWSERS,
        help='Browser to install (default: the selected --browser)',
    )
    return parser


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------

def print_summary(outcome: ScrapeOutcome, stream=None) -> None:
    """Final report on stderr so stdout stays pure content."""
    out = stream or sys.stderr
    stats = outcome.stats
    print("\n" + "=" * 40, file=out)
    print("Scraping Summary", file=out)
    print("=" * 40, file=out)
    print(f"  Status:       {_STATUS_LABELS[outcome.status]}", file=out)
    print(f"  Pages Saved:  {outcome.records_written}", file=out)
    if stats:
        print(f"  Fetched:      {int(stats.get('pages_fetched', 0))}", file=out)
        print(f"  Failed:       {int(stats.get('pages_failed', 0))}", file=out)
        if stats.get('pages_retried'):
            print(f"  Retried:      {int(stats['pages_retried'])}", file=out)
        print(f"  Total time:   {stats.get('elapsed_time', 0):.1f}s", file=out)
    if outcome.error is not None and outcome.status is TerminalStatus.FAILED:
        print(f"  Error:        {outcome.error}", file=out)
    print("=" * 40, file=out)


def run_scrape(args) -> int:
    config = ScrapeConfig.from_cli_args(args)
    config.validate()
    config.log_summary()
    logger.info(f"Output Format: {config.output_format}")

    outcome = run(config)
    if not args.silent:
        print_summary(outcome)
    return 1 if outcome.status is TerminalStatus.FAILED else 0


def run_init(args) -> int:
    install_browser(args.target or args.browser)
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    load_environment()
    parser = build_parser()
    args = parser.parse_args(argv)
    configure_logging(silent=args.silent)

    if args.command is None:
        parser.print_help()
        return 0

    try:
        if args.command == 'scrape':
            return run_scrape(args)
        return run_init(args)
    except SitepandaError as exc:
        logger.error(f"{exc}")
        if args.silent:
            print(f"Error: {exc}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
