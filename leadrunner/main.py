"""
Command-line entry point for the lead runner.
"""

import argparse
import dataclasses
import logging
import os
import shlex
import signal
import sys
from typing import List, Optional

from dotenv import load_dotenv

from leadrunner.capability import load_capability
from leadrunner.config import TABS, RunnerConfig, VpnConfig
from leadrunner.errors import LeadRunnerError
from leadrunner.models import RunResult
from leadrunner.openvpn import OpenVPNManager
from leadrunner.resilience.progress_tracker import ProgressTracker, apply_cookies, load_cookies
from leadrunner.scheduler import JobQueue, Scheduler
from leadrunner.storage import read_accounts

logger = logging.getLogger("leadrunner")

LOG_FORMAT = "%(asctime)s | %(name)s | %(levelname)s | %(message)s"

# Global scheduler for signal handling
_scheduler: Optional[Scheduler] = None


def signal_handler(signum, frame):
    """Handle SIGINT/SIGTERM for graceful shutdown."""
    print("\n\n" + "=" * 60)
    print("STOP SIGNAL RECEIVED - SHUTTING DOWN GRACEFULLY")
    print("=" * 60)
    if _scheduler:
        _scheduler.stop()
        print("Waiting for current job to finish...")
    else:
        print("Exiting immediately...")
        sys.exit(0)


def configure_logging(debug: bool):
    logging.basicConfig(
        level=logging.DEBUG if debug else logging.INFO,
        format=LOG_FORMAT
    )
    # Selenium's HTTP chatter drowns out job progress
    for noisy in ("urllib3", "selenium", "seleniumbase"):
        logging.getLogger(noisy).setLevel(logging.WARNING)


def build_config(args) -> RunnerConfig:
    """
    Merge CLI arguments over the LEADRUNNER_* environment.

    Raises:
        ValueError: If a value is invalid
    """
    config = RunnerConfig.from_env()
    overrides = {}

    if args.daily_limit is not None:
        overrides['daily_limit'] = args.daily_limit
    if args.timeout is not None:
        overrides['timeout'] = args.timeout
    if args.output_dir is not None:
        overrides['output_dir'] = args.output_dir
    if args.output_format is not None:
        overrides['output_format'] = args.output_format
    if args.cookie_file is not None:
        overrides['cookie_file'] = args.cookie_file
    if args.tab is not None:
        overrides['tab'] = args.tab
    if args.visible:
        overrides['headless'] = False
    if args.stealth:
        overrides['stealth'] = True
    if args.debug:
        overrides['debug'] = True
    if args.fetch_credits:
        overrides['fetch_credits'] = True
    if args.no_progress:
        overrides['save_progress'] = False
    if args.retries is not None:
        overrides['retry'] = dataclasses.replace(config.retry, max_retries=args.retries)

    if args.vpn_configs_dir or args.vpn_credentials:
        if not (args.vpn_configs_dir and args.vpn_credentials):
            raise ValueError("--vpn-configs-dir and --vpn-credentials must be given together")
        overrides['vpn'] = VpnConfig(
            configs_dir=args.vpn_configs_dir,
            auth_file=args.vpn_credentials,
            extra_args=shlex.split(args.vpn_args or ""),
        )
    elif args.vpn_args is not None and config.vpn is not None:
        overrides['vpn'] = dataclasses.replace(config.vpn, extra_args=shlex.split(args.vpn_args))

    return dataclasses.replace(config, **overrides)


def print_summary(result: RunResult):
    print("\n" + "=" * 60)
    print("RUN COMPLETE" if not result.stopped else "RUN STOPPED")
    print("=" * 60)
    print(f"Success:     {result.success}")
    print(f"Duration:    {result.duration_seconds / 60:.1f} minutes")
    print(f"Iterations:  {result.iterations}")
    print(f"Completed:   {len(result.completed)}")
    print(f"Remaining:   {result.remaining}")

    if result.challenged:
        print(f"\nSecurity challenges ({len(result.challenged)}):")
        for email in result.challenged:
            print(f"  - {email}")

    if result.failed:
        print(f"\nFailed jobs ({len(result.failed)}):")
        for f in result.failed[:10]:
            print(f"  - {f['email']}: {f['reason'][:50]}")
        if len(result.failed) > 10:
            print(f"  ... and {len(result.failed) - 10} more")


def run(args) -> int:
    """Run the scheduler over the accounts in args.input."""
    global _scheduler

    config = build_config(args)

    progress = ProgressTracker(config.output_dir, config.output_format)
    accounts = progress.load_progress() if args.resume else None
    if accounts is not None:
        logger.info("Resuming %d accounts from %s", len(accounts), progress.progress_file)
    elif args.input:
        accounts = read_accounts(args.input)
        logger.info("Loaded %d accounts from %s", len(accounts), args.input)
    else:
        raise ValueError(f"no progress checkpoint at {progress.progress_file}; pass --input")

    if config.cookie_file:
        restored = apply_cookies(accounts, load_cookies(config.cookie_file))
        logger.info("Loaded cookies for %d accounts", restored)

    vpn = OpenVPNManager.from_config(config.vpn) if config.vpn else None
    try:
        capability = load_capability(args.capability, config)
    except (ImportError, AttributeError, TypeError) as e:
        raise ValueError(f"cannot load capability {args.capability}: {e}") from e
    queue = JobQueue.from_accounts(accounts, vpn)

    _scheduler = Scheduler(
        config, capability, vpn=vpn,
        progress=progress if config.save_progress else None
    )

    signal.signal(signal.SIGINT, signal_handler)
    # SIGTERM is not reliably available on Windows
    if hasattr(signal, 'SIGTERM') and sys.platform != 'win32':
        signal.signal(signal.SIGTERM, signal_handler)

    result = _scheduler.run(queue)
    print_summary(result)

    return 0 if result.success else 1


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog='leadrunner',
        description='Round-robin lead scraper with per-account quotas and VPN rotation',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Save and scrape leads for every account, writing CSV
  leadrunner --input accounts.csv --capability mysite.scraper:MySiteScraper

  # Rotate OpenVPN configs, one per account
  leadrunner --input accounts.csv --capability mysite.scraper:MySiteScraper \\
      --vpn-configs-dir ./ovpn --vpn-credentials ./auth.txt

  # Resume an interrupted JSON run with a visible browser
  leadrunner --resume --json --visible --capability mysite.scraper:MySiteScraper
"""
    )

    parser.add_argument('-i', '--input', help='Accounts file (.csv or .json)')
    parser.add_argument(
        '--resume', action='store_true',
        help='Continue from the progress checkpoint in --output-dir, falling back to --input'
    )
    parser.add_argument(
        '--capability',
        default=os.environ.get('LEADRUNNER_CAPABILITY'),
        help='Scraping capability as module:Class (default: $LEADRUNNER_CAPABILITY)'
    )

    # Output
    parser.add_argument('-o', '--output-dir', help='Directory for leads, progress and error snapshots')
    fmt = parser.add_mutually_exclusive_group()
    fmt.add_argument('--csv', dest='output_format', action='store_const', const='.csv', help='Write CSV output (default)')
    fmt.add_argument('--json', dest='output_format', action='store_const', const='.json', help='Write JSON output')
    parser.add_argument('--no-progress', action='store_true', help='Do not checkpoint progress')
    parser.add_argument('--cookie-file', help='Cookie file from a previous run')

    # Quota and timing
    parser.add_argument('--daily-limit', type=int, help='Leads an account may save per 24h (default: 500)')
    parser.add_argument('--timeout', type=float, help='Seconds allowed per browser action (default: 60)')
    parser.add_argument('--retries', type=int, help='Attempts per browser action (default: 5)')

    # Browser settings
    parser.add_argument('--visible', action='store_true', help='Show the browser window')
    parser.add_argument('--stealth', action='store_true', help='Use undetected-chromedriver mode')
    parser.add_argument('--tab', choices=list(TABS), help='Results tab to save from (default: new)')
    parser.add_argument('--fetch-credits', action='store_true', help='Read credit balances after login')
    parser.add_argument('--debug', action='store_true', help='Enable debug logging')

    # OpenVPN
    parser.add_argument('--vpn-configs-dir', help='Directory of OpenVPN configs')
    parser.add_argument('--vpn-credentials', help='OpenVPN --auth-user-pass file')
    parser.add_argument('--vpn-args', help='Extra OpenVPN arguments, shell-quoted')

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    load_dotenv()

    parser = build_parser()
    args = parser.parse_args(argv)
    if not args.input and not args.resume:
        parser.error("--input is required unless --resume is given")
    if not args.capability:
        parser.error("--capability is required (or set LEADRUNNER_CAPABILITY)")

    configure_logging(args.debug or os.environ.get("LEADRUNNER_DEBUG", "").lower() == "true")

    try:
        return run(args)
    except (LeadRunnerError, OSError, ValueError) as e:
        logger.error("Run failed: %s", e)
        return 1


if __name__ == '__main__':
    sys.exit(main())
