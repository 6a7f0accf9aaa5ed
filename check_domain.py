"""
Standalone command-line checker for SPF, DMARC, DKIM, DNSSEC and MX.

Runs every check for one or more domains and prints the results as a
JSON array on stdout.  Log output goes to stderr so the JSON can be
piped into other tools.

USAGE
=====
  # Check a single domain
  python check_domain.py example.com

  # Check several domains with the Cloudflare DoH backend
  python check_domain.py example.com example.org --resolver cloudflare

  # Enable debug-level logging
  python check_domain.py example.com --verbose

ENVIRONMENT
===========
  DNS_SETTINGS_PATH      JSON document with resolver / timeout_seconds
  PROVIDER_CATALOG_PATH  directory of mail provider JSON documents
  CHECK_CONCURRENCY      domains checked simultaneously (default 5)

EXIT CODES
==========
  0 - Success (all checks completed, even if individual checks reported issues)
  1 - Fatal error (e.g. invalid domain name)
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
import time
from dataclasses import replace


# ---------------------------------------------------------------------------
# Argument parsing (done before the checker import so --help stays fast)
# ---------------------------------------------------------------------------


def _parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    """Parse command-line arguments."""
    parser = argparse.ArgumentParser(
        description="Check the SPF, DMARC, DKIM, DNSSEC and MX setup of domains.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    parser.add_argument(
        "domains",
        metavar="DOMAIN",
        nargs="+",
        help="Domain name(s) to check.",
    )
    parser.add_argument(
        "--verbose",
        action="store_true",
        default=False,
        help="Enable DEBUG-level logging output.",
    )
    parser.add_argument(
        "--resolver",
        choices=("google", "cloudflare"),
        default=None,
        help="DoH backend to query (overrides DNS_SETTINGS_PATH).",
    )
    return parser.parse_args(argv)


def _configure_logging(verbose: bool) -> logging.Logger:
    """Configure root logger for the script.

    Args:
        verbose: If True, set level to DEBUG; otherwise INFO.

    Returns:
        A logger instance named after this module.
    """
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        stream=sys.stderr,
        level=level,
        format="%(asctime)s %(levelname)-8s %(name)s %(message)s",
        datefmt="%Y-%m-%dT%H:%M:%SZ",
    )
    return logging.getLogger("check_domain")


# ---------------------------------------------------------------------------
# Main entry point
# ---------------------------------------------------------------------------


def main(argv: list[str] | None = None) -> int:
    """Run the checks and print the results.

    Returns:
        Integer exit code: 0 for success, 1 for fatal error.
    """
    args = _parse_args(argv)
    logger = _configure_logging(args.verbose)

    try:
        from mailauth.checker.engine import run_batch_check
        from mailauth.checker.mx import ProviderCatalog
        from mailauth.checker.resolver import load_dns_settings
        from mailauth.config import Config
        from mailauth.utils.domain import normalize_domain
    except Exception:
        logger.exception("FATAL: Failed to import the checker modules.")
        return 1

    try:
        domains = [normalize_domain(d) for d in args.domains]
    except ValueError as exc:
        logger.error("FATAL: %s", exc)
        return 1

    settings = load_dns_settings(Config.DNS_SETTINGS_PATH)
    if args.resolver:
        settings = replace(settings, resolver=args.resolver)

    catalog = ProviderCatalog(Config.PROVIDER_CATALOG_PATH)
    if not len(catalog):
        logger.warning("No mail provider profiles loaded, provider hints are disabled.")

    t0 = time.monotonic()
    results = run_batch_check(domains, settings, catalog, max_workers=Config.CHECK_CONCURRENCY)
    logger.info(
        "=== Run complete: checked=%d  failures=%d  total_elapsed=%.1fs ===",
        len(results),
        sum(r.failure_count() for r in results),
        time.monotonic() - t0,
    )

    json.dump([r.to_dict() for r in results], sys.stdout, indent=2, ensure_ascii=False)
    sys.stdout.write("\n")
    return 0


# ---------------------------------------------------------------------------
# Script entry point
# ---------------------------------------------------------------------------

if __name__ == "__main__":
    sys.exit(main())
