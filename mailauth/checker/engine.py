"""
Check orchestration engine.

Coordinates the execution of all checks (MX/provider, SPF, DMARC, DKIM,
DNSSEC) for a single domain or a batch of domains. Handles:
- Resolving the mail provider first so SPF and DKIM get its hints
- Running the remaining checks concurrently with individual error isolation
- Measuring execution time
- Concurrent batch checking via ThreadPoolExecutor
"""

from __future__ import annotations

import logging
import time
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import replace
from typing import Any, Callable

from mailauth.checker.dkim import check_dkim
from mailauth.checker.dmarc import check_dmarc
from mailauth.checker.dnssec import check_dnssec
from mailauth.checker.mx import ProviderCatalog, check_mx
from mailauth.checker.spf import check_spf
from mailauth.models import DnsSettings, DomainCheck

logger = logging.getLogger(__name__)

_MAX_CONCURRENCY = 10


def run_domain_check(
    domain: str,
    settings: DnsSettings | None = None,
    catalog: ProviderCatalog | None = None,
) -> DomainCheck:
    """Run every check for *domain*.

    The MX/provider lookup runs first; SPF, DMARC, DKIM and DNSSEC then run
    in parallel since they share no state.

    Args:
        domain: The domain name to check.
        settings: DnsSettings for the DoH backend.
        catalog: Provider catalog; the bundled catalog when omitted.

    Returns:
        A DomainCheck. A check that raised is left as None and the error is
        recorded in ``errors``.
    """
    start_time = time.monotonic()
    if catalog is None:
        catalog = ProviderCatalog()

    errors: list[str] = []
    mx_result = _run_safe_check("mx", lambda: check_mx(domain, catalog, settings), errors)

    expected_include = mx_result.expected_spf_include if mx_result else None
    selectors = list(mx_result.dkim_selectors) if mx_result else []

    checks: dict[str, Callable[[], Any]] = {
        "spf": lambda: check_spf(domain, expected_include, settings=settings),
        "dmarc": lambda: check_dmarc(domain, settings),
        "dkim": lambda: check_dkim(domain, selectors, settings),
        "dnssec": lambda: check_dnssec(domain, settings),
    }

    results: dict[str, Any] = {}
    with ThreadPoolExecutor(max_workers=len(checks), thread_name_prefix="check") as executor:
        futures = {
            name: executor.submit(_run_safe_check, name, fn, errors)
            for name, fn in checks.items()
        }
        for name, future in futures.items():
            results[name] = future.result()

    dkim_result = results["dkim"]
    if dkim_result is not None and mx_result is not None and mx_result.provider is not None:
        dkim_result = replace(dkim_result, mail_provider=mx_result.provider.name)

    elapsed_ms = int((time.monotonic() - start_time) * 1000)
    check = DomainCheck(
        domain=domain,
        mx=mx_result,
        spf=results["spf"],
        dmarc=results["dmarc"],
        dkim=dkim_result,
        dnssec=results["dnssec"],
        errors=errors,
        execution_time_ms=elapsed_ms,
    )
    logger.info(
        "Check completed for %s: failures=%d, elapsed=%dms",
        domain,
        check.failure_count(),
        elapsed_ms,
    )
    return check


def run_batch_check(
    domains: list[str],
    settings: DnsSettings | None = None,
    catalog: ProviderCatalog | None = None,
    max_workers: int = 5,
) -> list[DomainCheck]:
    """Run all checks on several domains, optionally in parallel.

    Args:
        domains: Domain names to check.
        settings: DnsSettings shared by every check.
        catalog: Provider catalog shared by every check.
        max_workers: Number of domains checked simultaneously (clamped 1..10).

    Returns:
        One DomainCheck per domain, in the order of *domains*.
    """
    if catalog is None:
        catalog = ProviderCatalog()
    max_workers = max(1, min(max_workers, _MAX_CONCURRENCY))

    logger.info("Starting batch check for %d domains (concurrency=%d)", len(domains), max_workers)

    if max_workers == 1 or len(domains) <= 1:
        return [run_domain_check(d, settings, catalog) for d in domains]

    by_domain: dict[int, DomainCheck] = {}
    with ThreadPoolExecutor(max_workers=max_workers) as executor:
        future_to_index = {
            executor.submit(run_domain_check, d, settings, catalog): i
            for i, d in enumerate(domains)
        }
        for future in as_completed(future_to_index):
            index = future_to_index[future]
            try:
                by_domain[index] = future.result()
            except Exception as exc:
                logger.exception("Batch check failed for domain %s", domains[index])
                by_domain[index] = DomainCheck(domain=domains[index], errors=[f"check failed: {exc}"])

    logger.info("Batch check complete: %d domains checked", len(by_domain))
    return [by_domain[i] for i in range(len(domains))]


def _run_safe_check(
    check_name: str,
    check_fn: Callable[[], Any],
    errors: list[str],
) -> Any:
    """Execute a check function with error isolation.

    If the check raises an exception, it is caught and logged, an error
    entry is appended to *errors*, and None is returned.
    """
    try:
        return check_fn()
    except Exception as exc:
        logger.exception("Error in %s check", check_name)
        errors.append(f"{check_name} check failed: {exc}")
        return None
