# -*- coding: utf-8 -*-

"""Resolves and validates SPF, DMARC, and BIMI DNS records"""

from __future__ import annotations

import json
import logging
from collections.abc import Callable, Sequence
from concurrent.futures import ThreadPoolExecutor, as_completed
from csv import DictWriter
from io import StringIO
from typing import Optional, TypedDict, Union

import dns.resolver
import requests
from dns.nameserver import Nameserver

import checkmailauth._constants
from checkmailauth._constants import BULK_BATCH_SIZE, DEFAULT_HTTP_TIMEOUT
from checkmailauth.bimi import (
    BIMIResults,
    CertificateExtractor,
    check_bimi,
    new_bimi_results,
)
from checkmailauth.dkim import DKIMResults, check_dkim, new_dkim_results
from checkmailauth.dmarc import DMARCResults, check_dmarc, new_dmarc_results
from checkmailauth.spf import SPFResults, check_spf, new_spf_results
from checkmailauth.utils import (
    DNSClient,
    get_base_domain,
    get_dns_client,
    normalize_domain,
)

"""Copyright 2019-2023 Sean Whalen

Licensed under the Apache License, Version 2.0 (the "License");
you may not use this file except in compliance with the License.
You may obtain a copy of the License at

   https://www.apache.org/licenses/LICENSE-2.0

Unless required by applicable law or agreed to in writing, software
distributed under the License is distributed on an "AS IS" BASIS,
WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
See the License for the specific language governing permissions and
limitations under the License."""


__version__ = checkmailauth._constants.__version__

SCOPE_ALL = "all"
SCOPES = (SCOPE_ALL, "spf", "dmarc", "bimi")

STATUS_PENDING = "pending"
STATUS_COMPLETED = "completed"
STATUS_ERROR = "error"


class _DomainResultOptionalFields(TypedDict, total=False):
    dkim: list[DKIMResults]


class DomainResult(_DomainResultOptionalFields):
    domain: str
    base_domain: str
    scope: str
    spf: SPFResults
    dmarc: DMARCResults
    bimi: BIMIResults
    status: str


def new_domain_result(domain: str, scope: str = SCOPE_ALL) -> DomainResult:
    """
    Returns a pending result for a domain, with empty SPF, DMARC, and BIMI
    results

    Args:
        domain (str): A domain name
        scope (str): The lookup scope

    Returns:
        dict: A pending ``DomainResult``
    """
    return {
        "domain": domain,
        "base_domain": get_base_domain(domain),
        "scope": scope,
        "spf": new_spf_results(),
        "dmarc": new_dmarc_results(),
        "bimi": new_bimi_results(),
        "status": STATUS_PENDING,
    }


def _run_facet(
    domain_results: DomainResult,
    facet: str,
    check: Callable[[], Union[SPFResults, DMARCResults, BIMIResults]],
):
    try:
        domain_results[facet] = check()
    except Exception as error:
        logging.warning(
            f"{facet.upper()} lookup failed for {domain_results['domain']}: {error}"
        )
        domain_results[facet]["errors"].append(
            str(error) or f"The {facet.upper()} lookup failed."
        )
        domain_results[facet]["valid"] = False


def _check_dkim_selector(
    domain: str, selector: str, client: DNSClient
) -> DKIMResults:
    try:
        return check_dkim(domain, selector, client=client)
    except Exception as error:
        logging.warning(f"DKIM lookup failed for {selector} on {domain}: {error}")
        dkim_results = new_dkim_results(domain, selector.strip().lower())
        dkim_results["errors"].append(str(error) or "The DKIM lookup failed.")
        return dkim_results


def resolve_domain(
    domain: str,
    scope: str = SCOPE_ALL,
    *,
    client: Optional[DNSClient] = None,
    nameservers: Optional[Sequence[str | Nameserver]] = None,
    resolver: Optional[dns.resolver.Resolver] = None,
    doh_url: Optional[str] = None,
    timeout: float = DEFAULT_HTTP_TIMEOUT,
    timeout_retries: int = 2,
    bimi_selector: str = "default",
    dkim_selectors: Optional[Sequence[str]] = None,
    session: Optional[requests.Session] = None,
    certificate_proxy: Optional[str] = None,
    certificate_extractor: Optional[CertificateExtractor] = None,
) -> DomainResult:
    """
    Resolves and validates the email authentication records of a domain

    Args:
        domain (str): A domain name
        scope (str): ``all``, ``spf``, ``dmarc``, or ``bimi``
        client: The DNS client to use; built from the remaining DNS options
                if not given
        nameservers (list): A list of nameservers to query
        resolver (dns.resolver.Resolver): A resolver object to use for DNS
                                          requests
        doh_url (str): The DNS-over-HTTPS endpoint to query
        timeout (float): number of seconds to wait for an answer from DNS
                         or HTTP
        timeout_retries (int): The number of times to reattempt a query
                               after a timeout
        bimi_selector (str): The BIMI selector to check
        dkim_selectors (list): DKIM selectors to check
        session (requests.Session): A session to use for fetching the VMC
        certificate_proxy (str): A URL template used to fetch the VMC
        certificate_extractor: Extracts fields from the fetched VMC

    Returns:
        dict: A ``DomainResult`` with the following keys:
            - ``domain`` - The domain name
            - ``base_domain`` - The base domain
            - ``scope`` - The lookup scope
            - ``spf`` - See :func:`checkmailauth.spf.check_spf`
            - ``dmarc`` - See :func:`checkmailauth.dmarc.check_dmarc`
            - ``bimi`` - See :func:`checkmailauth.bimi.check_bimi`
            - ``dkim`` - A ``list`` of :func:`checkmailauth.dkim.check_dkim`
              results, if selectors were given
            - ``status`` - ``completed``, or ``error`` if a DNS client could
              not be created

    Raises:
        :exc:`ValueError` if the scope is not valid
    """
    domain = normalize_domain(domain)
    scope = scope.lower()
    if scope not in SCOPES:
        raise ValueError(f"{scope} is not a valid scope: {', '.join(SCOPES)}")
    logging.debug(f"Checking: {domain} ({scope})")
    domain_results = new_domain_result(domain, scope)
    if client is None:
        try:
            client = get_dns_client(
                nameservers=nameservers,
                doh_url=doh_url,
                resolver=resolver,
                timeout=timeout,
                timeout_retries=timeout_retries,
            )
        except Exception as error:
            logging.error(f"Unable to set up DNS queries for {domain}: {error}")
            domain_results["status"] = STATUS_ERROR
            return domain_results

    if scope in (SCOPE_ALL, "spf"):
        _run_facet(domain_results, "spf", lambda: check_spf(domain, client=client))
    if scope in (SCOPE_ALL, "dmarc"):
        _run_facet(
            domain_results, "dmarc", lambda: check_dmarc(domain, client=client)
        )
    if scope in (SCOPE_ALL, "bimi"):
        _run_facet(
            domain_results,
            "bimi",
            lambda: check_bimi(
                domain,
                selector=bimi_selector,
                client=client,
                session=session,
                http_timeout=timeout,
                certificate_proxy=certificate_proxy,
                certificate_extractor=certificate_extractor,
            ),
        )
    if dkim_selectors:
        domain_results["dkim"] = [
            _check_dkim_selector(domain, selector, client)
            for selector in dkim_selectors
        ]

    domain_results["status"] = STATUS_COMPLETED
    return domain_results


def _normalize_domains(domains: Sequence[str]) -> list[str]:
    normalized = []
    for domain in domains:
        domain = normalize_domain(domain.rstrip(".\r\n").strip().split(",")[0])
        if "." not in domain or domain in normalized:
            continue
        normalized.append(domain)
    return normalized


def check_domains(
    domains: Sequence[str],
    scope: str = SCOPE_ALL,
    *,
    batch_size: int = BULK_BATCH_SIZE,
    **kwargs,
) -> list[DomainResult]:
    """
    Resolves the email authentication records of several domains
    concurrently

    Args:
        domains (list): A list of domains to check
        scope (str): ``all``, ``spf``, ``dmarc``, or ``bimi``
        batch_size (int): The maximum number of domains resolved at once
        **kwargs: Options passed to :func:`checkmailauth.resolve_domain`

    Returns:
        list: A ``DomainResult`` for each unique domain, in input order. A
        domain whose resolution failed outright has a ``status`` of
        ``error``.
    """
    domains = _normalize_domains(domains)
    results: list[Optional[DomainResult]] = [None] * len(domains)
    with ThreadPoolExecutor(max_workers=max(1, batch_size)) as executor:
        futures = {
            executor.submit(resolve_domain, domain, scope, **kwargs): index
            for index, domain in enumerate(domains)
        }
        for future in as_completed(futures):
            index = futures[future]
            try:
                results[index] = future.result()
            except Exception as error:
                logging.error(f"Failed to check {domains[index]}: {error}")
                domain_results = new_domain_result(domains[index], scope)
                domain_results["status"] = STATUS_ERROR
                results[index] = domain_results

    return results


def results_to_json(
    results: Union[DomainResult, list[DomainResult]],
) -> str:
    """
    Converts a dictionary of results or list of results to a JSON string

    Args:
        results (dict): A dictionary of results

    Returns:
        str: Results in JSON format
    """
    return json.dumps(results, ensure_ascii=False, indent=2)


CSV_FIELDS = [
    "domain",
    "base_domain",
    "status",
    "spf_valid",
    "spf_lookup_count",
    "spf_exceeds_lookup_limit",
    "dmarc_valid",
    "dmarc_p",
    "dmarc_sp",
    "dmarc_pct",
    "dmarc_adkim",
    "dmarc_aspf",
    "dmarc_fo",
    "dmarc_rf",
    "dmarc_ri",
    "dmarc_rua",
    "dmarc_ruf",
    "bimi_valid",
    "bimi_l",
    "bimi_a",
    "bimi_certificate_authority",
    "bimi_certificate_expiry",
    "dkim",
    "spf_record",
    "dmarc_record",
    "bimi_record",
    "spf_errors",
    "dmarc_errors",
    "dmarc_warnings",
    "bimi_errors",
]


def results_to_csv_rows(
    results: Union[DomainResult, list[DomainResult]],
) -> list[dict]:
    """
    Converts a results dictionary or list of dictionaries and returns a
    list of CSV row dictionaries

    Args:
        results (dict): A dictionary of results

    Returns:
        list: A list of CSV row dictionaries
    """
    rows = []

    if type(results) is dict:
        results = [results]

    for result in results:
        row = {}
        _spf = result["spf"]
        _dmarc = result["dmarc"]
        _bimi = result["bimi"]
        row["domain"] = result["domain"]
        row["base_domain"] = result["base_domain"]
        row["status"] = result["status"]

        row["spf_valid"] = _spf["valid"]
        row["spf_record"] = _spf["record"]
        row["spf_lookup_count"] = _spf["lookup_count"]
        row["spf_exceeds_lookup_limit"] = _spf["exceeds_lookup_limit"]
        row["spf_errors"] = "|".join(_spf["errors"])

        row["dmarc_valid"] = _dmarc["valid"]
        row["dmarc_record"] = _dmarc["record"]
        if _dmarc["record"] is not None:
            row["dmarc_p"] = _dmarc["policy"]
            row["dmarc_sp"] = _dmarc["subdomain_policy"]
            row["dmarc_pct"] = _dmarc["percentage"]
            row["dmarc_adkim"] = _dmarc["adkim"]
            row["dmarc_aspf"] = _dmarc["aspf"]
            row["dmarc_fo"] = _dmarc["fo"]
            row["dmarc_rf"] = _dmarc["rf"]
            row["dmarc_ri"] = _dmarc["ri"]
            row["dmarc_rua"] = "|".join(_dmarc["rua_emails"])
            row["dmarc_ruf"] = "|".join(_dmarc["ruf_emails"])
        row["dmarc_errors"] = "|".join(_dmarc["errors"])
        row["dmarc_warnings"] = "|".join(_dmarc["warnings"])

        row["bimi_valid"] = _bimi["valid"]
        row["bimi_record"] = _bimi["record"]
        row["bimi_l"] = _bimi["logo_url"]
        row["bimi_a"] = _bimi["certificate_url"]
        row["bimi_certificate_authority"] = _bimi["certificate_authority"]
        row["bimi_certificate_expiry"] = _bimi["certificate_expiry"]
        row["bimi_errors"] = "|".join(_bimi["errors"])

        if "dkim" in result:
            row["dkim"] = "|".join(
                f"{d['selector']}:{d['valid']}" for d in result["dkim"]
            )
        rows.append(row)
    return rows


def results_to_csv(results: Union[DomainResult, list[DomainResult]]) -> str:
    """
    Converts a dictionary of results to CSV

    Args:
        results (dict): A dictionary of results

    Returns:
        str: A CSV of results
    """
    output = StringIO(newline="\n")
    writer = DictWriter(output, fieldnames=CSV_FIELDS)
    writer.writeheader()
    rows = results_to_csv_rows(results)
    writer.writerows(rows)
    output.flush()

    return output.getvalue()


def output_to_file(path: str, content: str):
    """
    Write given content to the given path

    Args:
        path (str): A file path
        content (str): JSON or CSV text
    """
    with open(
        path, "w", newline="\n", encoding="utf-8", errors="ignore"
    ) as output_file:
        output_file.write(content)
