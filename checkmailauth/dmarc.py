# -*- coding: utf-8 -*-
"""DMARC record validation"""

from __future__ import annotations

import logging
import re
from typing import Callable, Optional, TypedDict, Union

from checkmailauth.utils import (
    DNSClient,
    DNSException,
    find_txt_record,
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

DMARC_VERSION_TAG = "v=DMARC1"
MAILTO_PREFIX = "mailto:"
DEFAULT_PERCENTAGE = 100
LEADING_DIGITS_REGEX = re.compile(r"\d+")


class DMARCError(Exception):
    """Raised when a fatal DMARC error occurs"""

    def __init__(self, msg: str, data: Optional[dict] = None):
        """
        Args:
            msg (str): The error message
            data (dict): A dictionary of data to include in the results
        """
        self.data = data
        Exception.__init__(self, msg)


class DMARCRecordNotFound(DMARCError):
    """Raised when a DMARC record could not be found"""


class DMARCResults(TypedDict):
    record: Union[str, None]
    valid: bool
    policy: str
    subdomain_policy: str
    percentage: int
    adkim: str
    aspf: str
    fo: str
    rf: str
    ri: str
    reporting_emails: list[str]
    rua_emails: list[str]
    ruf_emails: list[str]
    warnings: list[str]
    errors: list[str]


def new_dmarc_results(record: Optional[str] = None) -> DMARCResults:
    """Returns DMARC results populated with the default tag values"""
    return {
        "record": record,
        "valid": False,
        "policy": "",
        "subdomain_policy": "",
        "percentage": DEFAULT_PERCENTAGE,
        "adkim": "r",
        "aspf": "r",
        "fo": "0",
        "rf": "afrf",
        "ri": "86400",
        "reporting_emails": [],
        "rua_emails": [],
        "ruf_emails": [],
        "warnings": [],
        "errors": [],
    }


def parse_dmarc_report_uris(value: str) -> list[str]:
    """
    Parses the value of a ``rua`` or ``ruf`` tag into email addresses

    Args:
        value (str): A comma-separated list of ``mailto:`` URIs

    Returns:
        list: Email addresses, without the ``mailto:`` scheme or ``!`` size
        limits
    """
    addresses = []
    for uri in value.split(","):
        uri = uri.strip()
        if uri.startswith(MAILTO_PREFIX):
            uri = uri[len(MAILTO_PREFIX) :]
        address = uri.split("!")[0].strip()
        if address != "":
            addresses.append(address)
    return addresses


def _set_percentage(results: DMARCResults, value: str):
    match = LEADING_DIGITS_REGEX.match(value)
    percentage = int(match.group(0)) if match else DEFAULT_PERCENTAGE
    if not 0 <= percentage <= 100:
        results["warnings"].append(
            f"The pct tag value {percentage} is not between 0 and 100; "
            f"using {DEFAULT_PERCENTAGE}."
        )
        percentage = DEFAULT_PERCENTAGE
    results["percentage"] = percentage


def _set_rua(results: DMARCResults, value: str):
    results["rua_emails"] += parse_dmarc_report_uris(value)


def _set_ruf(results: DMARCResults, value: str):
    results["ruf_emails"] += parse_dmarc_report_uris(value)


def _set_field(field: str) -> Callable[[DMARCResults, str], None]:
    def set_value(results: DMARCResults, value: str):
        results[field] = value

    return set_value


def _ignore(results: DMARCResults, value: str):
    pass


# Every valid DMARC tag, mapped to the handler that stores its value
DMARC_TAG_HANDLERS: dict[str, Callable[[DMARCResults, str], None]] = {
    "v": _ignore,
    "p": _set_field("policy"),
    "sp": _set_field("subdomain_policy"),
    "rua": _set_rua,
    "ruf": _set_ruf,
    "fo": _set_field("fo"),
    "adkim": _set_field("adkim"),
    "aspf": _set_field("aspf"),
    "rf": _set_field("rf"),
    "ri": _set_field("ri"),
    "pct": _set_percentage,
}


def get_email_domain(email_address: str) -> Union[str, None]:
    """Returns the lowercase domain of an email address, if it has one"""
    if "@" not in email_address:
        return None
    domain = email_address.rsplit("@", 1)[1].strip().lower()
    return domain or None


def check_report_authorization(
    policy_domain: str,
    reporting_domain: str,
    *,
    client: Optional[DNSClient] = None,
) -> bool:
    """
    Checks if a domain accepts DMARC reports about another domain per
    RFC 7489, § 7.1, e.g.:

    ::

      example.com._report._dmarc.example.net IN TXT "v=DMARC1"

    Args:
        policy_domain (str): The domain publishing the DMARC record
        reporting_domain (str): The domain receiving the reports
        client: The DNS client to use

    Returns:
        bool: ``True`` if an authorization record exists; ``False`` if it
        does not or the query failed
    """
    target = f"{policy_domain}._report._dmarc.{reporting_domain}"
    logging.debug(f"Checking for a DMARC report authorization record at {target}")
    try:
        record = find_txt_record(target, DMARC_VERSION_TAG, client=client)
    except Exception as error:
        logging.debug(f"Report authorization query for {target} failed: {error}")
        return False
    return record is not None


def parse_dmarc_record(
    record: str,
    domain: str,
    *,
    client: Optional[DNSClient] = None,
) -> DMARCResults:
    """
    Parses a DMARC record and checks that external report destinations
    are authorized

    Args:
        record (str): A DMARC record
        domain (str): The domain where the record was found
        client: The DNS client to use for report authorization checks

    Returns:
        dict: A ``dict`` with the DMARC tag values, plus:
            - ``reporting_emails`` - The unique ``rua`` and ``ruf`` addresses
            - ``warnings`` - A ``list`` of warnings
            - ``errors`` - A ``list`` of errors
    """
    logging.debug(f"Parsing the DMARC record for {domain}")
    domain = normalize_domain(domain)
    if client is None:
        client = get_dns_client()
    results = new_dmarc_results(record)
    pairs = [pair.strip() for pair in record.split(";")]
    pairs = [pair for pair in pairs if pair != ""]

    if len(domain.split(".")) > 2 and any(p.startswith("sp=") for p in pairs):
        results["warnings"].append(
            f"The sp tag has no effect on {domain}; subdomain policies only "
            "apply when published at the organizational domain."
        )

    for pair in pairs:
        tag, _, value = pair.partition("=")
        tag = tag.strip()
        value = value.strip()
        if tag not in DMARC_TAG_HANDLERS:
            results["errors"].append(f"'{tag}' is not a valid DMARC tag.")
            continue
        DMARC_TAG_HANDLERS[tag](results, value)

    results["reporting_emails"] = list(
        dict.fromkeys(results["rua_emails"] + results["ruf_emails"])
    )

    checked_domains = set()
    for email_address in results["reporting_emails"]:
        reporting_domain = get_email_domain(email_address)
        if reporting_domain is None or reporting_domain == domain:
            continue
        if reporting_domain in checked_domains:
            continue
        checked_domains.add(reporting_domain)
        if not check_report_authorization(domain, reporting_domain, client=client):
            results["warnings"].append(
                f"External domain '{reporting_domain}' may not be authorized "
                f"to receive DMARC reports for '{domain}'. Check for "
                "authorization record at "
                f"{domain}._report._dmarc.{reporting_domain}"
            )

    return results


def query_dmarc_record(
    domain: str, *, client: Optional[DNSClient] = None
) -> Union[str, None]:
    """
    Queries DNS for a DMARC record

    Args:
        domain (str): A domain name
        client: The DNS client to use

    Returns:
        str: The DMARC record, or ``None`` if the domain does not have one

    Raises:
        :exc:`checkmailauth.dmarc.DMARCRecordNotFound`
    """
    domain = normalize_domain(domain)
    target = f"_dmarc.{domain}"
    logging.debug(f"Checking for a DMARC record on {domain}")
    try:
        return find_txt_record(target, DMARC_VERSION_TAG, client=client)
    except DNSException as error:
        raise DMARCRecordNotFound(str(error))


def check_dmarc(domain: str, *, client: Optional[DNSClient] = None) -> DMARCResults:
    """
    Returns a dictionary with a parsed DMARC record or an error

    Args:
        domain (str): A domain name
        client: The DNS client to use

    Returns:
        dict: See :func:`checkmailauth.dmarc.parse_dmarc_record`, plus
        ``record`` and ``valid``
    """
    domain = normalize_domain(domain)
    if client is None:
        client = get_dns_client()
    try:
        record = query_dmarc_record(domain, client=client)
    except DMARCError as error:
        dmarc_results = new_dmarc_results()
        dmarc_results["errors"].append(str(error))
        return dmarc_results
    if record is None:
        dmarc_results = new_dmarc_results()
        dmarc_results["errors"].append("No DMARC record found.")
        return dmarc_results

    dmarc_results = parse_dmarc_record(record, domain, client=client)
    dmarc_results["valid"] = len(dmarc_results["errors"]) == 0

    return dmarc_results
