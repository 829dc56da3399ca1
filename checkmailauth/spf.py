# -*- coding: utf-8 -*-
"""Sender Policy framework (SPF) record validation"""

from __future__ import annotations

import logging
import re
from typing import Optional, TypedDict, Union

from checkmailauth._constants import SPF_LOOKUP_LIMIT
from checkmailauth.utils import (
    DNSClient,
    DNSException,
    find_txt_record,
    get_dns_client,
    normalize_domain,
)

"""Copyright 2019-2025 Sean Whalen

Licensed under the Apache License, Version 2.0 (the "License");
you may not use this file except in compliance with the License.
You may obtain a copy of the License at

   https://www.apache.org/licenses/LICENSE-2.0

Unless required by applicable law or agreed to in writing, software
distributed under the License is distributed on an "AS IS" BASIS,
WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
See the License for the specific language governing permissions and
limitations under the License."""

SPF_VERSION_TAG = "v=spf1"
INCLUDE_PREFIX = "include:"
REDIRECT_PREFIX = "redirect="
NO_TXT_RECORD = "No TXT record found"

# a, mx, ptr, and exists, with an optional qualifier, domain-spec, and CIDR
# lengths (e.g. ``-mx:example.com/24//64``)
SPF_LOOKUP_MECHANISM_REGEX_STRING = (
    r"^[+\-~?]?(a|mx|ptr|exists)(?::([^/\s]*))?(?:/\d{1,3})?(?://\d{1,3})?$"
)
SPF_LOOKUP_MECHANISM_REGEX = re.compile(SPF_LOOKUP_MECHANISM_REGEX_STRING)

# Lookup types that are followed by fetching the target's SPF record
FOLLOWED_LOOKUP_TYPES = ("include", "redirect")


class SPFError(Exception):
    """Raised when a fatal SPF error occurs"""

    def __init__(self, msg: str, data: Optional[dict] = None):
        """
        Args:
            msg (str): The error message
            data (dict): A dictionary of data to include in the output
        """
        self.data = data
        Exception.__init__(self, msg)


class SPFRecordNotFound(SPFError):
    """Raised when an SPF record could not be found"""

    def __init__(self, error: Union[Exception, str], domain: str):
        self.error = error
        self.domain = domain
        SPFError.__init__(self, str(error))

    def __str__(self):
        return str(self.error)


class LookupDetail(TypedDict):
    number: int
    type: str
    domain: str
    record: Union[str, None]
    nested: list[LookupDetail]
    indent: int


class ParsedSPFRecord(TypedDict):
    mechanisms: list[str]
    includes: list[str]
    redirects: list[str]


class SPFLookupWalk(TypedDict):
    lookup_details: list[LookupDetail]
    nested_lookups: dict[str, str]


class SPFResults(TypedDict):
    record: Union[str, None]
    valid: bool
    mechanisms: list[str]
    includes: list[str]
    redirects: list[str]
    lookup_count: int
    exceeds_lookup_limit: bool
    nested_lookups: dict[str, str]
    lookup_details: list[LookupDetail]
    errors: list[str]


class LookupCounter(object):
    """A DNS lookup counter shared by every branch of one SPF walk"""

    def __init__(self):
        self.count = 0

    def increment(self) -> int:
        """Counts one lookup and returns its 1-based sequence number"""
        self.count += 1
        return self.count


# Checked in order; the first matching prefix wins
_PREFIXED_LOOKUPS = (
    (INCLUDE_PREFIX, "include"),
    (REDIRECT_PREFIX, "redirect"),
)


def classify_spf_term(term: str, domain: str) -> Union[tuple[str, str], None]:
    """
    Classifies an SPF term that requires a DNS lookup

    Args:
        term (str): A single whitespace-delimited SPF term
        domain (str): The domain of the record containing the term

    Returns:
        tuple: ``(lookup_type, target_domain)``, or ``None`` if the term does
        not trigger a DNS lookup
    """
    for prefix, lookup_type in _PREFIXED_LOOKUPS:
        if term.startswith(prefix):
            return lookup_type, term[len(prefix) :]
    match = SPF_LOOKUP_MECHANISM_REGEX.match(term)
    if match is None:
        return None
    return match.group(1), match.group(2) or domain


def parse_spf_record(record: str) -> ParsedSPFRecord:
    """
    Splits an SPF record into its terms

    Args:
        record (str): An SPF record

    Returns:
        dict: A ``dict`` with the following keys:
            - ``mechanisms`` - Every term of the record, in order
            - ``includes`` - The ``include:`` target domains
            - ``redirects`` - The ``redirect=`` target domains
    """
    mechanisms = []
    includes = []
    redirects = []
    for term in record.split():
        if term.startswith(INCLUDE_PREFIX):
            includes.append(term[len(INCLUDE_PREFIX) :])
        elif term.startswith(REDIRECT_PREFIX):
            redirects.append(term[len(REDIRECT_PREFIX) :])
        mechanisms.append(term)

    return {"mechanisms": mechanisms, "includes": includes, "redirects": redirects}


def _fetch_nested_spf_record(domain: str, client: DNSClient) -> Union[str, None]:
    try:
        return find_txt_record(domain, SPF_VERSION_TAG, client=client)
    except DNSException as error:
        logging.debug(f"Failed to fetch the SPF record of {domain}: {error}")
        return None


def count_spf_lookups(
    record: str,
    domain: str,
    *,
    client: Optional[DNSClient] = None,
    visited: Optional[set[str]] = None,
    depth: int = 0,
    counter: Optional[LookupCounter] = None,
) -> SPFLookupWalk:
    """
    Walks an SPF record and the records it includes or redirects to,
    counting the mechanisms that require DNS lookups

    .. note::
        ``visited`` is copied for each call, so a domain is only skipped when
        it already appears on the current branch. A domain reached through
        two sibling mechanisms is walked, and counted, twice.

    Args:
        record (str): An SPF record
        domain (str): The domain that the SPF record came from
        client: The DNS client to use
        visited (set): Domains already walked on this branch
        depth (int): The recursion depth
        counter (LookupCounter): The counter shared by the whole walk

    Returns:
        dict: A ``dict`` with the following keys:
            - ``lookup_details`` - A tree of ``LookupDetail`` ``dicts``
            - ``nested_lookups`` - A ``dict`` of fetched records, keyed by
              domain
    """
    if client is None:
        client = get_dns_client()
    if counter is None:
        counter = LookupCounter()
    visited = set(visited or ())
    lookup_details: list[LookupDetail] = []
    nested_lookups: dict[str, str] = {}

    if domain in visited:
        logging.debug(f"{domain} was already walked on this branch; skipping")
        return {"lookup_details": lookup_details, "nested_lookups": nested_lookups}
    visited.add(domain)

    for term in record.split():
        lookup = classify_spf_term(term, domain)
        if lookup is None:
            continue
        lookup_type, target = lookup
        detail: LookupDetail = {
            "number": counter.increment(),
            "type": lookup_type,
            "domain": target,
            "record": None,
            "nested": [],
            "indent": depth,
        }
        lookup_details.append(detail)
        if lookup_type not in FOLLOWED_LOOKUP_TYPES:
            continue

        logging.debug(f"Following {lookup_type} {target} at depth {depth}")
        nested_record = _fetch_nested_spf_record(target, client)
        if nested_record is None:
            detail["record"] = NO_TXT_RECORD
            continue
        detail["record"] = nested_record
        if nested_record.startswith(SPF_VERSION_TAG):
            nested_lookups[target] = nested_record
            walk = count_spf_lookups(
                nested_record,
                target,
                client=client,
                visited=visited,
                depth=depth + 1,
                counter=counter,
            )
            nested_lookups.update(walk["nested_lookups"])
            detail["nested"] = walk["lookup_details"]

    return {"lookup_details": lookup_details, "nested_lookups": nested_lookups}


def query_spf_record(domain: str, *, client: Optional[DNSClient] = None) -> Union[str, None]:
    """
    Queries DNS for an SPF record

    Args:
        domain (str): A domain name
        client: The DNS client to use

    Returns:
        str: The SPF record, or ``None`` if the domain does not have one

    Raises:
        :exc:`checkmailauth.spf.SPFRecordNotFound`
    """
    domain = normalize_domain(domain)
    logging.debug(f"Checking for a SPF record on {domain}")
    try:
        return find_txt_record(domain, SPF_VERSION_TAG, client=client)
    except DNSException as error:
        raise SPFRecordNotFound(error, domain)


def new_spf_results() -> SPFResults:
    """Returns empty SPF results"""
    return {
        "record": None,
        "valid": False,
        "mechanisms": [],
        "includes": [],
        "redirects": [],
        "lookup_count": 0,
        "exceeds_lookup_limit": False,
        "nested_lookups": {},
        "lookup_details": [],
        "errors": [],
    }


def check_spf(domain: str, *, client: Optional[DNSClient] = None) -> SPFResults:
    """
    Returns a dictionary with a parsed SPF record and its DNS lookup tree

    Args:
        domain (str): A domain name
        client: The DNS client to use

    Returns:
        dict: A ``dict`` with the following keys:
            - ``record`` - The SPF record string
            - ``valid`` - ``False`` if the record is missing or exceeds
              the DNS lookup limit
            - ``mechanisms``, ``includes``, ``redirects`` - See
              :func:`checkmailauth.spf.parse_spf_record`
            - ``lookup_count`` - The number of DNS lookups required
            - ``exceeds_lookup_limit`` - ``lookup_count`` is over 10
            - ``nested_lookups`` - Fetched records, keyed by domain
            - ``lookup_details`` - The DNS lookup tree
            - ``errors`` - A ``list`` of errors
    """
    domain = normalize_domain(domain)
    if client is None:
        client = get_dns_client()
    spf_results = new_spf_results()
    try:
        record = query_spf_record(domain, client=client)
    except SPFError as error:
        spf_results["errors"].append(str(error))
        return spf_results
    if record is None:
        spf_results["errors"].append("No SPF record found.")
        return spf_results

    spf_results["record"] = record
    spf_results.update(parse_spf_record(record))

    counter = LookupCounter()
    walk = count_spf_lookups(record, domain, client=client, counter=counter)
    spf_results["lookup_details"] = walk["lookup_details"]
    spf_results["nested_lookups"] = walk["nested_lookups"]
    spf_results["lookup_count"] = counter.count
    spf_results["exceeds_lookup_limit"] = counter.count > SPF_LOOKUP_LIMIT
    if spf_results["exceeds_lookup_limit"]:
        spf_results["errors"].append(
            f"Too many DNS lookups ({counter.count}/{SPF_LOOKUP_LIMIT}). "
            "This may cause SPF to fail."
        )
    spf_results["valid"] = not spf_results["exceeds_lookup_limit"]

    return spf_results
