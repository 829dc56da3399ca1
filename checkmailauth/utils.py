# -*- coding: utf-8 -*-
"""DNS utility functions"""

from __future__ import annotations

import logging
import re
import unicodedata
from typing import Optional, TypedDict, Union
from collections.abc import Sequence

import dns.exception
import dns.resolver
from dns.nameserver import Nameserver
import publicsuffixlist
import requests
from expiringdict import ExpiringDict

from checkmailauth._constants import (
    DEFAULT_DOH_URL,
    DEFAULT_HTTP_TIMEOUT,
    DNS_CACHE_MAX_AGE_SECONDS,
    DNS_CACHE_MAX_LEN,
    USER_AGENT,
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

DNS_CACHE = ExpiringDict(
    max_len=DNS_CACHE_MAX_LEN, max_age_seconds=DNS_CACHE_MAX_AGE_SECONDS
)

ZERO_WIDTH_RE = re.compile(r"[\u200B-\u200D\uFEFF]")  # includes ZWSP, ZWNJ, ZWJ, BOM
TXT_SEGMENT_JOIN_RE = re.compile(r'"\s+"')
PSL = publicsuffixlist.PublicSuffixList()

# DNS RR type codes, as reported in DNS-over-HTTPS JSON answers
RECORD_TYPE_CODES: dict[str, int] = {
    "A": 1,
    "NS": 2,
    "CNAME": 5,
    "SOA": 6,
    "PTR": 12,
    "MX": 15,
    "TXT": 16,
    "AAAA": 28,
}

DNS_STATUS_NOERROR = 0
DNS_STATUS_SERVFAIL = 2
DNS_STATUS_NXDOMAIN = 3


class DNSAnswer(TypedDict):
    name: str
    type: int
    data: str


class DNSResponse(TypedDict):
    status: int
    answers: list[DNSAnswer]


class DNSException(Exception):
    """Raised when a general DNS error occurs"""

    def __init__(self, error):
        if isinstance(error, dns.exception.Timeout):
            error.kwargs["timeout"] = round(error.kwargs["timeout"], 1)
        Exception.__init__(self, error)


def get_base_domain(domain: str) -> str:
    """
    Gets the base domain name for the given domain

    .. note::
        Results are based on a list of public domain suffixes at
        https://publicsuffix.org/list/public_suffix_list.dat.

    Args:
        domain (str): A domain or subdomain

    Returns:
        str: The base domain of the given domain

    """
    domain = normalize_domain(domain)
    return PSL.privatesuffix(domain) or domain


def normalize_domain(domain: str) -> str:
    """
    Normalize an input domain by removing zero-width characters, a trailing
    dot, and lowering it

    Args:
        domain (str): A domain or subdomain

    Returns:
        str: A normalized domain
    """
    domain = unicodedata.normalize("NFC", domain)
    domain = ZERO_WIDTH_RE.sub("", domain)
    return domain.strip().rstrip(".").lower()


def strip_txt_quotes(data: str) -> str:
    """
    Joins the quoted character-strings of a TXT record and removes the
    quote characters

    Args:
        data (str): TXT record data as returned by a resolver,
                    e.g. ``"v=spf1 ip4:192.0.2.1 " "-all"``

    Returns:
        str: The unquoted record text
    """
    data = TXT_SEGMENT_JOIN_RE.sub("", data.strip())
    return data.replace('"', "")


class DoHClient(object):
    """Queries a DNS-over-HTTPS JSON API (RFC 8484 style ``dns-json``)"""

    def __init__(
        self,
        url: str = DEFAULT_DOH_URL,
        *,
        session: Optional[requests.Session] = None,
        timeout: float = DEFAULT_HTTP_TIMEOUT,
        cache: Optional[ExpiringDict] = None,
    ):
        """
        Args:
            url (str): The DNS-over-HTTPS endpoint
            session (requests.Session): A session to use for HTTP requests
            timeout (float): Number of seconds to wait for an answer
            cache (ExpiringDict): Cache storage
        """
        if session is None:
            session = requests.Session()
            session.headers = {"User-Agent": USER_AGENT}
        self.url = url
        self.session = session
        self.timeout = float(timeout)
        self.cache = DNS_CACHE if cache is None else cache

    def query(self, name: str, record_type: str = "TXT") -> DNSResponse:
        """
        Queries DNS

        Args:
            name (str): The domain or subdomain to query about
            record_type (str): The record type to query for

        Returns:
            dict: A ``dict`` with the following keys:
                - ``status`` - The DNS response code (``0`` is success)
                - ``answers`` - A ``list`` of ``name``/``type``/``data``
                  ``dicts``

        Raises:
            :exc:`checkmailauth.utils.DNSException`
        """
        name = normalize_domain(name)
        record_type = record_type.upper()
        cache_key = f"{self.url}_{name}_{record_type}"
        if isinstance(self.cache, ExpiringDict):
            cached = self.cache.get(cache_key)
            if cached is not None:
                return cached
        logging.debug(f"Querying {self.url} for {record_type} records on {name}")
        try:
            response = self.session.get(
                self.url,
                params={"name": name, "type": record_type},
                headers={"Accept": "application/dns-json"},
                timeout=self.timeout,
            )
        except requests.exceptions.RequestException as error:
            raise DNSException(error)
        if not response.ok:
            raise DNSException(f"DNS query failed: {response.status_code}")
        try:
            data = response.json()
        except ValueError:
            raise DNSException(f"Invalid DNS-over-HTTPS response for {name}")
        if not isinstance(data, dict):
            raise DNSException(f"Invalid DNS-over-HTTPS response for {name}")

        answers: list[DNSAnswer] = []
        for answer in data.get("Answer") or []:
            answers.append(
                {
                    "name": str(answer.get("name", name)).rstrip("."),
                    "type": answer.get("type"),
                    "data": answer.get("data", ""),
                }
            )
        results: DNSResponse = {
            "status": data.get("Status", DNS_STATUS_SERVFAIL),
            "answers": answers,
        }
        if isinstance(self.cache, ExpiringDict):
            self.cache[cache_key] = results

        return results


class ResolverClient(object):
    """Queries DNS directly through a dnspython resolver"""

    def __init__(
        self,
        nameservers: Optional[Sequence[str | Nameserver]] = None,
        *,
        resolver: Optional[dns.resolver.Resolver] = None,
        timeout: float = 2.0,
        timeout_retries: int = 2,
        cache: Optional[ExpiringDict] = None,
    ):
        """
        Args:
            nameservers (list): A list of one or more nameservers to use
            resolver (dns.resolver.Resolver): A resolver object to use for DNS
                                              requests
            timeout (float): Sets the DNS timeout in seconds
            timeout_retries (int): The number of times to reattempt a query
                                   after a timeout
            cache (ExpiringDict): Cache storage
        """
        timeout = float(timeout)
        if not resolver:
            resolver = dns.resolver.Resolver()
            if nameservers is not None:
                resolver.nameservers = list(nameservers)
            resolver.timeout = timeout
            resolver.lifetime = timeout
        self.resolver = resolver
        self.timeout = timeout
        self.timeout_retries = timeout_retries
        self.cache = DNS_CACHE if cache is None else cache

    def _resolve(self, name: str, record_type: str, _attempt: int = 0):
        try:
            return self.resolver.resolve(name, record_type, lifetime=self.timeout)
        except dns.resolver.LifetimeTimeout as e:
            _attempt += 1
            if _attempt > self.timeout_retries:
                raise e
            return self._resolve(name, record_type, _attempt=_attempt)

    def query(self, name: str, record_type: str = "TXT") -> DNSResponse:
        """
        Queries DNS

        Args:
            name (str): The domain or subdomain to query about
            record_type (str): The record type to query for

        Returns:
            dict: A ``dict`` with ``status`` and ``answers`` keys, in the
            same shape as :meth:`DoHClient.query`

        Raises:
            :exc:`checkmailauth.utils.DNSException`
        """
        name = normalize_domain(name)
        record_type = record_type.upper()
        cache_key = f"resolver_{name}_{record_type}"
        if isinstance(self.cache, ExpiringDict):
            cached = self.cache.get(cache_key)
            if cached is not None:
                return cached
        logging.debug(f"Getting {record_type} records for {name}")
        answers: list[DNSAnswer] = []
        try:
            rrset = self._resolve(name, record_type)
            for rdata in rrset:
                if record_type == "TXT":
                    segments = []
                    for segment in rdata.strings:
                        try:
                            segments.append(segment.decode())
                        except UnicodeDecodeError:
                            segments.append("Undecodable characters")
                    data = " ".join(f'"{segment}"' for segment in segments)
                else:
                    data = rdata.to_text().rstrip(".")
                answers.append(
                    {
                        "name": name,
                        "type": RECORD_TYPE_CODES.get(record_type, int(rrset.rdtype)),
                        "data": data,
                    }
                )
            status = DNS_STATUS_NOERROR
        except dns.resolver.NXDOMAIN:
            status = DNS_STATUS_NXDOMAIN
        except dns.resolver.NoAnswer:
            status = DNS_STATUS_NOERROR
        except dns.exception.DNSException as error:
            raise DNSException(error)

        results: DNSResponse = {"status": status, "answers": answers}
        if isinstance(self.cache, ExpiringDict):
            self.cache[cache_key] = results

        return results


DNSClient = Union[DoHClient, ResolverClient]


def get_dns_client(
    *,
    nameservers: Optional[Sequence[str | Nameserver]] = None,
    doh_url: Optional[str] = None,
    resolver: Optional[dns.resolver.Resolver] = None,
    timeout: float = 2.0,
    timeout_retries: int = 2,
) -> DNSClient:
    """
    Builds a DNS client

    A :class:`ResolverClient` is used when nameservers or a resolver are
    given; otherwise queries go to a DNS-over-HTTPS endpoint

    Args:
        nameservers (list): A list of nameservers to query
        doh_url (str): The DNS-over-HTTPS endpoint
        resolver (dns.resolver.Resolver): A resolver object to use for DNS
                                          requests
        timeout (float): number of seconds to wait for an answer from DNS
        timeout_retries (int): The number of times to reattempt a query
                               after a timeout

    Returns:
        A DNS client
    """
    if nameservers or resolver:
        return ResolverClient(
            nameservers,
            resolver=resolver,
            timeout=timeout,
            timeout_retries=timeout_retries,
        )
    return DoHClient(doh_url or DEFAULT_DOH_URL, timeout=timeout)


def query_txt_records(name: str, *, client: Optional[DNSClient] = None) -> list[str]:
    """
    Queries DNS for TXT records

    Args:
        name (str): A domain name
        client: The DNS client to use

    Returns:
        list: A list of unquoted TXT records; empty when the name has none

    Raises:
        :exc:`checkmailauth.utils.DNSException`
    """
    if client is None:
        client = get_dns_client()
    response = client.query(name, "TXT")
    if response["status"] != DNS_STATUS_NOERROR:
        return []
    records = []
    for answer in response["answers"]:
        if answer["type"] != RECORD_TYPE_CODES["TXT"]:
            continue
        records.append(strip_txt_quotes(answer["data"]))
    return records


def find_txt_record(
    name: str, marker: str, *, client: Optional[DNSClient] = None
) -> Optional[str]:
    """
    Returns the first TXT record at ``name`` that contains ``marker``

    Args:
        name (str): A domain name
        marker (str): Text the record must contain, e.g. ``v=spf1``
        client: The DNS client to use

    Returns:
        str: The unquoted record, or ``None``

    Raises:
        :exc:`checkmailauth.utils.DNSException`
    """
    for record in query_txt_records(name, client=client):
        if marker in record:
            return record
    return None
