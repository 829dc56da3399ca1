# -*- coding: utf-8 -*-
"""Brand Indicators for Message Identification (BIMI) record validation"""

from __future__ import annotations

import logging
import re
from datetime import datetime, timezone
from typing import Optional, TypedDict, Union
from urllib.parse import quote

import requests
from cryptography.x509 import NameOID, load_pem_x509_certificates
from dateutil import parser as date_parser

from checkmailauth._constants import DEFAULT_HTTP_TIMEOUT, USER_AGENT
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

BIMI_VERSION_TAG = "v=BIMI1"
PEM_CERTIFICATE_MARKER = "-----BEGIN CERTIFICATE-----"

VMC_FETCH_FAILED = "Failed to fetch BIMI Verified Mark Certificate (VMC)."
VMC_FETCH_OR_PARSE_ERROR = "Error fetching or parsing BIMI certificate."
VMC_NOT_PEM = (
    "Fetched VMC URL content does not appear to be a valid PEM certificate."
)


class BIMIError(Exception):
    """Raised when a fatal BIMI error occurs"""

    def __init__(self, msg: str, data: Optional[dict] = None):
        """
        Args:
            msg (str): The error message
            data (dict): A dictionary of data to include in the results
        """
        self.data = data
        Exception.__init__(self, msg)


class BIMIRecordNotFound(BIMIError):
    """Raised when a BIMI record could not be found"""


class CertificateFields(TypedDict):
    certificate_authority: Union[str, None]
    certificate_issuer: Union[str, None]
    certificate_issue_date: Union[str, None]
    certificate_expiry: Union[str, None]


class BIMIResults(TypedDict):
    record: Union[str, None]
    valid: bool
    logo_url: Union[str, None]
    certificate_url: Union[str, None]
    certificate_authority: Union[str, None]
    certificate_issuer: Union[str, None]
    certificate_issue_date: Union[str, None]
    certificate_expiry: Union[str, None]
    errors: list[str]


def to_iso8601(value: Union[str, datetime]) -> str:
    """
    Normalizes a date to an ISO-8601 UTC timestamp

    Args:
        value: A ``datetime`` or a date string, e.g.
               ``Dec 31 23:59:59 2025 GMT``

    Returns:
        str: e.g. ``2025-12-31T23:59:59Z``

    Raises:
        :exc:`ValueError`
    """
    if not isinstance(value, datetime):
        value = date_parser.parse(value.strip())
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


class TextCertificateExtractor(object):
    """Best-effort extraction of VMC fields by matching certificate text

    This does not parse or verify the certificate; it only looks for
    ``openssl x509 -text`` style lines in the fetched document.
    """

    ORGANIZATION_REGEXES = (
        re.compile(r"Organization: O = (.+)"),
        re.compile(r"O = (.+)"),
    )
    ISSUER_REGEX = re.compile(r"Issuer: (.+)")
    NOT_BEFORE_REGEX = re.compile(r"Not Before ?: (.+)")
    NOT_AFTER_REGEX = re.compile(r"Not After ?: (.+)")

    def extract(self, pem_text: str) -> CertificateFields:
        authority = "Unknown"
        for regex in self.ORGANIZATION_REGEXES:
            match = regex.search(pem_text)
            if match:
                authority = match.group(1).strip()
                break
        fields: CertificateFields = {
            "certificate_authority": authority,
            "certificate_issuer": None,
            "certificate_issue_date": None,
            "certificate_expiry": None,
        }
        match = self.ISSUER_REGEX.search(pem_text)
        if match:
            fields["certificate_issuer"] = match.group(1).strip()
        match = self.NOT_BEFORE_REGEX.search(pem_text)
        if match:
            fields["certificate_issue_date"] = to_iso8601(match.group(1))
        match = self.NOT_AFTER_REGEX.search(pem_text)
        if match:
            fields["certificate_expiry"] = to_iso8601(match.group(1))

        return fields


class X509CertificateExtractor(object):
    """Extracts VMC fields by loading the first PEM certificate with
    ``cryptography``"""

    def extract(self, pem_text: str) -> CertificateFields:
        certificate = load_pem_x509_certificates(pem_text.encode())[0]
        organizations = certificate.issuer.get_attributes_for_oid(
            NameOID.ORGANIZATION_NAME
        )
        common_names = certificate.issuer.get_attributes_for_oid(NameOID.COMMON_NAME)
        authority = "Unknown"
        if organizations:
            authority = str(organizations[0].value)
        if common_names:
            issuer = str(common_names[0].value)
        else:
            issuer = certificate.issuer.rfc4514_string()

        return {
            "certificate_authority": authority,
            "certificate_issuer": issuer,
            "certificate_issue_date": to_iso8601(certificate.not_valid_before_utc),
            "certificate_expiry": to_iso8601(certificate.not_valid_after_utc),
        }


CertificateExtractor = Union[TextCertificateExtractor, X509CertificateExtractor]

CERTIFICATE_EXTRACTORS: dict[str, type] = {
    "text": TextCertificateExtractor,
    "x509": X509CertificateExtractor,
}


def new_bimi_results(record: Optional[str] = None) -> BIMIResults:
    """Returns empty BIMI results"""
    return {
        "record": record,
        "valid": False,
        "logo_url": None,
        "certificate_url": None,
        "certificate_authority": None,
        "certificate_issuer": None,
        "certificate_issue_date": None,
        "certificate_expiry": None,
        "errors": [],
    }


def _proxy_url(url: str, certificate_proxy: Optional[str]) -> str:
    if not certificate_proxy:
        return url
    return certificate_proxy.format(url=quote(url, safe=""))


def parse_bimi_record(
    record: str,
    *,
    session: Optional[requests.Session] = None,
    http_timeout: float = DEFAULT_HTTP_TIMEOUT,
    certificate_proxy: Optional[str] = None,
    certificate_extractor: Optional[CertificateExtractor] = None,
) -> BIMIResults:
    """
    Parses a BIMI record and extracts details from its Verified Mark
    Certificate (VMC)

    Args:
        record (str): A BIMI record
        session (requests.Session): A session to use for HTTP requests
        http_timeout (float): HTTP timeout in seconds
        certificate_proxy (str): A URL template used to fetch the VMC, with
                                 a ``{url}`` placeholder for the encoded URL
        certificate_extractor: Extracts fields from the fetched certificate;
                               defaults to :class:`TextCertificateExtractor`

    Returns:
        dict: A ``dict`` with the following keys:
         - ``logo_url`` - The ``l=`` tag value
         - ``certificate_url`` - The ``a=`` tag value
         - ``certificate_authority``, ``certificate_issuer``,
           ``certificate_issue_date``, ``certificate_expiry`` - VMC details
         - ``errors`` - A ``list`` of errors

    .. note::
        The certificate is fetched but never verified; fetch failures are
        reported in ``errors``, not raised.
    """
    logging.debug("Parsing the BIMI record")
    results = new_bimi_results(record)
    if certificate_extractor is None:
        certificate_extractor = TextCertificateExtractor()
    for pair in record.split(";"):
        pair = pair.strip()
        if pair.startswith("l="):
            results["logo_url"] = pair[2:].strip() or None
        elif pair.startswith("a="):
            results["certificate_url"] = pair[2:].strip() or None

    certificate_url = results["certificate_url"]
    if certificate_url is None:
        return results

    if session is None:
        session = requests.Session()
        session.headers = {"User-Agent": USER_AGENT}
    try:
        logging.debug(f"Fetching the VMC at {certificate_url}")
        response = session.get(
            _proxy_url(certificate_url, certificate_proxy), timeout=http_timeout
        )
        if not response.ok:
            results["errors"].append(VMC_FETCH_FAILED)
            return results
        pem_text = response.text
        if PEM_CERTIFICATE_MARKER not in pem_text:
            results["errors"].append(VMC_NOT_PEM)
            return results
        results.update(certificate_extractor.extract(pem_text))
    except Exception as e:
        logging.debug(f"Failed to fetch or parse the VMC at {certificate_url}: {e}")
        results["errors"].append(VMC_FETCH_OR_PARSE_ERROR)

    return results


def query_bimi_record(
    domain: str,
    *,
    selector: str = "default",
    client: Optional[DNSClient] = None,
) -> Union[str, None]:
    """
    Queries DNS for a BIMI record

    Args:
        domain (str): A domain name
        selector (str): The BIMI selector
        client: The DNS client to use

    Returns:
        str: The BIMI record, or ``None`` if the domain does not have one

    Raises:
        :exc:`checkmailauth.bimi.BIMIRecordNotFound`
    """
    domain = normalize_domain(domain)
    target = f"{selector}._bimi.{domain}"
    logging.debug(f"Checking for a BIMI record at {target}")
    try:
        return find_txt_record(target, BIMI_VERSION_TAG, client=client)
    except DNSException as error:
        raise BIMIRecordNotFound(str(error))


def check_bimi(
    domain: str,
    *,
    selector: str = "default",
    client: Optional[DNSClient] = None,
    session: Optional[requests.Session] = None,
    http_timeout: float = DEFAULT_HTTP_TIMEOUT,
    certificate_proxy: Optional[str] = None,
    certificate_extractor: Optional[CertificateExtractor] = None,
) -> BIMIResults:
    """
    Returns a dictionary with a parsed BIMI record or an error

    Args:
        domain (str): A domain name
        selector (str): The BIMI selector
        client: The DNS client to use
        session (requests.Session): A session to use for HTTP requests
        http_timeout (float): HTTP timeout in seconds
        certificate_proxy (str): A URL template used to fetch the VMC
        certificate_extractor: Extracts fields from the fetched certificate

    Returns:
        dict: See :func:`checkmailauth.bimi.parse_bimi_record`, plus
        ``record`` and ``valid``
    """
    if client is None:
        client = get_dns_client()
    selector = selector.lower()
    try:
        record = query_bimi_record(domain, selector=selector, client=client)
    except BIMIError as error:
        bimi_results = new_bimi_results()
        bimi_results["errors"].append(str(error))
        return bimi_results
    if record is None:
        bimi_results = new_bimi_results()
        bimi_results["errors"].append("No BIMI record found.")
        return bimi_results

    bimi_results = parse_bimi_record(
        record,
        session=session,
        http_timeout=http_timeout,
        certificate_proxy=certificate_proxy,
        certificate_extractor=certificate_extractor,
    )
    bimi_results["valid"] = len(bimi_results["errors"]) == 0

    return bimi_results
