# -*- coding: utf-8 -*-
"""DomainKeys Identified Mail (DKIM) public key record validation"""

from __future__ import annotations

import base64
import binascii
import logging
import re
from typing import Optional, TypedDict, Union

from cryptography.exceptions import UnsupportedAlgorithm
from cryptography.hazmat.primitives.asymmetric import ed25519, rsa
from cryptography.hazmat.primitives.serialization import load_der_public_key

from checkmailauth.utils import (
    DNSClient,
    DNSException,
    get_dns_client,
    normalize_domain,
    query_txt_records,
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

WHITESPACE_RE = re.compile(r"\s+")
BASE64_RE = re.compile(r"^[A-Za-z0-9+/]*={0,2}$")

DKIM_KEY_TYPES = {"rsa": rsa.RSAPublicKey, "ed25519": ed25519.Ed25519PublicKey}
DKIM_HASH_ALGORITHMS = ["sha1", "sha256"]
DKIM_SERVICE_TYPES = ["email", "*"]
DKIM_FLAGS = ["y", "s"]
MINIMUM_RSA_KEY_SIZE = 512


class DKIMError(Exception):
    """Raised when a fatal DKIM error occurs"""


class DKIMRecordNotFound(DKIMError):
    """Raised when a DKIM record could not be found"""


class DKIMResults(TypedDict):
    selector: str
    domain: str
    record: Union[str, None]
    valid: bool
    tags: dict[str, str]
    key_type: Union[str, None]
    errors: list[str]
    warnings: list[str]


def new_dkim_results(domain: str, selector: str) -> DKIMResults:
    """Returns empty DKIM results for a selector"""
    return {
        "selector": selector,
        "domain": domain,
        "record": None,
        "valid": False,
        "tags": {},
        "key_type": None,
        "errors": [],
        "warnings": [],
    }


def parse_dkim_record(record: str) -> dict[str, str]:
    """
    Parses the tags of a DKIM key record

    Args:
        record (str): A DKIM key record

    Returns:
        dict: Tag values, keyed by tag
    """
    tags = {}
    record = WHITESPACE_RE.sub("", record)
    for pair in record.split(";"):
        if pair == "" or "=" not in pair:
            continue
        tag, value = pair.split("=", 1)
        tags[tag] = value
    return tags


def _check_public_key(public_key: str, key_type: str) -> Union[str, None]:
    if not BASE64_RE.match(public_key):
        return "Invalid base64 encoding"
    try:
        key_bytes = base64.b64decode(public_key, validate=True)
    except binascii.Error:
        return "Invalid base64 encoding"

    # RFC 8463 publishes the raw 32 byte key; SubjectPublicKeyInfo is accepted too
    if key_type == "ed25519" and len(key_bytes) == 32:
        return None
    try:
        key = load_der_public_key(key_bytes)
    except (ValueError, UnsupportedAlgorithm) as error:
        return f"The key could not be loaded: {error}"
    if not isinstance(key, DKIM_KEY_TYPES[key_type]):
        return f"The key is not a valid {key_type} public key"
    if key_type == "rsa" and key.key_size < MINIMUM_RSA_KEY_SIZE:
        return (
            f"RSA key too small ({key.key_size} bits); at least "
            f"{MINIMUM_RSA_KEY_SIZE} bits are required"
        )
    return None


def validate_dkim_record(record: str) -> list[str]:
    """
    Validates a DKIM key record

    Args:
        record (str): A DKIM key record

    Returns:
        list: A list of errors; empty if the record is valid
    """
    errors = []
    tags = parse_dkim_record(record)

    if "v" in tags and tags["v"] != "DKIM1":
        errors.append(f"Invalid version: {tags['v']}. Expected: DKIM1")
    key_type = tags.get("k", "rsa")
    if key_type not in DKIM_KEY_TYPES:
        supported = ", ".join(DKIM_KEY_TYPES)
        errors.append(
            f"Unsupported key type: {key_type}. Supported types: {supported}"
        )
    if tags.get("p", "") == "":
        errors.append("Missing required p= parameter (public key)")
    elif key_type in DKIM_KEY_TYPES:
        key_error = _check_public_key(tags["p"], key_type)
        if key_error is not None:
            errors.append(f"Invalid public key: {key_error}")
    if "h" in tags:
        invalid = [h for h in tags["h"].split(":") if h not in DKIM_HASH_ALGORITHMS]
        if len(invalid) > 0:
            errors.append(
                f"Invalid hash algorithms: {', '.join(invalid)}. "
                f"Supported: {', '.join(DKIM_HASH_ALGORITHMS)}"
            )
    if "s" in tags and tags["s"] not in DKIM_SERVICE_TYPES:
        errors.append(
            f"Invalid service type: {tags['s']}. "
            f"Supported: {', '.join(DKIM_SERVICE_TYPES)}"
        )
    if "t" in tags:
        invalid = [f for f in tags["t"].split(":") if f not in DKIM_FLAGS]
        if len(invalid) > 0:
            errors.append(
                f"Invalid flags: {', '.join(invalid)}. "
                f"Supported: {', '.join(DKIM_FLAGS)}"
            )

    return errors


def query_dkim_record(
    domain: str, selector: str, *, client: Optional[DNSClient] = None
) -> Union[str, None]:
    """
    Queries DNS for a DKIM key record

    Args:
        domain (str): A domain name
        selector (str): The DKIM selector
        client: The DNS client to use

    Returns:
        str: The DKIM record, or ``None`` if there isn't one

    Raises:
        :exc:`checkmailauth.dkim.DKIMRecordNotFound`
    """
    target = f"{selector}._domainkey.{normalize_domain(domain)}"
    logging.debug(f"Checking for a DKIM record at {target}")
    try:
        records = query_txt_records(target, client=client)
    except DNSException as error:
        raise DKIMRecordNotFound(str(error))
    for record in records:
        if "k=" in record or "p=" in record:
            return record.replace("'", "")
    return None


def check_dkim(
    domain: str, selector: str, *, client: Optional[DNSClient] = None
) -> DKIMResults:
    """
    Returns a dictionary with a validated DKIM key record or an error

    Args:
        domain (str): A domain name
        selector (str): The DKIM selector
        client: The DNS client to use

    Returns:
        dict: A ``dict`` with the following keys:
            - ``selector`` - The DKIM selector
            - ``domain`` - The domain name
            - ``record`` - The DKIM record
            - ``valid`` - ``True`` if no errors were found
            - ``tags`` - The record's tag values
            - ``key_type`` - The public key type
            - ``errors`` - A ``list`` of errors
            - ``warnings`` - A ``list`` of warnings
    """
    domain = normalize_domain(domain)
    selector = selector.strip().lower()
    if client is None:
        client = get_dns_client()
    dkim_results = new_dkim_results(domain, selector)
    try:
        record = query_dkim_record(domain, selector, client=client)
    except DKIMError as error:
        dkim_results["errors"].append(str(error))
        return dkim_results
    if record is None:
        dkim_results["errors"].append("No DKIM record found.")
        return dkim_results

    tags = parse_dkim_record(record)
    dkim_results["record"] = record
    dkim_results["tags"] = tags
    dkim_results["key_type"] = tags.get("k", "rsa")
    dkim_results["errors"] = validate_dkim_record(record)
    if "y" in tags.get("t", "").split(":"):
        dkim_results["warnings"].append(
            "The t=y flag indicates that the domain is testing DKIM."
        )
    dkim_results["valid"] = len(dkim_results["errors"]) == 0

    return dkim_results
