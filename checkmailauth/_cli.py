#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""Resolves and validates SPF, DMARC, and BIMI DNS records"""

from __future__ import annotations

import os
from argparse import ArgumentParser

import logging

from checkmailauth import (
    SCOPES,
    __version__,
    check_domains,
    results_to_json,
    results_to_csv,
    output_to_file,
)
from checkmailauth._constants import BULK_BATCH_SIZE, DEFAULT_HTTP_TIMEOUT
from checkmailauth.bimi import CERTIFICATE_EXTRACTORS

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


def _main():
    """Called when the module in executed"""
    arg_parser = ArgumentParser(description=__doc__)
    arg_parser.add_argument(
        "domain",
        nargs="+",
        help="one or more domains, or a single path to a "
        "file containing a list of domains",
    )
    arg_parser.add_argument(
        "-s",
        "--scope",
        choices=SCOPES,
        default="all",
        help="the records to check (default all)",
    )
    arg_parser.add_argument(
        "-f",
        "--format",
        default="json",
        help="specify JSON or CSV screen output format",
    )
    arg_parser.add_argument(
        "-o",
        "--output",
        nargs="+",
        help="one or more file paths to output to "
        "(must end in .json or .csv) "
        "(silences screen output)",
    )
    arg_parser.add_argument(
        "-n",
        "--nameserver",
        nargs="+",
        help="nameservers to query directly instead of using DNS-over-HTTPS",
    )
    arg_parser.add_argument(
        "--doh-url", help="the DNS-over-HTTPS JSON endpoint to query"
    )
    arg_parser.add_argument(
        "-t",
        "--timeout",
        help="number of seconds to wait for an answer from DNS or HTTP "
        f"(default {DEFAULT_HTTP_TIMEOUT})",
        type=float,
        default=DEFAULT_HTTP_TIMEOUT,
    )
    arg_parser.add_argument(
        "--timeout-retries",
        help="number of times to reattempt a query after a timeout (default 2)",
        type=int,
        default=2,
    )
    arg_parser.add_argument(
        "-b", "--bimi-selector", default="default", help="the BIMI selector to use"
    )
    arg_parser.add_argument(
        "-k", "--dkim-selector", nargs="+", help="DKIM selectors to check"
    )
    arg_parser.add_argument(
        "--certificate-proxy",
        help="a URL template used to fetch BIMI certificates, with a {url} "
        "placeholder for the certificate URL",
    )
    arg_parser.add_argument(
        "--certificate-parser",
        choices=sorted(CERTIFICATE_EXTRACTORS),
        default="text",
        help="how to read BIMI certificates (default text)",
    )
    arg_parser.add_argument(
        "--batch-size",
        type=int,
        default=BULK_BATCH_SIZE,
        help=f"number of domains to check at once (default {BULK_BATCH_SIZE})",
    )
    arg_parser.add_argument(
        "--debug", action="store_true", help="enable debugging output"
    )
    arg_parser.add_argument("-v", "--version", action="version", version=__version__)

    args = arg_parser.parse_args()

    logging_format = "%(asctime)s - %(levelname)s: %(message)s"
    logging.basicConfig(level=logging.WARNING, format=logging_format)

    if args.debug:
        logging.getLogger().setLevel(logging.DEBUG)
        logging.debug("Debug output enabled")
    domains = args.domain
    if len(domains) == 1 and os.path.exists(domains[0]):
        with open(domains[0]) as domains_file:
            domains = domains_file.readlines()

    results = check_domains(
        domains,
        args.scope,
        batch_size=args.batch_size,
        nameservers=args.nameserver,
        doh_url=args.doh_url,
        timeout=args.timeout,
        timeout_retries=args.timeout_retries,
        bimi_selector=args.bimi_selector,
        dkim_selectors=args.dkim_selector,
        certificate_proxy=args.certificate_proxy,
        certificate_extractor=CERTIFICATE_EXTRACTORS[args.certificate_parser](),
    )
    if len(results) == 1:
        results = results[0]

    if args.output is None:
        if args.format.lower() == "json":
            results = results_to_json(results)
        elif args.format.lower() == "csv":
            results = results_to_csv(results)
        print(results)
    else:
        for path in args.output:
            if path.lower().endswith(".json"):
                output_to_file(path, results_to_json(results))
            elif path.lower().endswith(".csv"):
                output_to_file(path, results_to_csv(results))
            else:
                logging.error(f"Output path {path} must end in .json or .csv")


if __name__ == "__main__":
    _main()
