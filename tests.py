#!/usr/bin/env python3
# -*- coding: utf-8 -*-

"""Automated tests"""

import base64
import csv
import json
import unittest
from io import StringIO
from unittest import mock

import dns.resolver
import requests
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import ed25519, rsa
from expiringdict import ExpiringDict

import checkmailauth
import checkmailauth.utils
import checkmailauth.spf
import checkmailauth.dmarc
import checkmailauth.bimi
import checkmailauth.dkim


class FakeDNSClient(object):
    """Answers TXT queries from a dictionary of records"""

    def __init__(self, records=None, failures=None):
        self.records = records or {}
        self.failures = failures or {}
        self.queries = []

    def query(self, name, record_type="TXT"):
        self.queries.append(name)
        if name in self.failures:
            raise self.failures[name]
        if name not in self.records:
            return {"status": checkmailauth.utils.DNS_STATUS_NXDOMAIN, "answers": []}
        answers = []
        for record in self.records[name]:
            answers.append({"name": name, "type": 16, "data": f'"{record}"'})
        return {"status": checkmailauth.utils.DNS_STATUS_NOERROR, "answers": answers}


class FakeResponse(object):
    def __init__(self, text="", status_code=200, json_data=None):
        self.text = text
        self.status_code = status_code
        self.ok = status_code < 400
        self._json_data = json_data

    def json(self):
        if self._json_data is None:
            raise ValueError("No JSON object could be decoded")
        return self._json_data


class FakeSession(object):
    def __init__(self, response=None, error=None):
        self.response = response
        self.error = error
        self.requests = []

    def get(self, url, **kwargs):
        self.requests.append((url, kwargs))
        if self.error is not None:
            raise self.error
        return self.response


GOOGLE_RECORDS = {
    "example.com": ["v=spf1 include:_spf.google.com ~all"],
    "_spf.google.com": ["v=spf1 include:_netblocks.google.com ~all"],
    "_netblocks.google.com": ["v=spf1 ip4:35.190.247.0/24 -all"],
}

VMC_TEXT = """Certificate:
    Data:
        Issuer: C = US, O = DigiCert, Inc., CN = DigiCert Verified Mark RSA4096 SHA256 2021 CA1
        Validity
            Not Before: Jan  1 00:00:00 2024 GMT
            Not After : Dec 31 23:59:59 2025 GMT
        Organization: O = DigiCert, Inc.
-----BEGIN CERTIFICATE-----
MIIB
-----END CERTIFICATE-----
"""

BIMI_RECORD = (
    "v=BIMI1; l=https://example.com/logo.svg; a=https://example.com/vmc.pem"
)


class Test(unittest.TestCase):
    def testNormalizeDomain(self):
        """Zero-width characters, case, and trailing dots are removed"""
        domain = "\u200bExa\u200dmple.COM.\ufeff"
        self.assertEqual(checkmailauth.utils.normalize_domain(domain), "example.com")

    def testGetBaseDomain(self):
        subdomain = "foo.example.com"
        result = checkmailauth.utils.get_base_domain(subdomain)
        assert result == "example.com"

        subdomain = "mail.example.co.uk"
        result = checkmailauth.utils.get_base_domain(subdomain)
        assert result == "example.co.uk"

    def testStripTXTQuotes(self):
        data = '"v=spf1 ip4:192.0.2.1 " "-all"'
        self.assertEqual(
            checkmailauth.utils.strip_txt_quotes(data), "v=spf1 ip4:192.0.2.1 -all"
        )

    def testDoHClientNormalizesAnswers(self):
        json_data = {
            "Status": 0,
            "Answer": [
                {
                    "name": "example.com.",
                    "type": 16,
                    "TTL": 300,
                    "data": '"v=spf1 " "-all"',
                },
                {"name": "example.com.", "type": 5, "data": "alias.example.com."},
            ],
        }
        session = FakeSession(FakeResponse(json_data=json_data))
        client = checkmailauth.utils.DoHClient(
            "https://dns.example/dns-query",
            session=session,
            cache=ExpiringDict(max_len=100, max_age_seconds=60),
        )
        response = client.query("Example.com")
        self.assertEqual(response["status"], 0)
        self.assertEqual(response["answers"][0]["name"], "example.com")
        self.assertEqual(response["answers"][0]["type"], 16)
        url, kwargs = session.requests[0]
        self.assertEqual(url, "https://dns.example/dns-query")
        self.assertEqual(kwargs["params"], {"name": "example.com", "type": "TXT"})
        self.assertEqual(kwargs["headers"]["Accept"], "application/dns-json")

        records = checkmailauth.utils.query_txt_records("example.com", client=client)
        self.assertEqual(records, ["v=spf1 -all"])
        # Served from the cache
        self.assertEqual(len(session.requests), 1)

    def testDoHClientMissingAnswer(self):
        session = FakeSession(FakeResponse(json_data={"Status": 3}))
        client = checkmailauth.utils.DoHClient(
            session=session, cache=ExpiringDict(max_len=100, max_age_seconds=60)
        )
        response = client.query("nonexistent.example")
        self.assertEqual(response, {"status": 3, "answers": []})
        records = checkmailauth.utils.query_txt_records(
            "nonexistent.example", client=client
        )
        self.assertEqual(records, [])

    def testDoHClientHTTPError(self):
        session = FakeSession(FakeResponse(status_code=500))
        client = checkmailauth.utils.DoHClient(
            session=session, cache=ExpiringDict(max_len=100, max_age_seconds=60)
        )
        with self.assertRaises(checkmailauth.utils.DNSException) as context:
            client.query("example.com")
        self.assertEqual(str(context.exception), "DNS query failed: 500")

        session = FakeSession(error=requests.exceptions.ConnectTimeout("timed out"))
        client = checkmailauth.utils.DoHClient(
            session=session, cache=ExpiringDict(max_len=100, max_age_seconds=60)
        )
        self.assertRaises(
            checkmailauth.utils.DNSException, client.query, "example.com"
        )

    def testDoHClientUnexpectedJSON(self):
        """A JSON body that is not an object is a DNS failure"""
        session = FakeSession(FakeResponse(json_data=["unexpected"]))
        client = checkmailauth.utils.DoHClient(
            session=session, cache=ExpiringDict(max_len=100, max_age_seconds=60)
        )
        self.assertRaises(
            checkmailauth.utils.DNSException, client.query, "example.com"
        )

    def testIncludeWithUnexpectedDoHResponse(self):
        """A malformed answer for an included domain does not stop the walk"""
        root = {
            "Status": 0,
            "Answer": [
                {
                    "name": "example.com.",
                    "type": 16,
                    "data": '"v=spf1 include:broken.example mx -all"',
                }
            ],
        }

        def get(url, params=None, **kwargs):
            if params["name"] == "example.com":
                return FakeResponse(json_data=root)
            return FakeResponse(json_data=["unexpected"])

        session = mock.Mock()
        session.get.side_effect = get
        client = checkmailauth.utils.DoHClient(
            session=session, cache=ExpiringDict(max_len=100, max_age_seconds=60)
        )
        results = checkmailauth.spf.check_spf("example.com", client=client)
        self.assertEqual(results["lookup_count"], 2)
        self.assertEqual(
            results["lookup_details"][0]["record"], checkmailauth.spf.NO_TXT_RECORD
        )
        self.assertEqual(results["lookup_details"][1]["type"], "mx")
        self.assertTrue(results["valid"])

    def testResolverClient(self):
        rdata = mock.Mock()
        rdata.strings = (b"v=spf1 ", b"-all")
        resolver = mock.Mock()
        resolver.resolve.return_value = [rdata]
        client = checkmailauth.utils.ResolverClient(
            resolver=resolver, cache=ExpiringDict(max_len=100, max_age_seconds=60)
        )
        records = checkmailauth.utils.query_txt_records("example.com", client=client)
        self.assertEqual(records, ["v=spf1 -all"])

        resolver.resolve.side_effect = dns.resolver.NXDOMAIN()
        response = client.query("missing.example.com")
        self.assertEqual(response["status"], checkmailauth.utils.DNS_STATUS_NXDOMAIN)
        self.assertEqual(response["answers"], [])

    def testClassifySPFTerms(self):
        classify = checkmailauth.spf.classify_spf_term
        self.assertEqual(
            classify("include:_spf.google.com", "example.com"),
            ("include", "_spf.google.com"),
        )
        self.assertEqual(
            classify("redirect=_spf.example.net", "example.com"),
            ("redirect", "_spf.example.net"),
        )
        self.assertEqual(classify("mx", "example.com"), ("mx", "example.com"))
        self.assertEqual(
            classify("-a:mail.example.com/24", "example.com"),
            ("a", "mail.example.com"),
        )
        self.assertEqual(classify("a/24//64", "example.com"), ("a", "example.com"))
        self.assertEqual(
            classify("exists:%{i}.spf.example.com", "example.com"),
            ("exists", "%{i}.spf.example.com"),
        )
        self.assertIsNone(classify("ip4:192.0.2.1", "example.com"))
        self.assertIsNone(classify("-all", "example.com"))
        self.assertIsNone(classify("v=spf1", "example.com"))

    def testParseSPFRecord(self):
        record = "v=spf1 include:_spf.google.com mx redirect=_spf.example.net"
        parsed = checkmailauth.spf.parse_spf_record(record)
        self.assertEqual(
            parsed["mechanisms"],
            ["v=spf1", "include:_spf.google.com", "mx", "redirect=_spf.example.net"],
        )
        self.assertEqual(parsed["includes"], ["_spf.google.com"])
        self.assertEqual(parsed["redirects"], ["_spf.example.net"])

    def testSPFLookupTree(self):
        """Each include counts once, and nested records form a tree"""
        client = FakeDNSClient(GOOGLE_RECORDS)
        results = checkmailauth.spf.check_spf("example.com", client=client)

        self.assertEqual(results["record"], "v=spf1 include:_spf.google.com ~all")
        self.assertEqual(results["lookup_count"], 2)
        self.assertFalse(results["exceeds_lookup_limit"])
        self.assertTrue(results["valid"])
        self.assertEqual(results["errors"], [])
        self.assertEqual(
            results["nested_lookups"],
            {
                "_spf.google.com": "v=spf1 include:_netblocks.google.com ~all",
                "_netblocks.google.com": "v=spf1 ip4:35.190.247.0/24 -all",
            },
        )

        details = results["lookup_details"]
        self.assertEqual(len(details), 1)
        self.assertEqual(details[0]["number"], 1)
        self.assertEqual(details[0]["type"], "include")
        self.assertEqual(details[0]["domain"], "_spf.google.com")
        self.assertEqual(details[0]["indent"], 0)
        nested = details[0]["nested"]
        self.assertEqual(len(nested), 1)
        self.assertEqual(nested[0]["number"], 2)
        self.assertEqual(nested[0]["domain"], "_netblocks.google.com")
        self.assertEqual(nested[0]["indent"], 1)
        self.assertEqual(nested[0]["nested"], [])

    def testSPFIncludeLoop(self):
        """SPF records that include each other terminate"""
        client = FakeDNSClient(
            {
                "example.com": ["v=spf1 include:example.net -all"],
                "example.net": ["v=spf1 include:example.com -all"],
            }
        )
        results = checkmailauth.spf.check_spf("example.com", client=client)
        self.assertEqual(results["lookup_count"], 2)
        cycle_detail = results["lookup_details"][0]["nested"][0]
        self.assertEqual(cycle_detail["domain"], "example.com")
        self.assertEqual(cycle_detail["nested"], [])

    def testSPFSharedIncludeIsCountedPerBranch(self):
        client = FakeDNSClient(
            {
                "example.com": ["v=spf1 include:b.example include:c.example -all"],
                "b.example": ["v=spf1 include:d.example -all"],
                "c.example": ["v=spf1 include:d.example -all"],
                "d.example": ["v=spf1 a -all"],
            }
        )
        results = checkmailauth.spf.check_spf("example.com", client=client)
        self.assertEqual(results["lookup_count"], 6)
        numbers = [detail["number"] for detail in results["lookup_details"]]
        self.assertEqual(numbers, [1, 4])

    def testSPFLookupLimit(self):
        """Ten lookups are allowed, eleven are too many"""
        terms = " ".join(f"a:host{i}.example.com" for i in range(10))
        client = FakeDNSClient({"example.com": [f"v=spf1 {terms} -all"]})
        results = checkmailauth.spf.check_spf("example.com", client=client)
        self.assertEqual(results["lookup_count"], 10)
        self.assertFalse(results["exceeds_lookup_limit"])
        self.assertTrue(results["valid"])

        terms = " ".join(f"a:host{i}.example.com" for i in range(11))
        client = FakeDNSClient({"example.com": [f"v=spf1 {terms} -all"]})
        results = checkmailauth.spf.check_spf("example.com", client=client)
        self.assertEqual(results["lookup_count"], 11)
        self.assertTrue(results["exceeds_lookup_limit"])
        self.assertFalse(results["valid"])
        self.assertEqual(
            results["errors"],
            ["Too many DNS lookups (11/10). This may cause SPF to fail."],
        )

    def testIncludeMissingSPF(self):
        """A missing or unreachable included record is noted in the tree"""
        client = FakeDNSClient(
            {"example.com": ["v=spf1 include:missing.example include:down.example -all"]},
            failures={
                "down.example": checkmailauth.utils.DNSException(
                    "DNS query failed: 503"
                )
            },
        )
        results = checkmailauth.spf.check_spf("example.com", client=client)
        self.assertEqual(results["lookup_count"], 2)
        for detail in results["lookup_details"]:
            self.assertEqual(detail["record"], checkmailauth.spf.NO_TXT_RECORD)
            self.assertEqual(detail["nested"], [])
        self.assertTrue(results["valid"])

    def testSPFRecordMissing(self):
        client = FakeDNSClient({"example.com": ["google-site-verification=abc"]})
        results = checkmailauth.spf.check_spf("example.com", client=client)
        self.assertIsNone(results["record"])
        self.assertFalse(results["valid"])
        self.assertEqual(results["errors"], ["No SPF record found."])

    def testDMARCDefaults(self):
        client = FakeDNSClient()
        results = checkmailauth.dmarc.parse_dmarc_record(
            "v=DMARC1; p=none", "example.com", client=client
        )
        self.assertEqual(results["policy"], "none")
        self.assertEqual(results["percentage"], 100)
        self.assertEqual(results["adkim"], "r")
        self.assertEqual(results["aspf"], "r")
        self.assertEqual(results["fo"], "0")
        self.assertEqual(results["rf"], "afrf")
        self.assertEqual(results["ri"], "86400")
        self.assertEqual(results["errors"], [])

    def testDMARCPercentage(self):
        client = FakeDNSClient()
        results = checkmailauth.dmarc.parse_dmarc_record(
            "v=DMARC1; p=quarantine; pct=50", "example.com", client=client
        )
        self.assertEqual(results["percentage"], 50)

        results = checkmailauth.dmarc.parse_dmarc_record(
            "v=DMARC1; p=quarantine; pct=150", "example.com", client=client
        )
        self.assertEqual(results["percentage"], 100)
        self.assertEqual(len(results["warnings"]), 1)

        results = checkmailauth.dmarc.parse_dmarc_record(
            "v=DMARC1; p=quarantine; pct=abc", "example.com", client=client
        )
        self.assertEqual(results["percentage"], 100)
        self.assertEqual(results["warnings"], [])
        self.assertEqual(results["errors"], [])

        results = checkmailauth.dmarc.parse_dmarc_record(
            "v=DMARC1; p=quarantine; pct=50abc", "example.com", client=client
        )
        self.assertEqual(results["percentage"], 50)

    def testDMARCSameDomainReports(self):
        """Reports sent to the policy domain need no authorization"""
        client = FakeDNSClient()
        results = checkmailauth.dmarc.parse_dmarc_record(
            "v=DMARC1; p=reject; rua=mailto:a@example.com,mailto:b@example.com; pct=50",
            "example.com",
            client=client,
        )
        self.assertEqual(results["policy"], "reject")
        self.assertEqual(results["percentage"], 50)
        self.assertEqual(
            set(results["reporting_emails"]), {"a@example.com", "b@example.com"}
        )
        self.assertEqual(client.queries, [])
        self.assertEqual(results["warnings"], [])

    def testInvalidDMARCTag(self):
        client = FakeDNSClient({"_dmarc.example.com": ["v=DMARC1; p=reject; x=foo"]})
        results = checkmailauth.dmarc.check_dmarc("example.com", client=client)
        self.assertEqual(results["policy"], "reject")
        self.assertEqual(results["errors"], ["'x' is not a valid DMARC tag."])
        self.assertFalse(results["valid"])

    def testDMARCReportAuthorization(self):
        """External report destinations are checked for authorization"""
        record = (
            "v=DMARC1; p=reject; rua=mailto:dmarc@example.com,"
            "mailto:reports@thirdparty.example!10m; ruf=mailto:reports@thirdparty.example"
        )
        client = FakeDNSClient()
        results = checkmailauth.dmarc.parse_dmarc_record(
            record, "example.com", client=client
        )
        self.assertEqual(
            results["reporting_emails"],
            ["dmarc@example.com", "reports@thirdparty.example"],
        )
        self.assertEqual(
            client.queries, ["example.com._report._dmarc.thirdparty.example"]
        )
        self.assertEqual(
            results["warnings"],
            [
                "External domain 'thirdparty.example' may not be authorized to "
                "receive DMARC reports for 'example.com'. Check for authorization "
                "record at example.com._report._dmarc.thirdparty.example"
            ],
        )

        client = FakeDNSClient(
            {"example.com._report._dmarc.thirdparty.example": ["v=DMARC1"]}
        )
        results = checkmailauth.dmarc.parse_dmarc_record(
            record, "example.com", client=client
        )
        self.assertEqual(results["warnings"], [])

    def testDMARCSubdomainPolicyOnSubdomain(self):
        client = FakeDNSClient()
        results = checkmailauth.dmarc.parse_dmarc_record(
            "v=DMARC1; p=reject; sp=none", "mail.example.com", client=client
        )
        self.assertEqual(results["subdomain_policy"], "none")
        self.assertEqual(len(results["warnings"]), 1)

    def testDMARCRecordMissing(self):
        results = checkmailauth.dmarc.check_dmarc("example.com", client=FakeDNSClient())
        self.assertEqual(results["errors"], ["No DMARC record found."])
        self.assertFalse(results["valid"])

    def testBIMICertificateNotPEM(self):
        client = FakeDNSClient({"default._bimi.example.com": [BIMI_RECORD]})
        session = FakeSession(FakeResponse("<html>Not found</html>"))
        results = checkmailauth.bimi.check_bimi(
            "example.com", client=client, session=session
        )
        self.assertEqual(results["logo_url"], "https://example.com/logo.svg")
        self.assertEqual(results["certificate_url"], "https://example.com/vmc.pem")
        self.assertEqual(results["errors"], [checkmailauth.bimi.VMC_NOT_PEM])
        self.assertFalse(results["valid"])
        self.assertIsNone(results["certificate_authority"])
        self.assertIsNone(results["certificate_expiry"])

    def testBIMICertificateFetchFailures(self):
        session = FakeSession(FakeResponse(status_code=404))
        results = checkmailauth.bimi.parse_bimi_record(BIMI_RECORD, session=session)
        self.assertEqual(results["errors"], [checkmailauth.bimi.VMC_FETCH_FAILED])

        session = FakeSession(error=requests.exceptions.ConnectionError("refused"))
        results = checkmailauth.bimi.parse_bimi_record(BIMI_RECORD, session=session)
        self.assertEqual(
            results["errors"], [checkmailauth.bimi.VMC_FETCH_OR_PARSE_ERROR]
        )

    def testBIMICertificateText(self):
        session = FakeSession(FakeResponse(VMC_TEXT))
        results = checkmailauth.bimi.parse_bimi_record(
            BIMI_RECORD,
            session=session,
            certificate_proxy="https://proxy.example/fetch?url={url}",
        )
        self.assertEqual(results["errors"], [])
        self.assertEqual(results["certificate_authority"], "DigiCert, Inc.")
        self.assertTrue(results["certificate_issuer"].startswith("C = US"))
        self.assertEqual(results["certificate_issue_date"], "2024-01-01T00:00:00Z")
        self.assertEqual(results["certificate_expiry"], "2025-12-31T23:59:59Z")
        self.assertEqual(
            session.requests[0][0],
            "https://proxy.example/fetch?url=https%3A%2F%2Fexample.com%2Fvmc.pem",
        )

    def testBIMIWithoutCertificate(self):
        client = FakeDNSClient(
            {"brand._bimi.example.com": ["v=BIMI1; l=https://example.com/logo.svg; a="]}
        )
        session = FakeSession()
        results = checkmailauth.bimi.check_bimi(
            "example.com", selector="brand", client=client, session=session
        )
        self.assertIsNone(results["certificate_url"])
        self.assertTrue(results["valid"])
        self.assertEqual(session.requests, [])
        self.assertEqual(client.queries, ["brand._bimi.example.com"])

    def testBIMIRecordMissing(self):
        results = checkmailauth.bimi.check_bimi("example.com", client=FakeDNSClient())
        self.assertEqual(results["errors"], ["No BIMI record found."])

    def testDKIMRecords(self):
        private_key = rsa.generate_private_key(public_exponent=65537, key_size=2048)
        public_key = private_key.public_key().public_bytes(
            serialization.Encoding.DER,
            serialization.PublicFormat.SubjectPublicKeyInfo,
        )
        record = f"v=DKIM1; k=rsa; t=y; p={base64.b64encode(public_key).decode()}"
        client = FakeDNSClient({"selector1._domainkey.example.com": [record]})
        results = checkmailauth.dkim.check_dkim(
            "example.com", "selector1", client=client
        )
        self.assertEqual(results["errors"], [])
        self.assertTrue(results["valid"])
        self.assertEqual(results["key_type"], "rsa")
        self.assertEqual(len(results["warnings"]), 1)

        raw_key = (
            ed25519.Ed25519PrivateKey.generate()
            .public_key()
            .public_bytes(serialization.Encoding.Raw, serialization.PublicFormat.Raw)
        )
        record = f"v=DKIM1; k=ed25519; p={base64.b64encode(raw_key).decode()}"
        self.assertEqual(checkmailauth.dkim.validate_dkim_record(record), [])

    def testInvalidDKIMRecords(self):
        validate = checkmailauth.dkim.validate_dkim_record
        self.assertEqual(
            validate("v=DKIM1; k=rsa"),
            ["Missing required p= parameter (public key)"],
        )
        self.assertEqual(
            validate("v=DKIM1; p=!!!"), ["Invalid public key: Invalid base64 encoding"]
        )
        errors = validate("v=DKIM2; k=dsa; h=sha1:md5; p=")
        self.assertEqual(len(errors), 4)

        results = checkmailauth.dkim.check_dkim(
            "example.com", "missing", client=FakeDNSClient()
        )
        self.assertEqual(results["errors"], ["No DKIM record found."])

    def testResolveDomainScope(self):
        client = FakeDNSClient(GOOGLE_RECORDS)
        result = checkmailauth.resolve_domain("Example.com.", "spf", client=client)
        self.assertEqual(result["domain"], "example.com")
        self.assertEqual(result["base_domain"], "example.com")
        self.assertEqual(result["status"], "completed")
        self.assertEqual(result["spf"]["lookup_count"], 2)
        self.assertIsNone(result["dmarc"]["record"])
        self.assertEqual(result["dmarc"]["errors"], [])
        self.assertNotIn("_dmarc.example.com", client.queries)
        self.assertNotIn("dkim", result)

        self.assertRaises(
            ValueError, checkmailauth.resolve_domain, "example.com", "mx", client=client
        )

    def testResolveDomainFacetFailure(self):
        """An unexpected failure in one record type does not affect others"""
        client = FakeDNSClient(
            GOOGLE_RECORDS,
            failures={"_dmarc.example.com": RuntimeError("resolver crashed")},
        )
        result = checkmailauth.resolve_domain(
            "example.com",
            client=client,
            session=FakeSession(),
            dkim_selectors=["selector1"],
        )
        self.assertEqual(result["status"], "completed")
        self.assertTrue(result["spf"]["valid"])
        self.assertEqual(result["dmarc"]["errors"], ["resolver crashed"])
        self.assertFalse(result["dmarc"]["valid"])
        self.assertEqual(result["bimi"]["errors"], ["No BIMI record found."])
        self.assertEqual(result["dkim"][0]["selector"], "selector1")

    def testResolveDomainDKIMFailure(self):
        """An unexpected DKIM failure is kept with that selector's results"""
        client = FakeDNSClient(
            GOOGLE_RECORDS,
            failures={"s1._domainkey.example.com": RuntimeError("resolver crashed")},
        )
        result = checkmailauth.resolve_domain(
            "example.com",
            "spf",
            client=client,
            dkim_selectors=["s1", "s2"],
        )
        self.assertEqual(result["status"], "completed")
        self.assertEqual(result["spf"]["lookup_count"], 2)
        self.assertEqual(result["dkim"][0]["selector"], "s1")
        self.assertEqual(result["dkim"][0]["errors"], ["resolver crashed"])
        self.assertFalse(result["dkim"][0]["valid"])
        self.assertEqual(result["dkim"][1]["errors"], ["No DKIM record found."])

        results = checkmailauth.check_domains(
            ["example.com"], "spf", client=client, dkim_selectors=["s1"]
        )
        self.assertEqual(results[0]["status"], "completed")
        self.assertEqual(
            results[0]["spf"]["record"], "v=spf1 include:_spf.google.com ~all"
        )

    def testResolveDomainClientFailure(self):
        with mock.patch(
            "checkmailauth.get_dns_client", side_effect=ValueError("bad nameserver")
        ):
            result = checkmailauth.resolve_domain(
                "example.com", nameservers=["not-a-nameserver"]
            )
        self.assertEqual(result["status"], "error")
        self.assertEqual(result["spf"]["errors"], [])

    def testCheckDomainsOrder(self):
        client = FakeDNSClient(GOOGLE_RECORDS)
        results = checkmailauth.check_domains(
            ["b.example", "a.example", "B.example.", "localhost", "c.example"],
            "spf",
            batch_size=2,
            client=client,
        )
        self.assertEqual(
            [result["domain"] for result in results],
            ["b.example", "a.example", "c.example"],
        )

    def testCheckDomainsError(self):
        def resolve_domain(domain, scope, **kwargs):
            if domain == "broken.example":
                raise RuntimeError("unexpected")
            result = checkmailauth.new_domain_result(domain, scope)
            result["status"] = "completed"
            return result

        with mock.patch("checkmailauth.resolve_domain", side_effect=resolve_domain):
            results = checkmailauth.check_domains(
                ["ok.example", "broken.example"], client=FakeDNSClient()
            )
        self.assertEqual(
            [result["status"] for result in results], ["completed", "error"]
        )

    def testOutput(self):
        client = FakeDNSClient(GOOGLE_RECORDS)
        results = checkmailauth.check_domains(
            ["example.com", "example.net"], "dmarc", client=client
        )
        parsed = json.loads(checkmailauth.results_to_json(results))
        self.assertEqual(parsed[0]["domain"], "example.com")

        rows = list(csv.DictReader(StringIO(checkmailauth.results_to_csv(results))))
        self.assertEqual(len(rows), 2)
        self.assertEqual(rows[1]["domain"], "example.net")
        self.assertEqual(rows[0]["dmarc_errors"], "No DMARC record found.")
        self.assertEqual(rows[0]["spf_lookup_count"], "0")


if __name__ == "__main__":
    unittest.main(verbosity=2)
