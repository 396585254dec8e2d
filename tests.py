#!/usr/bin/env python3
# -*- coding: utf-8 -*-

"""Automated tests"""

import json
import unittest
from unittest import mock

import dns.exception
import dns.resolver

import checkspf
import checkspf.evaluator
import checkspf.macros
import checkspf.spf
import checkspf.utils


class FakeDNS(object):
    """An in-memory replacement for checkspf.utils.query_dns

    ``zone`` maps lowercase names to ``{record_type: answers}``. Names that
    are missing from the zone are NXDOMAIN, missing record types are
    NoAnswer, and an exception instance in place of the answers is raised.
    """

    def __init__(self, zone):
        self.zone = zone
        self.queries = []

    def __call__(self, domain, record_type, **kwargs):
        name = domain.lower().rstrip(".")
        record_type = record_type.upper()
        self.queries.append((name, record_type))
        if name not in self.zone:
            raise dns.resolver.NXDOMAIN()
        answers = self.zone[name].get(record_type)
        if isinstance(answers, Exception):
            raise answers
        if answers is None:
            raise dns.resolver.NoAnswer()
        return list(answers)


def spf_zone(record, zone=None):
    """Builds a zone with an SPF record for example.com"""
    zone = dict(zone or {})
    zone.setdefault("example.com", {})
    zone["example.com"]["TXT"] = [record]
    return zone


class Test(unittest.TestCase):
    def validate(self, zone, ip, sender="user@example.com", helo="mail.example.com",
                 **kwargs):
        with mock.patch("checkspf.utils.query_dns", FakeDNS(zone)):
            return checkspf.validate(ip, sender, helo, **kwargs)

    def testIP4Pass(self):
        """A matching ip4 mechanism results in pass"""
        zone = spf_zone("v=spf1 ip4:10.20.21.0/24 ?all")
        result = self.validate(zone, "10.20.21.77")
        self.assertEqual(
            result, checkspf.SPFResult("pass", "Allowed sender IP: 10.20.21.77")
        )

    def testFallThroughToAll(self):
        """The all mechanism matches when nothing else does"""
        zone = spf_zone("v=spf1 ip4:10.20.21.0/24 -all")
        result = self.validate(zone, "192.0.2.1")
        self.assertEqual(result.result, "fail")
        self.assertEqual(result.explanation, "Disallowed sender IP: 192.0.2.1")

    def testQualifiers(self):
        """Qualifiers map to results"""
        expected = {
            "+all": "pass",
            "all": "pass",
            "-all": "fail",
            "~all": "softfail",
            "?all": "neutral",
        }
        for term, value in expected.items():
            result = self.validate(spf_zone(f"v=spf1 {term}"), "192.0.2.1")
            self.assertEqual(result.result, value, term)
        result = self.validate(spf_zone("v=spf1 ~all"), "192.0.2.1")
        self.assertEqual(result.explanation, "Sender IP 192.0.2.1 matched ~all")

    def testNoPolicies(self):
        """A record with only a version tag is neutral"""
        result = self.validate(spf_zone("v=spf1"), "192.0.2.1")
        self.assertEqual(result, checkspf.SPFResult("neutral", "No policies specified"))

    def testDefaultResult(self):
        """A record that does not match anything is neutral"""
        result = self.validate(spf_zone("v=spf1 ip4:10.0.0.0/8"), "192.0.2.1")
        self.assertEqual(result, checkspf.SPFResult("neutral", "Default result"))

    def testParseDirective(self):
        """Directives are split into qualifier, mechanism, and value"""
        directive = checkspf.spf.parse_spf_directive("~ip4:192.168.0.0/24")
        self.assertEqual(directive.qualifier, "~")
        self.assertEqual(directive.mechanism, "ip4")
        self.assertEqual(directive.separator, ":")
        self.assertEqual(directive.value, "192.168.0.0/24")

        directive = checkspf.spf.parse_spf_directive("mx")
        self.assertEqual(directive.qualifier, "+")
        self.assertEqual(directive.value, "")

        self.assertIsNone(checkspf.spf.parse_spf_directive("all:example.com"))
        self.assertIsNone(checkspf.spf.parse_spf_directive("include:"))

    def testParseRedirect(self):
        """redirect is parsed as a modifier"""
        terms = checkspf.spf.parse_spf_record(
            "v=spf1 redirect=_spf.example.com", "example.com"
        )
        self.assertEqual(len(terms), 1)
        self.assertIsInstance(terms[0], checkspf.SPFModifier)
        self.assertEqual(terms[0].name, "redirect")
        self.assertEqual(terms[0].macro_string, "_spf.example.com")

    def testUppercaseSPFMechanism(self):
        """Treat uppercase SPF mechanisms as valid"""
        terms = checkspf.spf.parse_spf_record("v=spf1 IP4:147.75.8.208 -ALL",
                                              "example.no")
        self.assertEqual([t.mechanism for t in terms], ["ip4", "all"])

    def testSplitSPFRecord(self):
        """Split SPF records are parsed properly"""
        rec = '"v=spf1 ip4:147.75.8.208 " "include:_spf.example.net -all"'
        terms = checkspf.spf.parse_spf_record(rec, "example.com")
        self.assertEqual(
            [t.raw for t in terms],
            ["ip4:147.75.8.208", "include:_spf.example.net", "-all"],
        )

    def testMultipleSpaces(self):
        """Terms may be separated by more than one space"""
        terms = checkspf.spf.parse_spf_record("v=spf1  a   -all", "example.com")
        self.assertEqual(len(terms), 2)

    def testSPFSyntaxErrors(self):
        """SPF record syntax errors raise SPFSyntaxError"""
        spf_record = (
            '"v=spf1 mx a:mail.cohaesio.net include: trustpilotservice.com ~all"'
        )
        domain = "2021.ai"
        self.assertRaises(
            checkspf.spf.SPFSyntaxError,
            checkspf.spf.parse_spf_record,
            spf_record,
            domain,
        )

    def testSyntaxErrorMarker(self):
        """Syntax errors point at the position of the problem"""
        with self.assertRaises(checkspf.spf.SPFSyntaxError) as context:
            checkspf.spf.parse_spf_record("v=spf1 ip4:10.0.0.1 foo -all",
                                          "example.com")
        self.assertIn("➞", str(context.exception))
        self.assertIn("foo", str(context.exception))

    def testBadTermIsPermError(self):
        """One invalid term makes the whole record a permerror"""
        zone = spf_zone("v=spf1 ip4:192.0.2.1 foo -all")
        result = self.validate(zone, "192.0.2.1")
        self.assertEqual(result.result, "permerror")

    def testSPFInvalidIPv4(self):
        """Invalid ipv4 SPF mechanism values raise SPFSyntaxError"""
        records = [
            "v=spf1 ip4:78.46.96.236 +a +mx +ip4:relay.mailchannels.net ~all",
            "v=spf1 ip4:1200:0000:AB00:1234:0000:2552:7777:1313 ~all",
            "v=spf1 ip4:78.46.96.236/99 ~all",
            "v=spf1 ip4:%{i} ~all",
        ]
        for record in records:
            self.assertRaises(
                checkspf.spf.SPFSyntaxError,
                checkspf.spf.parse_spf_record,
                record,
                "surftown.dk",
            )

    def testSPFInvalidIPv6(self):
        """Invalid ipv6 SPF mechanism values raise SPFSyntaxError"""
        records = [
            "v=spf1 ip6:1200:0000:AB00:1234:O000:2552:7777:1313 ~all",
            "v=spf1 ip6:78.46.96.236 ~all",
            "v=spf1 ip6:1200:0000:AB00:1234:0000:2552:7777:1313/130 ~all",
        ]
        for record in records:
            self.assertRaises(
                checkspf.spf.SPFSyntaxError,
                checkspf.spf.parse_spf_record,
                record,
                "surftown.dk",
            )

    def testInvalidDualCIDR(self):
        """CIDR lengths out of range raise SPFSyntaxError"""
        for record in ["v=spf1 a/33 -all", "v=spf1 mx//129 -all"]:
            self.assertRaises(
                checkspf.spf.SPFSyntaxError,
                checkspf.spf.parse_spf_record,
                record,
                "example.com",
            )

    def testInvalidDomainSpec(self):
        """Domain-specs without macros must be valid domains"""
        records = [
            "v=spf1 include:192.0.2.1 -all",
            "v=spf1 a:example..com -all",
            "v=spf1 exists:foo%bar.example.com -all",
            "v=spf1 exists:%{x}.example.com -all",
        ]
        for record in records:
            self.assertRaises(
                checkspf.spf.SPFSyntaxError,
                checkspf.spf.parse_spf_record,
                record,
                "example.com",
            )

    def testExplanationOnlyMacros(self):
        """c, r, and t macros are only valid in explanations"""
        for letter in "crt":
            self.assertRaises(
                checkspf.spf.SPFSyntaxError,
                checkspf.spf.parse_spf_record,
                f"v=spf1 exists:%{{{letter}}}.example.com -all",
                "example.com",
            )

    def testIsValidDomain(self):
        """Domain syntax checking"""
        invalid = [
            "example..com",
            ".example.com",
            "com",
            "192.168.0.1",
            f"{'a' * 64}.com",
            "",
        ]
        for domain in invalid:
            self.assertFalse(checkspf.utils.is_valid_domain(domain), domain)
        for domain in ["example.com", "example.com.", "_spf.example.com"]:
            self.assertTrue(checkspf.utils.is_valid_domain(domain), domain)

    def testRecordSelection(self):
        """Only records starting with exactly v=spf1 are SPF records"""
        zone = {
            "example.com": {
                "TXT": [
                    "v=spf10 -all",
                    "google-site-verification=abc123",
                    "v=spf1 +all",
                ]
            }
        }
        result = self.validate(zone, "192.0.2.1")
        self.assertEqual(result.result, "pass")

    def testMultipleSPFRecords(self):
        """Multiple SPF records are a permerror"""
        zone = {"example.com": {"TXT": ["v=spf1 -all", "v=spf1 +all"]}}
        result = self.validate(zone, "192.0.2.1")
        self.assertEqual(result.result, "permerror")

    def testNoSPFRecord(self):
        """Domains without an SPF record return none"""
        result = self.validate({"example.com": {"A": ["192.0.2.1"]}}, "192.0.2.1")
        self.assertEqual(result.result, "none")
        result = self.validate({}, "192.0.2.1")
        self.assertEqual(result.result, "none")

    def testDNSTimeout(self):
        """A DNS timeout while fetching the record is a temperror"""
        zone = {"example.com": {"TXT": dns.exception.Timeout()}}
        result = self.validate(zone, "192.0.2.1")
        self.assertEqual(result.result, "temperror")

    def testTemperrorOnDNSError(self):
        """Other DNS errors are none unless they are configured as temperror"""
        zone = {"example.com": {"TXT": dns.exception.DNSException("refused")}}
        result = self.validate(zone, "192.0.2.1")
        self.assertEqual(result.result, "none")
        result = self.validate(zone, "192.0.2.1", temperror_on_dns_error=True)
        self.assertEqual(result.result, "temperror")

    def testInclude(self):
        """include matches when the included record passes"""
        zone = spf_zone(
            "v=spf1 include:_spf.example.net -all",
            {"_spf.example.net": {"TXT": ["v=spf1 ip4:192.0.2.0/24 ~all"]}},
        )
        self.assertEqual(self.validate(zone, "192.0.2.10").result, "pass")
        self.assertEqual(self.validate(zone, "198.51.100.1").result, "fail")

    def testIncludeMissingSPF(self):
        """Including a domain without an SPF record is a permerror"""
        zone = spf_zone("v=spf1 include:missing.example.net ~all")
        result = self.validate(zone, "192.0.2.1")
        self.assertEqual(result.result, "permerror")

    def testIncludeTemperror(self):
        """A temperror in an included record propagates"""
        zone = spf_zone(
            "v=spf1 include:slow.example.net -all",
            {"slow.example.net": {"TXT": dns.exception.Timeout()}},
        )
        result = self.validate(zone, "192.0.2.1")
        self.assertEqual(result.result, "temperror")

    def testSPFIncludeLoop(self):
        """An include loop is a permerror"""
        zone = spf_zone("v=spf1 include:example.com -all")
        result = self.validate(zone, "192.0.2.1")
        self.assertEqual(result.result, "permerror")

    def testTooManySPFDNSLookups(self):
        """More than 10 DNS-querying terms is a permerror"""
        zone = {
            f"s{i}.example.net": {"TXT": ["v=spf1 -all"]} for i in range(1, 12)
        }
        ten = " ".join(f"include:s{i}.example.net" for i in range(1, 11))
        zone["example.com"] = {"TXT": [f"v=spf1 {ten} -all"]}
        self.assertEqual(self.validate(zone, "192.0.2.1").result, "fail")

        zone["example.com"] = {"TXT": [f"v=spf1 {ten} include:s11.example.net -all"]}
        result = self.validate(zone, "192.0.2.1")
        self.assertEqual(result.result, "permerror")

    def testTooManySPFVoidDNSLookups(self):
        """More than 2 void DNS lookups is a permerror"""
        two = "a:void1.example.com mx:void2.example.com"
        zone = spf_zone(f"v=spf1 {two} -all")
        self.assertEqual(self.validate(zone, "192.0.2.1").result, "fail")

        zone = spf_zone(f"v=spf1 {two} a:void3.example.com -all")
        result = self.validate(zone, "192.0.2.1")
        self.assertEqual(result.result, "permerror")

    def testRedirect(self):
        """redirect is followed when nothing matches"""
        zone = spf_zone(
            "v=spf1 redirect=_spf.example.com",
            {"_spf.example.com": {"TXT": ["v=spf1 ip4:192.0.2.0/24 -all"]}},
        )
        self.assertEqual(self.validate(zone, "192.0.2.10").result, "pass")
        self.assertEqual(self.validate(zone, "198.51.100.1").result, "fail")

        zone["example.com"]["TXT"] = ["v=spf1 +all redirect=_spf.example.com"]
        self.assertEqual(self.validate(zone, "198.51.100.1").result, "pass")

    def testRedirectMissingSPF(self):
        """Redirecting to a domain without an SPF record is a permerror"""
        zone = spf_zone("v=spf1 redirect=missing.example.net")
        self.assertEqual(self.validate(zone, "192.0.2.1").result, "permerror")

    def testDuplicateModifiers(self):
        """More than one redirect or exp modifier is a permerror"""
        records = [
            "v=spf1 redirect=a.example.net redirect=b.example.net",
            "v=spf1 -all exp=a.example.net exp=b.example.net",
        ]
        for record in records:
            result = self.validate(spf_zone(record), "192.0.2.1")
            self.assertEqual(result.result, "permerror", record)

    def testUnknownModifier(self):
        """Unknown modifiers are ignored"""
        result = self.validate(spf_zone("v=spf1 foo=bar -all"), "192.0.2.1")
        self.assertEqual(result.result, "fail")

    def testSPFAMechanism(self):
        """The a mechanism matches the domain's addresses"""
        zone = spf_zone("v=spf1 a -all")
        zone["example.com"]["A"] = ["192.0.2.1"]
        self.assertEqual(self.validate(zone, "192.0.2.1").result, "pass")
        self.assertEqual(self.validate(zone, "192.0.2.2").result, "fail")

    def testSPFAMechanismCIDR(self):
        """CIDR lengths widen the a mechanism"""
        zone = spf_zone(
            "v=spf1 a/24 a:mail.example.com//64 -all",
            {"mail.example.com": {"AAAA": ["2001:db8::1"]}},
        )
        zone["example.com"]["A"] = ["192.0.2.1"]
        self.assertEqual(self.validate(zone, "192.0.2.200").result, "pass")
        self.assertEqual(self.validate(zone, "192.0.3.1").result, "fail")
        self.assertEqual(self.validate(zone, "2001:db8::abcd").result, "pass")
        self.assertEqual(self.validate(zone, "2001:db8:1::1").result, "fail")

    def testSPFMXMechanism(self):
        """The mx mechanism matches the addresses of MX hosts"""
        zone = spf_zone(
            "v=spf1 mx -all",
            {
                "mx1.example.com": {"A": ["192.0.2.25"]},
                "mx2.example.com": {"A": ["192.0.2.26"]},
            },
        )
        zone["example.com"]["MX"] = ["10 mx1.example.com", "20 mx2.example.com"]
        self.assertEqual(self.validate(zone, "192.0.2.26").result, "pass")
        self.assertEqual(self.validate(zone, "192.0.2.27").result, "fail")

    def testSPFTooManyMXRecords(self):
        """An mx mechanism with more than 10 MX records is a permerror"""
        zone = spf_zone("v=spf1 mx -all")
        zone["example.com"]["MX"] = [f"{i} mx{i}.example.com" for i in range(11)]
        self.assertEqual(self.validate(zone, "192.0.2.1").result, "permerror")

    def testSPFPTRMechanism(self):
        """The ptr mechanism matches forward-confirmed reverse names"""
        zone = spf_zone(
            "v=spf1 ptr -all",
            {"mail.example.com": {"A": ["192.0.2.5"]}},
        )
        zone["5.2.0.192.in-addr.arpa"] = {"PTR": ["mail.example.com"]}
        zone["6.2.0.192.in-addr.arpa"] = {"PTR": ["mail.example.com"]}
        self.assertEqual(self.validate(zone, "192.0.2.5").result, "pass")
        # The reverse name does not resolve back to 192.0.2.6
        self.assertEqual(self.validate(zone, "192.0.2.6").result, "fail")

    def testPTRLookupLimit(self):
        """Only the first 10 PTR names are validated"""
        zone = {"5.2.0.192.in-addr.arpa": {"PTR": []}}
        for i in range(12):
            zone["5.2.0.192.in-addr.arpa"]["PTR"].append(f"h{i}.example.com")
            zone[f"h{i}.example.com"] = {"A": ["192.0.2.5"]}
        with mock.patch("checkspf.utils.query_dns", FakeDNS(zone)):
            names = checkspf.utils.get_validated_ptr_names("192.0.2.5")
        self.assertEqual(len(names), 10)

    def testSPFMacrosExists(self):
        """SPF macros can be used with the exists mechanism"""
        zone = spf_zone(
            "v=spf1 exists:%{ir}.allow.example.com -all",
            {"3.2.0.192.allow.example.com": {"A": ["127.0.0.2"]}},
        )
        self.assertEqual(self.validate(zone, "192.0.2.3").result, "pass")
        self.assertEqual(self.validate(zone, "192.0.2.4").result, "fail")

    def testIPv4MappedAddress(self):
        """IPv4-mapped IPv6 client addresses are evaluated as IPv4"""
        zone = spf_zone("v=spf1 ip4:192.0.2.0/24 -all")
        result = self.validate(zone, "::ffff:192.0.2.10")
        self.assertEqual(result.result, "pass")
        self.assertEqual(result.explanation, "Allowed sender IP: 192.0.2.10")

    def testIPv6ClientWithIP4Mechanism(self):
        """ip4 mechanisms do not match IPv6 clients"""
        zone = spf_zone("v=spf1 ip4:192.0.2.0/24 ip6:2001:db8::/32 -all")
        self.assertEqual(self.validate(zone, "2001:db8::1").result, "pass")
        self.assertEqual(self.validate(zone, "2001:db9::1").result, "fail")

    def testInvalidIP(self):
        """Invalid client IP addresses raise ValueError"""
        self.assertRaises(
            ValueError, checkspf.validate, "192.0.2.300", "user@example.com",
            "mail.example.com"
        )

    def testParseMacro(self):
        """Macro transformers are parsed"""
        macro = checkspf.spf.parse_macro("{l1r-.}")
        self.assertEqual(
            macro, checkspf.spf.SPFMacro("l", 1, True, "-.", False)
        )
        self.assertTrue(checkspf.spf.parse_macro("{IR}").url_escape)
        self.assertRaises(
            checkspf.spf.SPFSyntaxError, checkspf.spf.parse_macro, "{d0}"
        )

    def testMacroExpansion(self):
        """Macros expand like the RFC 7208 section 7.4 examples"""
        context = checkspf.evaluator.new_evaluation_context(
            "192.0.2.3", "strong-bad@email.example.com"
        )
        domain = "email.example.com"
        expected = {
            "%{s}": "strong-bad@email.example.com",
            "%{o}": "email.example.com",
            "%{d}": "email.example.com",
            "%{d4}": "email.example.com",
            "%{d3}": "email.example.com",
            "%{d2}": "example.com",
            "%{d1}": "com",
            "%{dr}": "com.example.email",
            "%{d2r}": "example.email",
            "%{l}": "strong-bad",
            "%{l-}": "strong.bad",
            "%{lr}": "strong-bad",
            "%{lr-}": "bad.strong",
            "%{l1r-}": "strong",
            "%{ir}.%{v}._spf.%{d2}": "3.2.0.192.in-addr._spf.example.com",
            "%{lr-}.lp._spf.%{d2}": "bad.strong.lp._spf.example.com",
            "%{d2}.trusted-domains.example.net":
                "example.com.trusted-domains.example.net",
        }
        for macro_string, value in expected.items():
            self.assertEqual(
                checkspf.macros.expand_macro_string(macro_string, context, domain),
                value,
                macro_string,
            )

    def testIPv6MacroExpansion(self):
        """IPv6 addresses expand to dot-separated nibbles"""
        context = checkspf.evaluator.new_evaluation_context(
            "2001:db8::cb01", "strong-bad@email.example.com"
        )
        self.assertEqual(
            checkspf.macros.expand_macro_string(
                "%{ir}.%{v}._spf.%{d2}", context, "email.example.com"
            ),
            "1.0.b.c.0.0.0.0.0.0.0.0.0.0.0.0.0.0.0.0.0.0.0.0.8.b.d.0.1.0.0.2"
            ".ip6._spf.example.com",
        )
        self.assertEqual(
            checkspf.macros.expand_macro_string(
                "%{c}", context, "email.example.com", explanation=True
            ),
            "2001:db8::cb01",
        )

    def testMacroEscapes(self):
        """Uppercase macros are URL escaped and %_ %- %% are literals"""
        context = checkspf.evaluator.new_evaluation_context(
            "192.0.2.3", "strong-bad@email.example.com", receiver="mx.example.org"
        )
        expand = checkspf.macros.expand_macro_string
        self.assertEqual(
            expand("%{S}", context, "email.example.com"),
            "strong-bad%40email.example.com",
        )
        self.assertEqual(expand("a%_b%-c%%d", context, "example.com"), "a b%20c%d")
        self.assertEqual(
            expand("%{r}", context, "example.com", explanation=True), "mx.example.org"
        )
        self.assertRaises(
            checkspf.spf.SPFSyntaxError, expand, "%{r}", context, "example.com"
        )

    def testPTRMacro(self):
        """The p macro expands to a validated reverse name"""
        zone = {
            "5.2.0.192.in-addr.arpa": {"PTR": ["mail.example.com"]},
            "mail.example.com": {"A": ["192.0.2.5"]},
        }
        context = checkspf.evaluator.new_evaluation_context(
            "192.0.2.5", "user@example.com"
        )
        with mock.patch("checkspf.utils.query_dns", FakeDNS(zone)):
            value = checkspf.macros.expand_macro_string("%{p}", context, "example.com")
        self.assertEqual(value, "mail.example.com")
        self.assertEqual(context["dns_lookups"], 1)

    def testTruncateDomain(self):
        """Expanded domains longer than 253 characters lose leading labels"""
        domain = ".".join(["abcdefghi"] * 30) + ".example.com"
        truncated = checkspf.macros.truncate_domain(domain)
        self.assertLessEqual(len(truncated), 253)
        self.assertTrue(truncated.endswith(".example.com"))
        self.assertTrue(domain.endswith(truncated))
        self.assertEqual(checkspf.macros.truncate_domain("example.com"), "example.com")

    def testExplanation(self):
        """exp builds the explanation for fail results"""
        zone = spf_zone(
            "v=spf1 -all exp=explain.example.com",
            {
                "explain.example.com": {
                    "TXT": ["%{i} is not one of %{d}'s designated mail servers."]
                }
            },
        )
        result = self.validate(zone, "192.0.2.3")
        self.assertEqual(result.result, "fail")
        self.assertEqual(
            result.explanation,
            "192.0.2.3 is not one of example.com's designated mail servers.",
        )

        del zone["explain.example.com"]
        result = self.validate(zone, "192.0.2.3")
        self.assertEqual(result.explanation, "Disallowed sender IP: 192.0.2.3")

    def testEvaluateTerms(self):
        """Parsed terms can be evaluated directly"""
        terms = checkspf.spf.parse_spf_record("v=spf1 ip4:192.0.2.0/24 -all",
                                              "example.com")
        context = checkspf.evaluator.new_evaluation_context(
            "192.0.2.1", "user@example.com"
        )
        result = checkspf.evaluator.evaluate_terms(terms, context, "example.com")
        self.assertEqual(result.result, "pass")
        self.assertEqual(context["dns_lookups"], 0)

    def testNormalizeEnvelopeFrom(self):
        """MAIL FROM addresses are normalized before evaluation"""
        normalize = checkspf.normalize_envelope_from
        self.assertEqual(
            normalize(" <user@example.com> ", "mail.example.net"),
            ("user@example.com", "example.com"),
        )
        self.assertEqual(
            normalize("<>", "mail.example.net"),
            ("postmaster@mail.example.net", "mail.example.net"),
        )
        self.assertEqual(
            normalize("example.com", "mail.example.net"),
            ("postmaster@example.com", "example.com"),
        )

    def testValidateNormalization(self):
        """Bracketed and empty senders are checked"""
        zone = spf_zone(
            "v=spf1 ip4:192.0.2.0/24 -all",
            {"mail.example.net": {"TXT": ["v=spf1 -all"]}},
        )
        self.assertEqual(
            self.validate(zone, "192.0.2.1", sender="<user@example.com>").result,
            "pass",
        )
        self.assertEqual(
            self.validate(zone, "192.0.2.1", sender="", helo="mail.example.net").result,
            "fail",
        )
        result = self.validate(zone, "192.0.2.1", sender="user@localhost")
        self.assertEqual(result, checkspf.SPFResult("none", "Invalid domain: localhost"))

    def testCheckHELO(self):
        """HELO names are checked as postmaster@helo"""
        zone = {"mail.example.com": {"TXT": ["v=spf1 a -all"], "A": ["192.0.2.25"]}}
        with mock.patch("checkspf.utils.query_dns", FakeDNS(zone)):
            self.assertEqual(
                checkspf.check_helo("192.0.2.25", "mail.example.com").result, "pass"
            )
            self.assertEqual(checkspf.check_helo("192.0.2.25", "localhost").result,
                             "none")

    def testReceivedSPFHeader(self):
        """Received-SPF header fields are rendered"""
        header = checkspf.received_spf_header(
            checkspf.SPFResult("pass", "Allowed sender IP: 192.0.2.1"),
            "192.0.2.1",
            "<user@example.com>",
            "mail.example.com",
            receiver="mx.example.org",
        )
        self.assertEqual(
            header,
            "Received-SPF: pass (Allowed sender IP: 192.0.2.1) "
            "receiver=mx.example.org; client-ip=192.0.2.1; "
            'envelope-from="user@example.com"; helo=mail.example.com; '
            "identity=mailfrom;",
        )

    def testCheckSPF(self):
        """check_spf reports both identities and serializes to JSON"""
        zone = spf_zone(
            "v=spf1 ip4:192.0.2.0/24 -all",
            {"mail.example.com": {"A": ["192.0.2.1"]}},
        )
        with mock.patch("checkspf.utils.query_dns", FakeDNS(zone)):
            results = checkspf.check_spf(
                "192.0.2.1", "user@example.com", "mail.example.com"
            )
        self.assertEqual(results["mailfrom"]["result"], "pass")
        self.assertEqual(results["mailfrom"]["domain"], "example.com")
        self.assertEqual(results["helo"]["result"], "none")
        self.assertTrue(
            results["mailfrom"]["received_spf"].startswith("Received-SPF: pass")
        )
        parsed = json.loads(checkspf.results_to_json(results))
        self.assertEqual(parsed["client_ip"], "192.0.2.1")

    def testIncludedExplanationIgnored(self):
        """exp in an included record is not evaluated and costs no lookups"""
        hosts = " ".join(f"a:h{i}.example.com" for i in range(8))
        zone = spf_zone(
            f"v=spf1 include:inc.example.net {hosts} a:ok.example.com -all",
            {
                "inc.example.net": {"TXT": ["v=spf1 -all exp=%{p}.exp.example.net"]},
                "ok.example.com": {"A": ["192.0.2.10"]},
                "10.2.0.192.in-addr.arpa": {"PTR": ["mail.example.org"]},
                "mail.example.org": {"A": ["192.0.2.10"]},
            },
        )
        for i in range(8):
            zone[f"h{i}.example.com"] = {"A": [f"198.51.100.{i + 1}"]}
        fake_dns = FakeDNS(zone)
        with mock.patch("checkspf.utils.query_dns", fake_dns):
            result = checkspf.validate("192.0.2.10", "user@example.com",
                                       "mail.example.com")
        self.assertEqual(result.result, "pass")
        for name, _ in fake_dns.queries:
            self.assertFalse(name.endswith("exp.example.net"), name)
        self.assertNotIn(("10.2.0.192.in-addr.arpa", "PTR"), fake_dns.queries)

    def testRedirectExplanation(self):
        """A fail reached through redirect uses the target's exp"""
        zone = spf_zone(
            "v=spf1 redirect=_spf.example.com",
            {
                "_spf.example.com": {
                    "TXT": ["v=spf1 -all exp=explain._spf.example.com"]
                },
                "explain._spf.example.com": {"TXT": ["%{d} rejects %{i}"]},
            },
        )
        result = self.validate(zone, "192.0.2.3")
        self.assertEqual(
            result, checkspf.SPFResult("fail", "_spf.example.com rejects 192.0.2.3")
        )

    def testRecursionDepthLimit(self):
        """Nesting include deeper than the limit is a permerror"""
        zone = spf_zone(
            "v=spf1 include:d1.example.com -all",
            {
                "d1.example.com": {"TXT": ["v=spf1 include:d2.example.com -all"]},
                "d2.example.com": {"TXT": ["v=spf1 include:d3.example.com -all"]},
                "d3.example.com": {"TXT": ["v=spf1 +all"]},
            },
        )
        with mock.patch("checkspf.evaluator.MAX_RECURSION_DEPTH", 2):
            result = self.validate(zone, "192.0.2.1")
        self.assertEqual(result.result, "permerror")
        self.assertIn("nesting exceeds 2 levels", result.explanation)

        with mock.patch("checkspf.evaluator.MAX_RECURSION_DEPTH", 3):
            result = self.validate(zone, "192.0.2.1")
        self.assertEqual(result.result, "pass")

    def testMechanismDNSTimeout(self):
        """A DNS timeout in a, mx, or exists is a temperror"""
        zone = spf_zone("v=spf1 a -all")
        zone["example.com"]["A"] = dns.exception.Timeout()
        self.assertEqual(self.validate(zone, "192.0.2.1").result, "temperror")

        zone = spf_zone("v=spf1 mx -all")
        zone["example.com"]["MX"] = dns.exception.Timeout()
        self.assertEqual(self.validate(zone, "192.0.2.1").result, "temperror")

        zone = spf_zone(
            "v=spf1 mx -all",
            {"mx1.example.com": {"A": dns.exception.Timeout()}},
        )
        zone["example.com"]["MX"] = ["10 mx1.example.com"]
        self.assertEqual(self.validate(zone, "192.0.2.1").result, "temperror")

        zone = spf_zone(
            "v=spf1 exists:%{i}.list.example.com -all",
            {"192.0.2.1.list.example.com": {"A": dns.exception.Timeout()}},
        )
        self.assertEqual(self.validate(zone, "192.0.2.1").result, "temperror")

    def testPTRTimeoutIsNoMatch(self):
        """A DNS timeout in ptr means the mechanism does not match"""
        zone = spf_zone(
            "v=spf1 ptr ?all",
            {"1.2.0.192.in-addr.arpa": {"PTR": dns.exception.Timeout()}},
        )
        result = self.validate(zone, "192.0.2.1")
        self.assertEqual(result.result, "neutral")
        self.assertEqual(result.explanation, "Sender IP 192.0.2.1 matched ?all")

    def testIncludePermError(self):
        """A permerror in an included record is a permerror for the includer"""
        zone = spf_zone(
            "v=spf1 include:bad.example.net +all",
            {"bad.example.net": {"TXT": ["v=spf1 foo -all"]}},
        )
        self.assertEqual(self.validate(zone, "192.0.2.1").result, "permerror")


if __name__ == "__main__":
    unittest.main(verbosity=2)
