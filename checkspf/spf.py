# -*- coding: utf-8 -*-
"""Sender Policy framework (SPF) record selection and parsing"""

from __future__ import annotations

import ipaddress
import logging
import re
from typing import Literal, NamedTuple, Optional, TypedDict, Union
from collections.abc import Sequence

import dns.resolver
from dns.nameserver import Nameserver
import pyleri

from checkspf._constants import (
    DNS_LOOKUP_LIMIT,
    SYNTAX_ERROR_MARKER,
    VOID_DNS_LOOKUP_LIMIT,
)
from checkspf.utils import (
    DNSException,
    DNSExceptionNXDOMAIN,
    DNSExceptionTemporary,
    get_txt_records,
    is_valid_domain,
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
SPF_VERSION_TAG_REGEX_STRING = r"v=spf1(?=\s|$)"

SPF_DIRECTIVE_REGEX_STRING = (
    r"[+\-~?]?"
    r"(?:all|include|a|mx|ptr|ip4|ip6|exists)"
    r"(?:[:/]\S*)?(?=\s|$)"
)
SPF_MODIFIER_REGEX_STRING = r"[a-z][a-z0-9_.\-]*=\S*"

DIRECTIVE_REGEX = re.compile(
    r"^(?P<qualifier>[+\-~?])?"
    r"(?P<mechanism>all|include|a|mx|ptr|ip4|ip6|exists)"
    r"(?:(?P<separator>[:/])(?P<value>.*))?$",
    re.IGNORECASE,
)
MODIFIER_REGEX = re.compile(
    r"^(?P<name>[a-z][a-z0-9_.\-]*)=(?P<macro_string>.*)$", re.IGNORECASE
)
MACRO_REGEX = re.compile(
    r"^\{(?P<letter>[slodipvhcrt])(?P<digits>\d*)(?P<reverse>r?)"
    r"(?P<delimiters>[.\-+,/_=]*)\}",
    re.IGNORECASE,
)
DUAL_CIDR_REGEX = re.compile(r"^(?P<domain_spec>.*?)(?:/(?P<ip4>\d+))?(?://(?P<ip6>\d+))?$")

EXPLANATION_MACRO_LETTERS = set("crt")

SPFResultValue = Literal[
    "none",
    "pass",
    "fail",
    "policy",
    "neutral",
    "softfail",
    "temperror",
    "permerror",
]

SPF_RESULTS: tuple[str, ...] = (
    "none",
    "pass",
    "fail",
    "policy",
    "neutral",
    "softfail",
    "temperror",
    "permerror",
)

spf_qualifiers: dict[str, str] = {
    "": "pass",
    "?": "neutral",
    "+": "pass",
    "-": "fail",
    "~": "softfail",
}


class SPFError(Exception):
    """Raised when a fatal SPF error occurs"""

    result: SPFResultValue = "permerror"

    def __init__(self, msg: str, data: Optional[dict] = None):
        """
        Args:
            msg (str): The error message
            data (dict): A dictionary of data to include in the output
        """
        self.data = data
        Exception.__init__(self, msg)


class SPFPermError(SPFError):
    """Raised when an SPF record or its evaluation is malformed"""


class SPFTempError(SPFError):
    """Raised when a transient DNS failure prevents SPF evaluation"""

    result = "temperror"


class SPFRecordNotFound(SPFError):
    """Raised when an SPF record could not be found"""

    result = "none"

    def __init__(self, error: Union[Exception, str], domain: str):
        self.error = error
        self.domain = domain
        SPFError.__init__(self, str(error))

    def __str__(self):
        return str(self.error)


class MultipleSPFRTXTRecords(SPFPermError):
    """Raised when multiple TXT spf1 records are found"""


class SPFSyntaxError(SPFPermError):
    """Raised when an SPF syntax error is found"""


class SPFTooManyDNSLookups(SPFPermError):
    """Raised when an SPF record requires too many DNS lookups (10 max)"""

    def __init__(self, *args, **kwargs):
        data = {"dns_lookups": kwargs["dns_lookups"]}
        SPFPermError.__init__(self, args[0], data=data)


class SPFTooManyVoidDNSLookups(SPFPermError):
    """Raised when an SPF record requires too many void DNS lookups (2 max)"""

    def __init__(self, *args, **kwargs):
        data = {"void_dns_lookups": kwargs["void_dns_lookups"]}
        SPFPermError.__init__(self, args[0], data=data)


class SPFRecursionLimitExceeded(SPFPermError):
    """Raised when include/redirect nesting is too deep"""


class _SPFGrammar(pyleri.Grammar):
    """Defines Pyleri grammar for SPF records"""

    version_tag = pyleri.Regex(SPF_VERSION_TAG_REGEX_STRING)
    directive = pyleri.Regex(SPF_DIRECTIVE_REGEX_STRING, re.IGNORECASE)
    modifier = pyleri.Regex(SPF_MODIFIER_REGEX_STRING, re.IGNORECASE)

    START = pyleri.Sequence(
        version_tag, pyleri.Repeat(pyleri.Choice(directive, modifier))
    )


class SPFResult(NamedTuple):
    result: SPFResultValue
    explanation: str = ""


class SPFDirective(NamedTuple):
    qualifier: str
    mechanism: str
    separator: str
    value: str
    raw: str


class SPFModifier(NamedTuple):
    name: str
    macro_string: str
    raw: str


SPFTerm = Union[SPFDirective, SPFModifier]


class SPFMacro(NamedTuple):
    letter: str
    digits: Optional[int]
    reverse: bool
    delimiters: str
    url_escape: bool


class DNSOptions(TypedDict):
    nameservers: Optional[Sequence[str | Nameserver]]
    resolver: Optional[dns.resolver.Resolver]
    timeout: float
    timeout_retries: int


class SPFEvaluationContext(TypedDict):
    ip: Union[ipaddress.IPv4Address, ipaddress.IPv6Address]
    sender: str
    local_part: str
    sender_domain: str
    helo_domain: str
    receiver: str
    dns_lookups: int
    void_dns_lookups: int
    temperror_on_dns_error: bool
    dns: DNSOptions


def count_dns_lookup(context: SPFEvaluationContext) -> None:
    """
    Counts a DNS-querying term against the evaluation-wide limit

    Raises:
        :exc:`checkspf.spf.SPFTooManyDNSLookups`
    """
    context["dns_lookups"] += 1
    if context["dns_lookups"] > DNS_LOOKUP_LIMIT:
        raise SPFTooManyDNSLookups(
            "Evaluating the SPF record requires more than "
            f"{DNS_LOOKUP_LIMIT} DNS lookups (RFC 7208 § 4.6.4)",
            dns_lookups=context["dns_lookups"],
        )


def count_void_dns_lookup(context: SPFEvaluationContext) -> None:
    """
    Counts a lookup that returned NXDOMAIN or no answers

    Raises:
        :exc:`checkspf.spf.SPFTooManyVoidDNSLookups`
    """
    context["void_dns_lookups"] += 1
    if context["void_dns_lookups"] > VOID_DNS_LOOKUP_LIMIT:
        raise SPFTooManyVoidDNSLookups(
            "Evaluating the SPF record has more than "
            f"{VOID_DNS_LOOKUP_LIMIT} void DNS lookups (RFC 7208 § 4.6.4)",
            void_dns_lookups=context["void_dns_lookups"],
        )


def parse_macro(macro: str) -> SPFMacro:
    """
    Parses the body of a single macro-expand, e.g. ``{ir}`` or ``{l1r-.}``

    Args:
        macro (str): The macro, starting at the opening brace

    Returns:
        SPFMacro: The macro letter, digit transformer, reverse flag,
        delimiters and whether the result must be URL escaped

    Raises:
        :exc:`checkspf.spf.SPFSyntaxError`
    """
    match = MACRO_REGEX.match(macro)
    if match is None:
        raise SPFSyntaxError(f"Invalid SPF macro: %{macro}")
    letter = match.group("letter")
    digits = None
    if match.group("digits"):
        digits = int(match.group("digits"))
        if digits == 0:
            raise SPFSyntaxError(f"SPF macro transformer digits must be non-zero: %{macro}")
    return SPFMacro(
        letter=letter.lower(),
        digits=digits,
        reverse=match.group("reverse") != "",
        delimiters=match.group("delimiters"),
        url_escape=letter.isupper(),
    )


def _raise_macro_syntax_error(
    value: str,
    pos: int,
    domain: str,
    syntax_error_marker: str,
) -> None:
    """Raise SPFSyntaxError with a caret-like marker inside the bad value."""
    marked_value = value[:pos] + syntax_error_marker + value[pos:]
    raise SPFSyntaxError(
        f"{domain}: Invalid SPF macro syntax at position {pos} "
        f"(marked with {syntax_error_marker}) in value: {marked_value}"
    )


def tokenize_macro_string(
    value: str,
    domain: str,
    *,
    explanation: bool = False,
    syntax_error_marker: str = SYNTAX_ERROR_MARKER,
) -> list[Union[str, SPFMacro]]:
    """
    Splits a macro-string into literal text and macros (RFC 7208 § 7.1)

    Args:
        value (str): A domain-spec or macro-string
        domain (str): The domain the value came from, for error messages
        explanation (bool): Allow the explanation-only letters ``c``, ``r``
                            and ``t``
        syntax_error_marker (str): The maker for pointing out syntax errors

    Returns:
        list: Literal strings (with escapes already resolved) and
        :class:`SPFMacro` items, in order

    Raises:
        :exc:`checkspf.spf.SPFSyntaxError`
    """
    tokens: list[Union[str, SPFMacro]] = []
    literal = ""
    i = 0
    length = len(value)

    while i < length:
        ch = value[i]
        if ch != "%":
            literal += ch
            i += 1
            continue

        if i + 1 >= length:
            _raise_macro_syntax_error(value, i, domain, syntax_error_marker)

        next_ch = value[i + 1]
        if next_ch == "%":
            literal += "%"
            i += 2
            continue
        if next_ch == "_":
            literal += " "
            i += 2
            continue
        if next_ch == "-":
            literal += "%20"
            i += 2
            continue
        if next_ch != "{":
            _raise_macro_syntax_error(value, i, domain, syntax_error_marker)

        close = value.find("}", i + 2)
        if close == -1:
            _raise_macro_syntax_error(value, i, domain, syntax_error_marker)
        try:
            macro = parse_macro(value[i + 1 : close + 1])
        except SPFSyntaxError:
            _raise_macro_syntax_error(value, i + 2, domain, syntax_error_marker)
        if macro.letter in EXPLANATION_MACRO_LETTERS and not explanation:
            _raise_macro_syntax_error(value, i + 2, domain, syntax_error_marker)

        if literal:
            tokens.append(literal)
            literal = ""
        tokens.append(macro)
        i = close + 1

    if literal:
        tokens.append(literal)

    return tokens


def split_dual_cidr(directive: SPFDirective) -> tuple[str, Optional[int], Optional[int]]:
    """
    Splits an ``a`` or ``mx`` directive value into its domain-spec and
    IPv4/IPv6 prefix lengths

    Args:
        directive (SPFDirective): An ``a`` or ``mx`` directive

    Returns:
        tuple: ``(domain_spec, ip4_cidr_length, ip6_cidr_length)``; the
        domain-spec is empty and the lengths are ``None`` when not given

    Raises:
        :exc:`checkspf.spf.SPFSyntaxError`
    """
    value = directive.value
    if directive.separator == "/":
        value = "/" + value
    match = DUAL_CIDR_REGEX.match(value)
    domain_spec = match.group("domain_spec")
    ip4_cidr = match.group("ip4")
    ip6_cidr = match.group("ip6")
    if directive.separator == "/" and domain_spec != "":
        raise SPFSyntaxError(f"Invalid CIDR length in {directive.raw}")
    if ip4_cidr is not None:
        ip4_cidr = int(ip4_cidr)
        if ip4_cidr > 32:
            raise SPFSyntaxError(f"Invalid IPv4 CIDR length in {directive.raw}")
    if ip6_cidr is not None:
        ip6_cidr = int(ip6_cidr)
        if ip6_cidr > 128:
            raise SPFSyntaxError(f"Invalid IPv6 CIDR length in {directive.raw}")
    return domain_spec, ip4_cidr, ip6_cidr


def query_spf_record(
    domain: str,
    *,
    nameservers: Optional[Sequence[str | Nameserver]] = None,
    resolver: Optional[dns.resolver.Resolver] = None,
    timeout: float = 2.0,
    timeout_retries: int = 2,
    temperror_on_dns_error: bool = False,
) -> str:
    """
    Queries DNS for an SPF record

    Args:
        domain (str): A domain name
        nameservers (list): A list of nameservers to query
        resolver (dns.resolver.Resolver): A resolver object to use for DNS requests
        timeout (float): number of seconds to wait for an answer from DNS
        timeout_retries (int): The number of times to reattempt a query after a timeout
        temperror_on_dns_error (bool): Treat DNS errors other than timeouts
                                       and NXDOMAIN as temporary

    Returns:
        str: The SPF record

    Raises:
        :exc:`checkspf.spf.SPFRecordNotFound`
        :exc:`checkspf.spf.MultipleSPFRTXTRecords`
        :exc:`checkspf.spf.SPFTempError`
    """
    domain = normalize_domain(domain)
    logging.debug(f"Checking for a SPF record on {domain}")
    try:
        answers = get_txt_records(
            domain,
            nameservers=nameservers,
            resolver=resolver,
            timeout=timeout,
            timeout_retries=timeout_retries,
        )
    except DNSExceptionNXDOMAIN:
        raise SPFRecordNotFound("The domain does not exist.", domain)
    except DNSExceptionTemporary as error:
        raise SPFTempError(f"{domain}: {error}")
    except DNSException as error:
        if temperror_on_dns_error:
            raise SPFTempError(f"{domain}: {error}")
        raise SPFRecordNotFound(error, domain)

    # https://datatracker.ietf.org/doc/html/rfc7208#section-4.5
    #
    # Starting with the set of records that were returned by the lookup,
    # discard records that do not begin with a version section of exactly
    # "v=spf1".  Note that the version section is terminated by either an
    # SP character or the end of the record.
    spf_txt_records = []
    for record in answers:
        if record == SPF_VERSION_TAG or record.startswith(f"{SPF_VERSION_TAG} "):
            spf_txt_records.append(record)
    if len(spf_txt_records) > 1:
        raise MultipleSPFRTXTRecords(f"{domain}: multiple SPF records")
    if len(spf_txt_records) == 0:
        raise SPFRecordNotFound("An SPF record does not exist.", domain)

    return spf_txt_records[0]


def parse_spf_directive(term: str) -> Optional[SPFDirective]:
    """
    Parses a single directive term, e.g. ``~ip4:192.168.0.0/24``

    Args:
        term (str): A term from an SPF record

    Returns:
        SPFDirective: The directive, or ``None`` if the term is not a
        directive that fits its mechanism's grammar
    """
    match = DIRECTIVE_REGEX.match(term)
    if match is None:
        return None
    qualifier = match.group("qualifier") or "+"
    mechanism = match.group("mechanism").lower()
    separator = match.group("separator") or ""
    value = match.group("value") or ""

    if separator and value == "":
        return None
    if mechanism == "all":
        if separator:
            return None
    elif mechanism in ("include", "exists", "ip4", "ip6"):
        if separator != ":":
            return None
    elif mechanism == "ptr":
        if separator == "/":
            return None

    return SPFDirective(
        qualifier=qualifier,
        mechanism=mechanism,
        separator=separator,
        value=value,
        raw=term,
    )


def parse_spf_modifier(term: str) -> Optional[SPFModifier]:
    """
    Parses a single modifier term, e.g. ``redirect=_spf.example.com``

    Args:
        term (str): A term from an SPF record

    Returns:
        SPFModifier: The modifier, or ``None`` if the term is not a modifier
    """
    match = MODIFIER_REGEX.match(term)
    if match is None:
        return None
    return SPFModifier(
        name=match.group("name").lower(),
        macro_string=match.group("macro_string"),
        raw=term,
    )


def _validate_domain_spec(
    domain_spec: str,
    domain: str,
    syntax_error_marker: str,
) -> None:
    tokenize_macro_string(
        domain_spec, domain, syntax_error_marker=syntax_error_marker
    )
    if "%" not in domain_spec and not is_valid_domain(domain_spec):
        raise SPFSyntaxError(f"{domain}: {domain_spec} is not a valid domain-spec")


def _validate_directive(
    directive: SPFDirective,
    domain: str,
    syntax_error_marker: str,
) -> None:
    mechanism = directive.mechanism
    value = directive.value
    if mechanism in ("ip4", "ip6"):
        if "%" in value:
            raise SPFSyntaxError(
                f"{domain}: SPF macros are not allowed in {mechanism} "
                f"mechanisms: {value}"
            )
        network_type = (
            ipaddress.IPv4Network if mechanism == "ip4" else ipaddress.IPv6Network
        )
        try:
            network = ipaddress.ip_network(value, strict=False)
        except ValueError:
            raise SPFSyntaxError(f"{value} is not a valid {mechanism} value.")
        if not isinstance(network, network_type):
            raise SPFSyntaxError(f"{value} is not a valid {mechanism} value.")
    elif mechanism in ("a", "mx"):
        domain_spec, _, _ = split_dual_cidr(directive)
        if domain_spec:
            _validate_domain_spec(domain_spec, domain, syntax_error_marker)
    elif mechanism in ("include", "exists", "ptr") and value:
        _validate_domain_spec(value, domain, syntax_error_marker)


def parse_spf_record(
    record: str,
    domain: str,
    *,
    syntax_error_marker: str = SYNTAX_ERROR_MARKER,
) -> list[SPFTerm]:
    """
    Parses an SPF record into an ordered list of directives and modifiers

    Args:
        record (str): An SPF record
        domain (str): The domain that the SPF record came from
        syntax_error_marker (str): The maker for pointing out syntax errors

    Returns:
        list: :class:`SPFDirective` and :class:`SPFModifier` items in record
        order

    Raises:
        :exc:`checkspf.spf.SPFSyntaxError`
    """
    logging.debug(f"Parsing the SPF record on {domain}")
    if record.startswith('"'):
        # Join split TXT character-strings
        record = re.sub(r'"\s*"', "", record).strip('"')
    record = record.strip()

    spf_syntax_checker = _SPFGrammar()
    parsed_record = spf_syntax_checker.parse(record)
    if not parsed_record.is_valid:
        pos = parsed_record.pos
        expecting: list[str] = list(
            map(lambda x: str(x).strip('"'), list(parsed_record.expecting))
        )
        expecting_str = " or ".join(expecting)
        marked_record = record[:pos] + syntax_error_marker + record[pos:]
        raise SPFSyntaxError(
            f"{domain}: Expected {expecting_str} at position {pos} "
            f"(marked with {syntax_error_marker}) in: {marked_record}"
        )

    terms: list[SPFTerm] = []
    for raw_term in record[len(SPF_VERSION_TAG) :].split():
        term = parse_spf_directive(raw_term)
        if term is not None:
            _validate_directive(term, domain, syntax_error_marker)
            terms.append(term)
            continue
        term = parse_spf_modifier(raw_term)
        if term is None:
            pos = record.find(raw_term)
            marked_record = record[:pos] + syntax_error_marker + record[pos:]
            raise SPFSyntaxError(
                f"{domain}: Invalid term {raw_term} at position {pos} "
                f"(marked with {syntax_error_marker}) in: {marked_record}"
            )
        if term.name in ("redirect", "exp"):
            _validate_domain_spec(term.macro_string, domain, syntax_error_marker)
        else:
            tokenize_macro_string(
                term.macro_string,
                domain,
                explanation=True,
                syntax_error_marker=syntax_error_marker,
            )
        terms.append(term)

    return terms
