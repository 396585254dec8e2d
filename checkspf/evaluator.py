# -*- coding: utf-8 -*-
"""SPF policy evaluation, the check_host() function of RFC 7208 § 4"""

from __future__ import annotations

import ipaddress
import logging
from typing import Callable, Optional, Union
from collections.abc import Sequence

import dns.resolver
from dns.nameserver import Nameserver

from checkspf._constants import (
    DEFAULT_RECEIVER,
    MAX_RECURSION_DEPTH,
    MX_LOOKUP_LIMIT,
)
from checkspf.macros import expand_domain_spec, expand_macro_string
from checkspf.spf import (
    SPFDirective,
    SPFError,
    SPFEvaluationContext,
    SPFModifier,
    SPFPermError,
    SPFRecordNotFound,
    SPFRecursionLimitExceeded,
    SPFResult,
    SPFSyntaxError,
    SPFTempError,
    SPFTerm,
    SPFTooManyDNSLookups,
    count_dns_lookup,
    count_void_dns_lookup,
    parse_spf_record,
    query_spf_record,
    spf_qualifiers,
    split_dual_cidr,
)
from checkspf.utils import (
    DNSException,
    DNSExceptionNXDOMAIN,
    get_a_records,
    get_mx_records,
    get_txt_records,
    get_validated_ptr_names,
    is_valid_domain,
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


IPAddress = Union[ipaddress.IPv4Address, ipaddress.IPv6Address]


def sanitize_domain_for_printing(domain: str) -> str:
    """Shortens a domain and strips control characters for use in messages"""
    if len(domain) == 0:
        return "<empty>"
    if len(domain) > 64:
        domain = domain[:61] + "..."
    return "".join(c for c in domain if c.isprintable())


def new_evaluation_context(
    ip: Union[str, IPAddress],
    sender: str,
    *,
    helo_domain: str = "",
    receiver: str = DEFAULT_RECEIVER,
    temperror_on_dns_error: bool = False,
    nameservers: Optional[Sequence[str | Nameserver]] = None,
    resolver: Optional[dns.resolver.Resolver] = None,
    timeout: float = 2.0,
    timeout_retries: int = 2,
) -> SPFEvaluationContext:
    """
    Creates the state shared by one SPF evaluation and all of its
    ``include`` and ``redirect`` branches

    Args:
        ip: The SMTP client IP address
        sender (str): The sender identity, ``local-part@domain`` or just a
                      domain
        helo_domain (str): The HELO/EHLO name
        receiver (str): The name of the host performing the check
        temperror_on_dns_error (bool): Treat TXT lookup errors other than
                                       timeouts and NXDOMAIN as temporary
        nameservers (list): A list of nameservers to query
        resolver (dns.resolver.Resolver): A resolver object to use for DNS requests
        timeout (float): number of seconds to wait for an answer from DNS
        timeout_retries (int): The number of times to reattempt a query after a timeout

    Returns:
        SPFEvaluationContext: A fresh context with zeroed lookup counters

    Raises:
        :exc:`ValueError`: The IP address is invalid
    """
    ip = ipaddress.ip_address(ip)
    if ip.version == 6 and ip.ipv4_mapped is not None:
        ip = ip.ipv4_mapped
    local_part, _, sender_domain = sender.rpartition("@")
    if local_part == "":
        local_part = "postmaster"
    context: SPFEvaluationContext = {
        "ip": ip,
        "sender": f"{local_part}@{sender_domain}",
        "local_part": local_part,
        "sender_domain": sender_domain,
        "helo_domain": helo_domain,
        "receiver": receiver,
        "dns_lookups": 0,
        "void_dns_lookups": 0,
        "temperror_on_dns_error": temperror_on_dns_error,
        "dns": {
            "nameservers": nameservers,
            "resolver": resolver,
            "timeout": timeout,
            "timeout_retries": timeout_retries,
        },
    }
    return context


def _target_name(domain_spec: str, context: SPFEvaluationContext, domain: str) -> str:
    target = expand_domain_spec(domain_spec, context, domain)
    if not is_valid_domain(target):
        raise SPFPermError(
            f"Invalid target name: {sanitize_domain_for_printing(target)}"
        )
    return target


def _get_addresses(
    hostname: str, context: SPFEvaluationContext, ip_version: int
) -> list[str]:
    try:
        addresses = get_a_records(hostname, ip_version=ip_version, **context["dns"])
    except DNSExceptionNXDOMAIN:
        count_void_dns_lookup(context)
        return []
    except DNSException as e:
        raise SPFTempError(f"{hostname}: {e}")
    if len(addresses) == 0:
        count_void_dns_lookup(context)
    return addresses


def _ip_in_addresses(
    ip: IPAddress,
    addresses: list[str],
    ip4_cidr: Optional[int],
    ip6_cidr: Optional[int],
) -> bool:
    if ip.version == 4:
        prefix = 32 if ip4_cidr is None else ip4_cidr
    else:
        prefix = 128 if ip6_cidr is None else ip6_cidr
    for address in addresses:
        address = ipaddress.ip_address(address)
        if address.version != ip.version:
            continue
        if ip in ipaddress.ip_network(f"{address}/{prefix}", strict=False):
            return True
    return False


def _match_all(
    directive: SPFDirective, context: SPFEvaluationContext, domain: str, depth: int
) -> bool:
    return True


def _match_ip(
    directive: SPFDirective, context: SPFEvaluationContext, domain: str, depth: int
) -> bool:
    try:
        network = ipaddress.ip_network(directive.value, strict=False)
    except ValueError:
        raise SPFPermError(f"{directive.value} is not a valid {directive.mechanism} value.")
    expected_version = 4 if directive.mechanism == "ip4" else 6
    if network.version != expected_version:
        raise SPFPermError(f"{directive.value} is not a valid {directive.mechanism} value.")
    return context["ip"] in network


def _match_a(
    directive: SPFDirective, context: SPFEvaluationContext, domain: str, depth: int
) -> bool:
    count_dns_lookup(context)
    domain_spec, ip4_cidr, ip6_cidr = split_dual_cidr(directive)
    target = _target_name(domain_spec, context, domain)
    ip = context["ip"]
    addresses = _get_addresses(target, context, ip.version)
    return _ip_in_addresses(ip, addresses, ip4_cidr, ip6_cidr)


def _match_mx(
    directive: SPFDirective, context: SPFEvaluationContext, domain: str, depth: int
) -> bool:
    count_dns_lookup(context)
    domain_spec, ip4_cidr, ip6_cidr = split_dual_cidr(directive)
    target = _target_name(domain_spec, context, domain)
    try:
        hosts = get_mx_records(target, **context["dns"])
    except DNSExceptionNXDOMAIN:
        count_void_dns_lookup(context)
        return False
    except DNSException as e:
        raise SPFTempError(f"{target}: {e}")
    if len(hosts) == 0:
        count_void_dns_lookup(context)
        return False
    # RFC 7208 § 4.6.4: no more than 10 address lookups per mx mechanism
    if len(hosts) > MX_LOOKUP_LIMIT:
        raise SPFTooManyDNSLookups(
            f"{target} has more than {MX_LOOKUP_LIMIT} MX records (RFC 7208 § 4.6.4)",
            dns_lookups=len(hosts),
        )
    ip = context["ip"]
    for host in hosts:
        addresses = _get_addresses(host["hostname"], context, ip.version)
        if _ip_in_addresses(ip, addresses, ip4_cidr, ip6_cidr):
            return True
    return False


def _match_ptr(
    directive: SPFDirective, context: SPFEvaluationContext, domain: str, depth: int
) -> bool:
    count_dns_lookup(context)
    target = _target_name(directive.value, context, domain).lower().rstrip(".")
    try:
        names = get_validated_ptr_names(str(context["ip"]), **context["dns"])
    except DNSException as e:
        # RFC 7208 § 5.5: any DNS error here, timeouts included, means the
        # mechanism does not match rather than temperror
        logging.debug(f"ptr lookup for {context['ip']} failed: {e}")
        return False
    for name in names:
        name = name.rstrip(".")
        if name == target or name.endswith(f".{target}"):
            return True
    return False


def _match_include(
    directive: SPFDirective, context: SPFEvaluationContext, domain: str, depth: int
) -> bool:
    count_dns_lookup(context)
    target = _target_name(directive.value, context, domain)
    logging.debug(f"Evaluating include:{target} from {domain}")
    try:
        result = _check_host(target, context, depth + 1, explain=False)
    except SPFRecordNotFound as e:
        raise SPFPermError(f"include:{target}: {e}")
    return result.result == "pass"


def _match_exists(
    directive: SPFDirective, context: SPFEvaluationContext, domain: str, depth: int
) -> bool:
    count_dns_lookup(context)
    target = _target_name(directive.value, context, domain)
    # exists always queries A records, whatever the client IP version
    addresses = _get_addresses(target, context, 4)
    return len(addresses) > 0


_MECHANISM_MATCHERS: dict[
    str, Callable[[SPFDirective, SPFEvaluationContext, str, int], bool]
] = {
    "all": _match_all,
    "include": _match_include,
    "a": _match_a,
    "mx": _match_mx,
    "ptr": _match_ptr,
    "ip4": _match_ip,
    "ip6": _match_ip,
    "exists": _match_exists,
}


def get_explanation(
    exp: SPFModifier, context: SPFEvaluationContext, domain: str
) -> Optional[str]:
    """
    Builds the explanation for a ``fail`` result from an ``exp`` modifier
    (RFC 7208 § 6.2)

    The lookup does not count against the DNS lookup limit. Any error
    results in no explanation.

    Args:
        exp (SPFModifier): The ``exp`` modifier
        context (SPFEvaluationContext): The evaluation context
        domain (str): The domain whose record produced the ``fail``

    Returns:
        str: The expanded explanation, or ``None``
    """
    try:
        # Lookups made for the explanation never count against the limits
        target = _target_name(exp.macro_string, {**context}, domain)
        records = get_txt_records(target, **context["dns"])
        if len(records) != 1:
            logging.debug(f"exp={target} has {len(records)} TXT records")
            return None
        return expand_macro_string(records[0], context, domain, explanation=True)
    except (SPFError, DNSException) as e:
        logging.debug(f"Unable to build an explanation from {exp.raw}: {e}")
        return None


def _directive_result(
    directive: SPFDirective,
    context: SPFEvaluationContext,
    domain: str,
    exp: Optional[SPFModifier],
) -> SPFResult:
    result = spf_qualifiers[directive.qualifier]
    ip = context["ip"]
    if result == "pass":
        return SPFResult(result, f"Allowed sender IP: {ip}")
    if result == "fail":
        explanation = None
        if exp is not None:
            explanation = get_explanation(exp, context, domain)
        if not explanation:
            explanation = f"Disallowed sender IP: {ip}"
        return SPFResult(result, explanation)
    return SPFResult(result, f"Sender IP {ip} matched {directive.raw}")


def evaluate_terms(
    terms: list[SPFTerm],
    context: SPFEvaluationContext,
    domain: str,
    depth: int = 0,
    explain: bool = True,
) -> SPFResult:
    """
    Evaluates the terms of a parsed SPF record from left to right

    The first matching directive decides the result. ``redirect`` is only
    followed when no directive matched.

    Args:
        terms (list): Parsed terms, see :func:`checkspf.spf.parse_spf_record`
        context (SPFEvaluationContext): The evaluation context
        domain (str): The domain the record belongs to
        depth (int): The current include/redirect nesting depth
        explain (bool): Build an explanation from ``exp`` on ``fail``; off
                        inside ``include``, where it would be discarded

    Returns:
        SPFResult: The result of the evaluation

    Raises:
        :exc:`checkspf.spf.SPFError`
    """
    redirect = None
    exp = None
    for term in terms:
        if not isinstance(term, SPFModifier):
            continue
        if term.name == "redirect":
            if redirect is not None:
                raise SPFSyntaxError(f"{domain}: Multiple redirect modifiers")
            redirect = term
        elif term.name == "exp":
            if exp is not None:
                raise SPFSyntaxError(f"{domain}: Multiple exp modifiers")
            exp = term
        else:
            logging.debug(f"Ignoring unknown modifier {term.raw}")

    for term in terms:
        if not isinstance(term, SPFDirective):
            continue
        matcher = _MECHANISM_MATCHERS[term.mechanism]
        if matcher(term, context, domain, depth):
            logging.debug(f"{domain}: {term.raw} matched {context['ip']}")
            return _directive_result(term, context, domain, exp if explain else None)

    if redirect is not None:
        count_dns_lookup(context)
        target = _target_name(redirect.macro_string, context, domain)
        logging.debug(f"Following redirect={target} from {domain}")
        try:
            return _check_host(target, context, depth + 1, explain=explain)
        except SPFRecordNotFound as e:
            raise SPFPermError(f"redirect={target}: {e}")

    return SPFResult("neutral", "Default result")


def _check_host(
    domain: str,
    context: SPFEvaluationContext,
    depth: int,
    *,
    explain: bool = True,
) -> SPFResult:
    if depth > MAX_RECURSION_DEPTH:
        raise SPFRecursionLimitExceeded(
            f"include/redirect nesting exceeds {MAX_RECURSION_DEPTH} levels at {domain}"
        )
    if not is_valid_domain(domain):
        raise SPFRecordNotFound(
            f"Invalid domain: {sanitize_domain_for_printing(domain)}", domain
        )
    record = query_spf_record(
        domain,
        temperror_on_dns_error=context["temperror_on_dns_error"],
        **context["dns"],
    )
    terms = parse_spf_record(record, domain)
    if len(terms) == 0:
        return SPFResult("neutral", "No policies specified")
    return evaluate_terms(terms, context, domain, depth, explain=explain)


def check_host(
    ip: Union[str, IPAddress],
    domain: str,
    sender: str,
    *,
    helo_domain: str = "",
    receiver: str = DEFAULT_RECEIVER,
    temperror_on_dns_error: bool = False,
    nameservers: Optional[Sequence[str | Nameserver]] = None,
    resolver: Optional[dns.resolver.Resolver] = None,
    timeout: float = 2.0,
    timeout_retries: int = 2,
) -> SPFResult:
    """
    Evaluates the SPF policy of a domain for a client IP address

    This never raises for problems with DNS data; every failure becomes
    one of the SPF results.

    Args:
        ip: The SMTP client IP address
        domain (str): The domain to check
        sender (str): The sender identity, ``local-part@domain``
        helo_domain (str): The HELO/EHLO name
        receiver (str): The name of the host performing the check (``%{r}``)
        temperror_on_dns_error (bool): Treat TXT lookup errors other than
                                       timeouts and NXDOMAIN as temporary
        nameservers (list): A list of nameservers to query
        resolver (dns.resolver.Resolver): A resolver object to use for DNS requests
        timeout (float): number of seconds to wait for an answer from DNS
        timeout_retries (int): The number of times to reattempt a query after a timeout

    Returns:
        SPFResult: The result and an explanation

    Raises:
        :exc:`ValueError`: The IP address is invalid
    """
    context = new_evaluation_context(
        ip,
        sender,
        helo_domain=helo_domain,
        receiver=receiver,
        temperror_on_dns_error=temperror_on_dns_error,
        nameservers=nameservers,
        resolver=resolver,
        timeout=timeout,
        timeout_retries=timeout_retries,
    )
    try:
        result = _check_host(domain, context, 0)
    except SPFError as error:
        result = SPFResult(error.result, str(error))
    logging.debug(
        f"SPF result for {context['ip']} on {domain}: {result.result} "
        f"({context['dns_lookups']} DNS lookups)"
    )
    return result
