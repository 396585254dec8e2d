# -*- coding: utf-8 -*-

"""Validates email senders with the Sender Policy Framework (SPF)"""

from __future__ import annotations

import ipaddress
import json
import logging
from typing import Optional, TypedDict, Union
from collections.abc import Sequence

import dns.resolver
from dns.nameserver import Nameserver

import checkspf._constants
from checkspf._constants import DEFAULT_RECEIVER
from checkspf.evaluator import check_host, sanitize_domain_for_printing
from checkspf.spf import (
    SPF_RESULTS,
    SPFDirective,
    SPFModifier,
    SPFResult,
    parse_spf_record,
    query_spf_record,
)
from checkspf.utils import is_valid_domain

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


__version__ = checkspf._constants.__version__

__all__ = [
    "SPF_RESULTS",
    "SPFDirective",
    "SPFModifier",
    "SPFResult",
    "check_helo",
    "check_host",
    "check_spf",
    "normalize_envelope_from",
    "parse_spf_record",
    "query_spf_record",
    "received_spf_header",
    "results_to_json",
    "output_to_file",
    "validate",
]


class SPFIdentityResult(TypedDict):
    identity: str
    domain: str
    result: str
    explanation: str
    received_spf: str


class SPFCheckResults(TypedDict):
    client_ip: str
    envelope_from: str
    helo_domain: str
    mailfrom: SPFIdentityResult
    helo: Optional[SPFIdentityResult]


def normalize_envelope_from(envelope_from: str, helo_domain: str) -> tuple[str, str]:
    """
    Normalizes an SMTP ``MAIL FROM`` address

    Whitespace and one pair of angle brackets are removed. An empty
    address is replaced by the HELO name, and a missing local-part by
    ``postmaster`` (RFC 7208 § 2.4).

    Args:
        envelope_from (str): The envelope sender, e.g. ``<user@example.com>``
        helo_domain (str): The HELO/EHLO name

    Returns:
        tuple: ``(sender, domain)``
    """
    sender = envelope_from.strip()
    if sender.startswith("<"):
        sender = sender[1:]
    if sender.endswith(">"):
        sender = sender[:-1]
    sender = sender.strip()
    if sender == "":
        sender = helo_domain.strip()
    local_part, _, domain = sender.rpartition("@")
    local_part = local_part.strip() or "postmaster"
    domain = domain.strip()
    return f"{local_part}@{domain}", domain


def validate(
    ip: Union[str, ipaddress.IPv4Address, ipaddress.IPv6Address],
    envelope_from: str,
    helo_domain: str,
    *,
    receiver: str = DEFAULT_RECEIVER,
    temperror_on_dns_error: bool = False,
    nameservers: Optional[Sequence[str | Nameserver]] = None,
    resolver: Optional[dns.resolver.Resolver] = None,
    timeout: float = 2.0,
    timeout_retries: int = 2,
) -> SPFResult:
    """
    Checks if a client IP address may send mail for the ``MAIL FROM``
    identity

    Args:
        ip: The SMTP client IP address
        envelope_from (str): The ``MAIL FROM`` address, possibly empty or
                             angle-bracketed
        helo_domain (str): The HELO/EHLO name
        receiver (str): The name of the host performing the check
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
    helo_domain = helo_domain.strip()
    sender, domain = normalize_envelope_from(envelope_from, helo_domain)
    if not is_valid_domain(domain):
        return SPFResult(
            "none", f"Invalid domain: {sanitize_domain_for_printing(domain)}"
        )
    return check_host(
        ip,
        domain,
        sender,
        helo_domain=helo_domain,
        receiver=receiver,
        temperror_on_dns_error=temperror_on_dns_error,
        nameservers=nameservers,
        resolver=resolver,
        timeout=timeout,
        timeout_retries=timeout_retries,
    )


def check_helo(
    ip: Union[str, ipaddress.IPv4Address, ipaddress.IPv6Address],
    helo_domain: str,
    *,
    receiver: str = DEFAULT_RECEIVER,
    temperror_on_dns_error: bool = False,
    nameservers: Optional[Sequence[str | Nameserver]] = None,
    resolver: Optional[dns.resolver.Resolver] = None,
    timeout: float = 2.0,
    timeout_retries: int = 2,
) -> SPFResult:
    """
    Checks if a client IP address may use a HELO/EHLO name (RFC 7208 § 2.3)

    Args:
        ip: The SMTP client IP address
        helo_domain (str): The HELO/EHLO name
        receiver (str): The name of the host performing the check
        temperror_on_dns_error (bool): Treat TXT lookup errors other than
                                       timeouts and NXDOMAIN as temporary
        nameservers (list): A list of nameservers to query
        resolver (dns.resolver.Resolver): A resolver object to use for DNS requests
        timeout (float): number of seconds to wait for an answer from DNS
        timeout_retries (int): The number of times to reattempt a query after a timeout

    Returns:
        SPFResult: The result and an explanation; ``none`` if the HELO name
        is not a domain name
    """
    helo_domain = helo_domain.strip()
    if not is_valid_domain(helo_domain):
        return SPFResult(
            "none", f"Invalid HELO domain: {sanitize_domain_for_printing(helo_domain)}"
        )
    return check_host(
        ip,
        helo_domain,
        f"postmaster@{helo_domain}",
        helo_domain=helo_domain,
        receiver=receiver,
        temperror_on_dns_error=temperror_on_dns_error,
        nameservers=nameservers,
        resolver=resolver,
        timeout=timeout,
        timeout_retries=timeout_retries,
    )


def received_spf_header(
    result: SPFResult,
    ip: Union[str, ipaddress.IPv4Address, ipaddress.IPv6Address],
    envelope_from: str,
    helo_domain: str,
    *,
    receiver: Optional[str] = None,
    identity: str = "mailfrom",
) -> str:
    """
    Renders a ``Received-SPF`` header field (RFC 7208 § 9.1)

    Args:
        result (SPFResult): The result of an SPF check
        ip: The SMTP client IP address
        envelope_from (str): The ``MAIL FROM`` address
        helo_domain (str): The HELO/EHLO name
        receiver (str): The name of the host that performed the check
        identity (str): ``mailfrom`` or ``helo``

    Returns:
        str: The header field, including the ``Received-SPF:`` name
    """
    comment = result.explanation.replace("(", "[").replace(")", "]")
    envelope_from = envelope_from.strip().strip("<>").replace('"', "")
    header = f"Received-SPF: {result.result}"
    if comment:
        header += f" ({comment})"
    if receiver:
        header += f" receiver={receiver};"
    header += (
        f" client-ip={ip}; envelope-from=\"{envelope_from}\"; "
        f"helo={helo_domain}; identity={identity};"
    )
    return header


def check_spf(
    ip: Union[str, ipaddress.IPv4Address, ipaddress.IPv6Address],
    envelope_from: str,
    helo_domain: str,
    *,
    helo: bool = True,
    receiver: str = DEFAULT_RECEIVER,
    temperror_on_dns_error: bool = False,
    nameservers: Optional[Sequence[str | Nameserver]] = None,
    resolver: Optional[dns.resolver.Resolver] = None,
    timeout: float = 2.0,
    timeout_retries: int = 2,
) -> SPFCheckResults:
    """
    Checks the ``MAIL FROM`` and, optionally, the HELO identities of a
    client and returns a report that can be serialized to JSON

    Args:
        ip: The SMTP client IP address
        envelope_from (str): The ``MAIL FROM`` address
        helo_domain (str): The HELO/EHLO name
        helo (bool): Also check the HELO identity
        receiver (str): The name of the host performing the check
        temperror_on_dns_error (bool): Treat TXT lookup errors other than
                                       timeouts and NXDOMAIN as temporary
        nameservers (list): A list of nameservers to query
        resolver (dns.resolver.Resolver): A resolver object to use for DNS requests
        timeout (float): number of seconds to wait for an answer from DNS
        timeout_retries (int): The number of times to reattempt a query after a timeout

    Returns:
        dict: A ``dict`` with the following keys:
            - ``client_ip`` - The client IP address
            - ``envelope_from`` - The ``MAIL FROM`` address
            - ``helo_domain`` - The HELO/EHLO name
            - ``mailfrom`` - The ``result``, ``explanation``, checked
              ``domain`` and ``received_spf`` header for the ``MAIL FROM``
              identity
            - ``helo`` - The same for the HELO identity, or ``None``
    """
    options = {
        "receiver": receiver,
        "temperror_on_dns_error": temperror_on_dns_error,
        "nameservers": nameservers,
        "resolver": resolver,
        "timeout": timeout,
        "timeout_retries": timeout_retries,
    }
    header_receiver = None if receiver == DEFAULT_RECEIVER else receiver
    helo_domain = helo_domain.strip()
    _, domain = normalize_envelope_from(envelope_from, helo_domain)
    logging.debug(f"Checking SPF for {envelope_from} from {ip}")

    mailfrom_result = validate(ip, envelope_from, helo_domain, **options)
    results: SPFCheckResults = {
        "client_ip": str(ip),
        "envelope_from": envelope_from,
        "helo_domain": helo_domain,
        "mailfrom": {
            "identity": "mailfrom",
            "domain": domain,
            "result": mailfrom_result.result,
            "explanation": mailfrom_result.explanation,
            "received_spf": received_spf_header(
                mailfrom_result,
                ip,
                envelope_from,
                helo_domain,
                receiver=header_receiver,
            ),
        },
        "helo": None,
    }
    if helo:
        helo_result = check_helo(ip, helo_domain, **options)
        results["helo"] = {
            "identity": "helo",
            "domain": helo_domain,
            "result": helo_result.result,
            "explanation": helo_result.explanation,
            "received_spf": received_spf_header(
                helo_result,
                ip,
                envelope_from,
                helo_domain,
                receiver=header_receiver,
                identity="helo",
            ),
        }

    return results


def results_to_json(
    results: Union[SPFCheckResults, list[SPFCheckResults]],
) -> str:
    """
    Converts a dictionary of results or list of results to a JSON string

    Args:
        results (dict): A dictionary of results

    Returns:
        str: Results in JSON format
    """
    return json.dumps(results, ensure_ascii=False, indent=2)


def output_to_file(path: str, content: str):
    """
    Write given content to the given path

    Args:
        path (str): A file path
        content (str): JSON text
    """
    with open(
        path, "w", newline="\n", encoding="utf-8", errors="ignore"
    ) as output_file:
        output_file.write(content)
