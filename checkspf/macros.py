# -*- coding: utf-8 -*-
"""SPF macro expansion (RFC 7208 § 7)"""

from __future__ import annotations

import logging
import re
import time
from urllib.parse import quote

from checkspf.spf import (
    SPFEvaluationContext,
    SPFMacro,
    count_dns_lookup,
    tokenize_macro_string,
)
from checkspf.utils import DNSException, get_validated_ptr_names

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

MAX_DOMAIN_LENGTH = 253


def truncate_domain(domain: str, max_length: int = MAX_DOMAIN_LENGTH) -> str:
    """
    Removes leading labels until a domain is at most ``max_length`` long

    Args:
        domain (str): An expanded domain name
        max_length (int): The maximum length

    Returns:
        str: The truncated domain
    """
    while len(domain) > max_length and "." in domain:
        domain = domain.split(".", 1)[1]
    return domain


def _ip_macro_value(context: SPFEvaluationContext) -> str:
    ip = context["ip"]
    if ip.version == 4:
        return str(ip)
    # RFC 7208 § 7.3: dot-separated nibbles, meant for use with %{ir}
    return ".".join(ip.exploded.replace(":", ""))


def _validated_domain(
    context: SPFEvaluationContext, domain: str, explanation: bool
) -> str:
    """Picks the validated PTR name used by the ``p`` macro (RFC 7208 § 7.3)"""
    if not explanation:
        count_dns_lookup(context)
    try:
        names = get_validated_ptr_names(str(context["ip"]), **context["dns"])
    except DNSException as e:
        logging.debug(f"PTR validation for {context['ip']} failed: {e}")
        return "unknown"
    domain = domain.lower().rstrip(".")
    if domain in names:
        return domain
    for name in names:
        if name.endswith(f".{domain}"):
            return name
    if len(names) > 0:
        return names[0]
    return "unknown"


def _macro_value(
    macro: SPFMacro,
    context: SPFEvaluationContext,
    domain: str,
    explanation: bool,
) -> str:
    letter = macro.letter
    if letter == "s":
        return context["sender"]
    if letter == "l":
        return context["local_part"]
    if letter == "o":
        return context["sender_domain"]
    if letter == "d":
        return domain
    if letter == "i":
        return _ip_macro_value(context)
    if letter == "p":
        return _validated_domain(context, domain, explanation)
    if letter == "v":
        return "in-addr" if context["ip"].version == 4 else "ip6"
    if letter == "h":
        return context["helo_domain"]
    if letter == "c":
        return str(context["ip"])
    if letter == "r":
        return context["receiver"]
    # t
    return str(int(time.time()))


def apply_macro_transformers(value: str, macro: SPFMacro) -> str:
    """
    Applies a macro's delimiters, reverse flag, and digit transformer

    The value is split on the delimiters (``.`` by default), optionally
    reversed, cut down to the rightmost ``digits`` parts, and joined back
    together with dots. Uppercase macros are URL escaped last.

    Args:
        value (str): The substituted macro letter value
        macro (SPFMacro): The parsed macro

    Returns:
        str: The transformed value
    """
    delimiters = macro.delimiters or "."
    parts = re.split(f"[{re.escape(delimiters)}]", value)
    if macro.reverse:
        parts.reverse()
    if macro.digits is not None and macro.digits < len(parts):
        parts = parts[-macro.digits :]
    value = ".".join(parts)
    if macro.url_escape:
        value = quote(value, safe="")
    return value


def expand_macro_string(
    macro_string: str,
    context: SPFEvaluationContext,
    domain: str,
    *,
    explanation: bool = False,
) -> str:
    """
    Expands the macros in a domain-spec or explanation string

    Args:
        macro_string (str): The string to expand
        context (SPFEvaluationContext): The evaluation context
        domain (str): The domain currently being evaluated (``%{d}``)
        explanation (bool): Allow the ``c``, ``r`` and ``t`` letters, which
                            are only valid in explanation strings

    Returns:
        str: The expanded string

    Raises:
        :exc:`checkspf.spf.SPFSyntaxError`
        :exc:`checkspf.spf.SPFTooManyDNSLookups`
    """
    expanded = ""
    for token in tokenize_macro_string(macro_string, domain, explanation=explanation):
        if isinstance(token, str):
            expanded += token
            continue
        value = _macro_value(token, context, domain, explanation)
        expanded += apply_macro_transformers(value, token)
    return expanded


def expand_domain_spec(
    domain_spec: str,
    context: SPFEvaluationContext,
    domain: str,
) -> str:
    """
    Expands a mechanism or modifier domain-spec into a name to query

    Args:
        domain_spec (str): The domain-spec; the current domain if empty
        context (SPFEvaluationContext): The evaluation context
        domain (str): The domain currently being evaluated

    Returns:
        str: The target name, at most 253 characters long
    """
    if domain_spec == "":
        return domain
    if "%" not in domain_spec:
        return domain_spec
    return truncate_domain(expand_macro_string(domain_spec, context, domain))
