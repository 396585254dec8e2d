#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""Checks if an SMTP client is allowed to send mail for a domain using SPF"""

from __future__ import annotations

import ipaddress
from argparse import ArgumentParser

import logging

from checkspf import (
    __version__,
    check_spf,
    results_to_json,
    output_to_file,
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


def _main():
    """Called when the module in executed"""
    arg_parser = ArgumentParser(description=__doc__)
    arg_parser.add_argument(
        "ip", type=ipaddress.ip_address, help="the SMTP client IP address"
    )
    arg_parser.add_argument(
        "sender",
        help="the MAIL FROM address (use an empty string for a null sender)",
    )
    arg_parser.add_argument("helo", help="the HELO/EHLO name given by the client")
    arg_parser.add_argument(
        "-r",
        "--receiver",
        default="unknown",
        help="the name of the host performing the check",
    )
    arg_parser.add_argument(
        "--no-helo",
        action="store_true",
        default=False,
        help="skip checking the HELO identity",
    )
    arg_parser.add_argument(
        "--temperror-on-dns-error",
        action="store_true",
        default=False,
        help="return temperror instead of none when a TXT lookup fails",
    )
    arg_parser.add_argument(
        "-o",
        "--output",
        nargs="+",
        help="one or more file paths to output to "
        "(must end in .json) "
        "(silences screen output)",
    )
    arg_parser.add_argument(
        "-n", "--nameserver", nargs="+", help="nameservers to query"
    )
    arg_parser.add_argument(
        "-t",
        "--timeout",
        help="number of seconds to wait for an answer from DNS (default 2.0)",
        type=float,
        default=2.0,
    )
    arg_parser.add_argument(
        "--timeout-retries",
        help="number of times to reattempt a query after a timeout (default 2)",
        type=int,
        default=2,
    )
    arg_parser.add_argument("-v", "--version", action="version", version=__version__)
    arg_parser.add_argument(
        "--debug", action="store_true", help="enable debugging output"
    )

    args = arg_parser.parse_args()

    logging_format = "%(asctime)s - %(levelname)s: %(message)s"
    logging.basicConfig(level=logging.WARNING, format=logging_format)

    if args.debug:
        logging.getLogger().setLevel(logging.DEBUG)
        logging.debug("Debug output enabled")

    results = check_spf(
        args.ip,
        args.sender,
        args.helo,
        helo=not args.no_helo,
        receiver=args.receiver,
        temperror_on_dns_error=args.temperror_on_dns_error,
        nameservers=args.nameserver,
        timeout=args.timeout,
        timeout_retries=args.timeout_retries,
    )

    if args.output is None:
        print(results_to_json(results))
    else:
        for path in args.output:
            if not path.lower().endswith(".json"):
                logging.error(f"Output path {path} must end in .json")
            else:
                output_to_file(path, results_to_json(results))


if __name__ == "__main__":
    _main()
