# -*- coding: utf-8 -*-
"""Constant values"""

from __future__ import annotations
import os

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

__version__ = "1.0.0"

SYNTAX_ERROR_MARKER = "➞"
DEFAULT_RECEIVER = "unknown"
CACHE_MAX_LEN = 200000
CACHE_MAX_AGE_SECONDS = 1800

# RFC 7208 § 4.6.4
DNS_LOOKUP_LIMIT = 10
VOID_DNS_LOOKUP_LIMIT = 2
MX_LOOKUP_LIMIT = 10
PTR_LOOKUP_LIMIT = 10
MAX_RECURSION_DEPTH = 10

env = os.environ

if "CACHE_MAX_LEN" in env:
    CACHE_MAX_LEN = int(env["CACHE_MAX_LEN"])
if "CACHE_MAX_AGE_SECONDS" in env:
    CACHE_MAX_AGE_SECONDS = int(env["CACHE_MAX_AGE_SECONDS"])

DNS_CACHE_MAX_LEN = CACHE_MAX_LEN
if "DNS_CACHE_MAX_LEN" in env:
    DNS_CACHE_MAX_LEN = int(env["DNS_CACHE_MAX_LEN"])
DNS_CACHE_MAX_AGE_SECONDS = CACHE_MAX_AGE_SECONDS
if "DNS_CACHE_MAX_AGE_SECONDS" in env:
    DNS_CACHE_MAX_AGE_SECONDS = int(env["DNS_CACHE_MAX_AGE_SECONDS"])

if "DNS_LOOKUP_LIMIT" in env:
    DNS_LOOKUP_LIMIT = int(env["DNS_LOOKUP_LIMIT"])
if "VOID_DNS_LOOKUP_LIMIT" in env:
    VOID_DNS_LOOKUP_LIMIT = int(env["VOID_DNS_LOOKUP_LIMIT"])
if "MX_LOOKUP_LIMIT" in env:
    MX_LOOKUP_LIMIT = int(env["MX_LOOKUP_LIMIT"])
if "PTR_LOOKUP_LIMIT" in env:
    PTR_LOOKUP_LIMIT = int(env["PTR_LOOKUP_LIMIT"])
if "MAX_RECURSION_DEPTH" in env:
    MAX_RECURSION_DEPTH = int(env["MAX_RECURSION_DEPTH"])
