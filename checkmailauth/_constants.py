# -*- coding: utf-8 -*-
"""Constant values"""

from __future__ import annotations
import platform
import os

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

__version__ = "1.0.0"

OS = platform.system()
OS_RELEASE = platform.release()
USER_AGENT = f"Mozilla/5.0 (({OS} {OS_RELEASE})) checkmailauth/{__version__}"

env = os.environ

DEFAULT_DOH_URL = env.get("DOH_URL", "https://cloudflare-dns.com/dns-query")
DEFAULT_HTTP_TIMEOUT = 2.0
SPF_LOOKUP_LIMIT = 10
BULK_BATCH_SIZE = int(env.get("BULK_BATCH_SIZE", 5))
CACHE_MAX_LEN = int(env.get("CACHE_MAX_LEN", 200000))
CACHE_MAX_AGE_SECONDS = int(env.get("CACHE_MAX_AGE_SECONDS", 1800))
DNS_CACHE_MAX_LEN = int(env.get("DNS_CACHE_MAX_LEN", CACHE_MAX_LEN))
DNS_CACHE_MAX_AGE_SECONDS = int(
    env.get("DNS_CACHE_MAX_AGE_SECONDS", CACHE_MAX_AGE_SECONDS)
)
