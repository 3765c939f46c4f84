# Copyright (c) 2025 CoReason, Inc.
#
# This software is proprietary and dual-licensed.
# Licensed under the Prosperity Public License 3.0 (the "License").
# A copy of the license is available at https://prosperitylicense.com/versions/3.0.0
# For details, see the LICENSE file.
# Commercial use beyond a 30-day trial requires a separate license.
#
# Source Code: https://github.com/CoReason-AI/coreason_sandbox

import os

from coreason_devbox.utils.logger import logger

ENV_PREFIX = "COREASON_DEVBOX_"


class VaultIntegrator:
    """
    Reads secrets from environment variables.

    A bare key (``E2B_API_KEY``) wins over its prefixed form
    (``COREASON_DEVBOX_E2B_API_KEY``).
    """

    def __init__(self, environ: dict[str, str] | None = None):
        self._environ = environ

    def _lookup(self, key: str) -> str | None:
        if self._environ is not None:
            return self._environ.get(key)
        return os.getenv(key)

    def get_secret(self, key: str) -> str | None:
        """
        Fetch a secret by key. Returns None when it is not set.
        """
        val = self._lookup(key)
        if not val:
            val = self._lookup(f"{ENV_PREFIX}{key}")

        if not val:
            logger.debug(f"Secret {key} not found in environment.")

        return val or None
