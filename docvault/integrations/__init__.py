# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Framework Integrations - FastAPI admin endpoints.
"""

from docvault.integrations.fastapi import (
    docvault_lifespan,
    register_docvault_routes,
    setup_docvault_plugin,
    verify_api_key,
)

__all__ = [
    "docvault_lifespan",
    "register_docvault_routes",
    "setup_docvault_plugin",
    "verify_api_key",
]
