# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
DocVault - Full-system backup and restore for document stores.

Snapshots every record set into one portable artifact, delivers it to an
operator as an attachment or a download link depending on its size, and
rebuilds the whole store from such an artifact behind an operator
confirmation. Package name: docvault.
"""

__version__ = "0.1.0"

# Configuration creation (user-facing API)
from docvault.builder import create_config

# Core functions
from docvault.core import (
    initialize_engine_state,
    run_backup,
    run_report,
    run_restore,
    shutdown_engine_state,
)

# Environment-based configuration
from docvault.env import create_config_from_env

__all__ = [
    # Version
    "__version__",
    # Configuration creation
    "create_config",
    "create_config_from_env",
    # Core orchestration functions
    "initialize_engine_state",
    "run_backup",
    "run_report",
    "run_restore",
    "shutdown_engine_state",
]
