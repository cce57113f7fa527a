# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Human-friendly error message helpers for DocVault.

These helpers centralize wording for common configuration errors so that
all modules present consistent, actionable messages.
"""


def explain_missing_operator_address() -> str:
    """
    Explain that no operator address is configured.
    """

    return (
        "Operator address is not configured. "
        "Set DOCVAULT_OPERATOR_ADDRESS (or ADMIN_EMAIL) or pass "
        "operator_address=... to create_config()."
    )


def explain_invalid_byte_size_env(name: str, value: str | None) -> str:
    """
    Explain that a byte-size environment variable is invalid.
    """

    return (
        f"Invalid {name} value: {value!r}. "
        "It must be a positive integer number of bytes."
    )


def explain_invalid_interval_days_env(value: str | None) -> str:
    """
    Explain that AUTOBACKUP_TIME is invalid.
    """

    return (
        f"Invalid AUTOBACKUP_TIME value: {value!r}. "
        "It must be a positive integer number of days."
    )


def explain_invalid_smtp_port_env(value: str | None) -> str:
    """
    Explain that SMTP_PORT is invalid.
    """

    return (
        f"Invalid SMTP_PORT value: {value!r}. "
        "Expected an integer between 1 and 65535."
    )


def explain_missing_restore_secret() -> str:
    """
    Explain that restores are disabled until a confirmation secret exists.
    """

    return (
        "Restore confirmation secret is not configured. "
        "Set DOCVAULT_RESTORE_SECRET to enable restores."
    )


def explain_missing_smtp_host() -> str:
    """
    Explain that the SMTP channel cannot be created without a host.
    """

    return (
        "SMTP host is not configured. "
        "Set SMTP_HOST or pass smtp_host=... to create_config()."
    )


def explain_invalid_timeout_env(name: str, value: str | None) -> str:
    """
    Explain that a timeout environment variable is invalid.
    """

    return (
        f"Invalid {name} value: {value!r}. "
        "It must be a positive number of seconds."
    )
