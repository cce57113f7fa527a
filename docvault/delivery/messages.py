# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Operator-facing notification bodies.
"""

from datetime import datetime
from html import escape
from typing import Any, Dict, List

from docvault.config import MIB

BACKUP_SUBJECT = "Your Scheduled Backup + Backup Report"
MANUAL_BACKUP_SUBJECT = "Full Backup"
FAILURE_SUBJECT = "Scheduled Backup Failed"
REPORT_SUBJECT = "Backup Report"


def _format_time(moment: datetime) -> str:
    return moment.strftime("%Y-%m-%d %H:%M:%S %Z").strip()


def render_collection_list(collection_stats: List[Dict[str, Any]]) -> str:
    items = "".join(
        f"<li>{escape(str(stat['name']))}: {stat['count']} documents</li>"
        for stat in collection_stats
    )
    return items or "<li>No collections found</li>"


def render_backup_html(
    generated_at: datetime,
    size_bytes: int,
    collection_stats: List[Dict[str, Any]],
    download_url: str | None = None,
) -> str:
    """Summary sent with every backup, inline or link."""
    size_mb = f"{size_bytes / MIB:.2f}"

    html = f"""
      <h2>Your Backup + Backup Report</h2>
      <p>The backup was generated at <strong>{_format_time(generated_at)}</strong>.</p>
      <ul>
        <li><strong>Backup size:</strong> {size_mb} MB ({size_bytes} bytes)</li>
        <li><strong>Total collections:</strong> {len(collection_stats)}</li>
      </ul>
      <h3>Collections</h3>
      <ul>
        {render_collection_list(collection_stats)}
      </ul>
    """

    if download_url:
        link = escape(download_url, quote=True)
        html += f"""
      <p>The backup file was too large to attach. You can download it securely using this link:</p>
      <p><a href="{link}">{link}</a></p>
    """
    else:
        html += "<p>The full backup file is attached to this email.</p>"

    html += (
        "<p>This backup contains documents for all registered collections. "
        "No media content is included, only metadata and URLs.</p>"
    )
    return html


def render_backup_text(
    generated_at: datetime,
    size_bytes: int,
    collection_stats: List[Dict[str, Any]],
    download_url: str | None = None,
) -> str:
    lines = [
        f"Backup generated at {_format_time(generated_at)}",
        f"Size: {size_bytes} bytes",
        f"Collections: {len(collection_stats)}",
    ]
    lines.extend(f"  {stat['name']}: {stat['count']} documents" for stat in collection_stats)
    if download_url:
        lines.append(f"Download: {download_url}")
    else:
        lines.append("The backup file is attached.")
    return "\n".join(lines)


def render_failure_html(failed_at: datetime, error: str) -> str:
    return (
        f"<p>The scheduled backup failed at {_format_time(failed_at)}.</p>"
        f"<p>Error: <pre>{escape(error)}</pre></p>"
    )


def render_report_html(generated_at: datetime, stats: Dict[str, int]) -> str:
    items = "".join(
        f"<li>{escape(name)}: {count}</li>" for name, count in stats.items()
    )
    return (
        f"<p>Attached is the latest backup report generated at "
        f"{_format_time(generated_at)} (non-media, summarized).</p>"
        f"<ul>{items}</ul>"
    )
