"""
Store pickup availability monitor.

This package polls the Apple Store pickup-availability endpoint (with a
headless-browser fallback), tracks per-store availability between polls and
sends a rate-limited SMS when the preferred variant becomes available for
pickup.  See DESIGN.md for details.
"""

__all__ = [
    "config",
    "control",
    "gate",
    "main",
    "notifier",
    "scheduler",
    "scraper",
    "server",
    "tracker",
    "utils",
]
