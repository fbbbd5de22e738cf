"""
Background Jobs for Delphi Panels.

This module contains scheduled jobs:
- digest_cron: Daily/weekly notification digest emails
"""

from .digest_cron import run_digest_job

__all__ = ["run_digest_job"]
