"""Retention enforcement for append-only records."""

from cashflow.retention.trimmer import RetentionTrimmer

__all__ = ["RetentionTrimmer"]
