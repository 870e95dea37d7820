"""Shared keyed state: attempts, read-time accrual, locks."""
