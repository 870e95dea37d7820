"""Passive-content read-time accrual."""
