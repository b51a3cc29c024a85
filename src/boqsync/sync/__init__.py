"""Submission, flush and approval-state synchronization."""
