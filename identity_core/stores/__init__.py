"""Persistence for credentials, tokens and shared counters."""
