"""Shared infrastructure services (database, pub/sub, job log, notifications, locks)."""
