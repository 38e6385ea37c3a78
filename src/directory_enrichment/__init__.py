"""
Directory Enrichment - identifier resolution for directory-backed data.

Finds directory object ids and partner UPNs in audit logs, sign-in records
and similar data, resolves them to display names through batched,
rate-limit-aware lookups, and substitutes the names back into the data.
"""

__version__ = "0.1.0"
