"""Stable failure categories for fetch, parse and refresh operations.

Used by: errors.classify_error, refresh (feeds.last_error prefix), API problem codes.
"""

TIMEOUT = "timeout"
NETWORK = "network"
PARSE = "parse"
FETCH = "fetch"
UNKNOWN = "unknown"

# Caller input / lookup codes (API only, never persisted)
VALIDATION = "validation"
NOT_FOUND = "not_found"
