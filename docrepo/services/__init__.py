"""
Repository services: error classification, retry, caching, validation
and timestamp normalization.
"""
