"""Core domain package for errsieve.

Core contains app identity, fingerprint matching, deduplication and
notification resolution without any storage or delivery-specific code,
keeping the business logic portable.
"""
