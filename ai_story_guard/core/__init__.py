"""
Core modules for AI Story Guard.

This package contains the content cache, rate limiter, safety gate,
character consistency analyzer and the service facade tying them together.
"""
