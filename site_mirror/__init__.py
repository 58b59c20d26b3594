"""
Site Mirror - mirror a website to local storage for offline browsing.

This package fetches pages, downloads their embedded resources with bounded
concurrency and retries, rewrites references to local paths, and optionally
follows same-site links up to a depth limit.
"""

__version__ = "1.0.0"
__author__ = "Site Mirror Team"
