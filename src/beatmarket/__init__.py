"""
BeatMarket
Asynchronous beat fulfillment, post-processing and download entitlement service
"""

__version__ = "0.1.0"
