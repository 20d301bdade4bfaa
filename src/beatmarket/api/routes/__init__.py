"""
BeatMarket API Routes
"""

from . import beats, callbacks, downloads, generation, orders, samples

__all__ = ["beats", "callbacks", "downloads", "generation", "orders", "samples"]
