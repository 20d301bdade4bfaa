"""
BeatMarket HTTP API
"""
