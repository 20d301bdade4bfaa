"""
BeatMarket Core
Configuration, logging, errors and signing primitives
"""
