"""
Depot - warehouse robot simulation voice control

This is the root package for Depot, containing shared utilities and the voice
subsystem that drives the warehouse simulation dashboard hands-free.

Core modules:
- utils: Environment parsing and byte/async helpers
- voice: Speech recognition, command matching and serialized speech output
"""

__version__ = "0.4.2"
