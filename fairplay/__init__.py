"""Fairplay: provably fair game outcome and wager settlement engine."""

__version__ = "0.1.0"
