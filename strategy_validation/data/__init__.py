"""Candle series validation and frequency helpers."""
