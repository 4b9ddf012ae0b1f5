"""Rate limiting adapters.

This package keeps the counting policies (fixed and sliding window) apart
from the record store so the in-memory store can later be replaced by Redis
or another shared store without changing the API layer.
"""
