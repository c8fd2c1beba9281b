"""
Durable Job Queue

A lease-based job queue and dispatcher on top of a shared relational store:
concurrent dequeue with FOR UPDATE SKIP LOCKED, exponential backoff retries,
and crash recovery of abandoned leases.
"""

__version__ = "1.0.0"
