"""
Logging, counters and Prometheus metrics.
"""
