"""
Core domain: record models, wire codec and error types.
"""
