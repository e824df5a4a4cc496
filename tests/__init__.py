"""
Test Suite for the Portfolio Analytics Engine

Includes:
- End-to-end tests from stored transactions to analytics
- Idempotence checks across repeated runs
"""
