"""
Test suite for Weekly Pickup Orders.

Run all tests: pytest
Run unit tests only: pytest tests/unit/
Run specific file: pytest tests/unit/test_order_lifecycle_service.py -v
"""
