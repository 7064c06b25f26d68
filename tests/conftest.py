# tests/conftest.py
# Shared record sets for the pivot engine tests.

import pytest


@pytest.fixture()
def status_orders():
    return [
        {'orderNumber': 'SO-1', 'status': 'completed', 'customerName': 'Alice', 'totalAmount': 100},
        {'orderNumber': 'SO-2', 'status': 'completed', 'customerName': 'Bob', 'totalAmount': 50},
        {'orderNumber': 'SO-3', 'status': 'pending', 'customerName': 'Alice', 'totalAmount': 20},
    ]


@pytest.fixture()
def store_orders():
    """Two statuses, two stores, one order without an amount"""
    return [
        {'orderNumber': 'SO-10', 'status': 'shipped', 'storeName': 'Mall', 'totalAmount': 30.5, 'taxAmount': 2},
        {'orderNumber': 'SO-11', 'status': 'draft', 'storeName': 'Airport', 'totalAmount': 12, 'taxAmount': 1},
        {'orderNumber': 'SO-12', 'status': 'shipped', 'storeName': 'Airport', 'totalAmount': 7.5},
        {'orderNumber': 'SO-13', 'status': 'shipped', 'storeName': 'Mall', 'totalAmount': None, 'taxAmount': 4},
        {'orderNumber': 'SO-14', 'status': 'draft', 'storeName': 'Mall', 'totalAmount': 40, 'taxAmount': 3},
    ]
