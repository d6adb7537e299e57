"""
Shared fixtures for the bank CRM test suite
"""

import logging

import pytest


class ListHandler(logging.Handler):
    """Collects emitted records for inspection"""

    def __init__(self):
        super().__init__(level=logging.DEBUG)
        self.records = []

    def emit(self, record):
        self.records.append(record)


@pytest.fixture
def captured_logs():
    """Capture everything logged under the bank_crm logger hierarchy"""
    logger = logging.getLogger("bank_crm")
    handler = ListHandler()
    old_level = logger.level
    logger.addHandler(handler)
    logger.setLevel(logging.DEBUG)
    try:
        yield handler.records
    finally:
        logger.removeHandler(handler)
        logger.setLevel(old_level)
