"""
Tests for BaseService helpers shared by every service class.
"""

import logging

import pytest
from django.contrib.auth import get_user_model

from core.exceptions import ValidationError
from core.services import BaseService


class ExampleService(BaseService):
    pass


class TestGetLogger:
    def test_logger_named_after_service(self):
        logger = ExampleService.get_logger()

        assert isinstance(logger, logging.Logger)
        assert logger.name.endswith(".ExampleService")


class TestAtomic:
    def test_rolls_back_on_error(self, db):
        """
        Given a write inside BaseService.atomic()
        When the block raises
        Then the write is rolled back
        """
        User = get_user_model()

        with pytest.raises(RuntimeError):
            with ExampleService.atomic():
                User.objects.create_user(email="rollback@example.com", password="x")
                raise RuntimeError("boom")

        assert not User.objects.filter(email="rollback@example.com").exists()


class TestValidateRequired:
    def test_passes_when_all_present(self):
        ExampleService.validate_required(title="Hello", recipient=object())

    def test_reports_each_missing_field(self):
        with pytest.raises(ValidationError) as exc_info:
            ExampleService.validate_required(title="  ", recipient=None, body="ok")

        assert exc_info.value.error_code == "VALIDATION_ERROR"
        assert set(exc_info.value.details) == {"title", "recipient"}
