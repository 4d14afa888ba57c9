"""
Tests for input validation and the exception hierarchy.
"""

import pytest

from openagency.exceptions import (
    DefinitionValidationError,
    OpenAgencyError,
    ProviderError,
    RunFailedError,
)
from openagency.exceptions import ValidationError as BaseValidationError
from openagency.validation import InputValidationError, validate_message, validate_name


class TestExceptionInheritance:
    """Tests that InputValidationError inherits from the package ValidationError."""

    def test_inherits_from_validation_error(self):
        assert issubclass(InputValidationError, BaseValidationError)
        assert issubclass(InputValidationError, OpenAgencyError)

    def test_run_failures_are_provider_errors(self):
        error = RunFailedError("Sending message failed.", status="failed", run_id="run_1")
        assert isinstance(error, ProviderError)
        assert error.message == "Sending message failed."

    def test_definition_error_formatting(self):
        error = DefinitionValidationError("Missing agent name", path="name", suggestion="Add one")
        assert str(error) == "name: Missing agent name\n  Hint: Add one"


class TestValidateMessage:
    """Tests for validate_message function."""

    def test_valid_message_passes(self):
        validate_message("hello")

    def test_whitespace_is_a_message(self):
        validate_message(" ")

    def test_empty_string_raises(self):
        with pytest.raises(InputValidationError) as exc:
            validate_message("")
        assert "cannot be empty" in str(exc.value)
        assert exc.value.field == "message"

    @pytest.mark.parametrize("value", [None, 42, b"bytes", ["hello"]])
    def test_non_string_raises(self, value):
        with pytest.raises(InputValidationError) as exc:
            validate_message(value)
        assert "must be a non-empty string" in str(exc.value)
        assert exc.value.value == value


class TestValidateName:
    """Tests for validate_name function."""

    def test_valid_name_passes(self):
        validate_name("Wikipedia Agency")

    @pytest.mark.parametrize("value", ["", "   ", None, 7])
    def test_invalid_names_raise(self, value):
        with pytest.raises(InputValidationError) as exc:
            validate_name(value, "tree_name")
        assert exc.value.field == "tree_name"
