"""Tests for input validation."""

import pytest

from switchboard.catalog import ModelCatalog
from switchboard.schemas import RequestContext, RequestOptions
from switchboard.validation import (
    MAX_CONTENT_LENGTH,
    ValidationError,
    validate_content,
    validate_models,
    validate_request,
)

from conftest import TEST_MODELS


class TestValidateContent:

    def test_valid(self):
        validate_content("Hello")

    @pytest.mark.parametrize("content", ["", "   \n\t", None, 42])
    def test_invalid(self, content):
        with pytest.raises(ValidationError):
            validate_content(content)

    def test_too_long(self):
        with pytest.raises(ValidationError, match="too long"):
            validate_content("x" * (MAX_CONTENT_LENGTH + 1))


class TestValidateRequest:

    def setup_method(self):
        self.catalog = ModelCatalog(TEST_MODELS)

    def test_valid(self):
        validate_request("Hello", RequestContext(), RequestOptions(model="alpha"), self.catalog)

    @pytest.mark.parametrize("options", [
        RequestOptions(max_tokens=0),
        RequestOptions(max_tokens=200_000),
        RequestOptions(temperature=2.5),
        RequestOptions(temperature=-0.1),
        RequestOptions(expected_output_tokens=-1),
        RequestOptions(timeout_s=0),
        RequestOptions(timeout_s=601),
        RequestOptions(model="nope"),
    ])
    def test_invalid_options(self, options):
        with pytest.raises(ValidationError):
            validate_request("Hello", RequestContext(), options, self.catalog)

    def test_invalid_context(self):
        with pytest.raises(ValidationError, match="preferred_model"):
            validate_request("Hello", RequestContext(preferred_model="nope"), RequestOptions(), self.catalog)
        with pytest.raises(ValidationError, match="language"):
            validate_request("Hello", RequestContext(language=" "), RequestOptions(), self.catalog)

    def test_validate_models(self):
        validate_models(["alpha", "bravo"], self.catalog)
        with pytest.raises(ValidationError):
            validate_models(["alpha", "zulu"], self.catalog)
