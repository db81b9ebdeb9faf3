"""Tests for ToolValidator and tool declarations."""

import pytest

from chatrelay.tools.registry import ToolRegistry
from chatrelay.tools.validation import ToolValidator
from tests.mock_tools import EchoTool, ExtraKeysTool, SearchStubTool, SlowTool


class TestToolValidator:
    def test_valid_args_pass(self):
        ok, err = ToolValidator.validate(EchoTool(), {"message": "hello"})
        assert ok is True
        assert err is None

    def test_missing_required_arg_fails(self):
        ok, err = ToolValidator.validate(EchoTool(), {})
        assert ok is False
        assert "message" in err

    def test_extra_unknown_keys_rejected_by_default(self):
        ok, err = ToolValidator.validate(EchoTool(), {"message": "hello", "rogue": "value"})
        assert ok is False
        assert "rogue" in err

    def test_additional_properties_true_allows_extra_keys(self):
        ok, err = ToolValidator.validate(
            ExtraKeysTool(), {"base_param": "hello", "extra": "stuff", "another": 42}
        )
        assert ok is True
        assert err is None

    def test_type_mismatch(self):
        ok, err = ToolValidator.validate(EchoTool(), {"message": 12345})
        assert ok is False
        assert err is not None

    def test_non_object_arguments(self):
        ok, err = ToolValidator.validate(EchoTool(), ["hello"])
        assert ok is False
        assert err == "arguments for echo must be an object"

    def test_no_required_fields_accepts_empty(self):
        ok, err = ToolValidator.validate(SlowTool(), {})
        assert ok is True


class TestDeclarations:
    def test_declaration_is_normalized(self):
        decl = SearchStubTool().declaration()
        assert decl["name"] == "web_search"
        assert decl["parameters"]["type"] == "object"
        assert decl["parameters"]["additionalProperties"] is False
        assert decl["parameters"]["required"] == ["query"]

    def test_explicit_additional_properties_kept(self):
        decl = ExtraKeysTool().declaration()
        assert decl["parameters"]["additionalProperties"] is True

    def test_registry_lists_sorted_and_rejects_duplicates(self):
        reg = ToolRegistry()
        reg.register(SearchStubTool())
        reg.register(EchoTool())
        assert [t.name for t in reg.list()] == ["echo", "web_search"]
        assert [d["name"] for d in reg.declarations()] == ["echo", "web_search"]

        with pytest.raises(ValueError, match="echo"):
            reg.register(EchoTool())

        reg.register(EchoTool(), overwrite=True)
        assert len(reg) == 2
        assert reg.get("missing") is None
