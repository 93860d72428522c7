"""Tests for mcp/tools/errors.py: error response builders and utilities.

Covers:
- build_error_response() structure and format
- translate_sync_error() mapping of engine exceptions
- require_int() / require_str() argument helpers
"""

import mcp.types as types
import pytest

from quote_sync.mcp.tools.errors import (
    build_error_response,
    require_int,
    require_str,
    translate_sync_error,
)
from quote_sync.sync.errors import (
    ConflictResolutionError,
    GatewayError,
    RecordNotFoundError,
    SyncError,
)


def _get_error_text(result: types.CallToolResult) -> str:
    """Extract text from first content item with type narrowing for Pyright."""
    content = result.content[0]
    assert isinstance(content, types.TextContent)
    return content.text


# ---------------------------------------------------------------------------
# build_error_response tests
# ---------------------------------------------------------------------------


class TestBuildErrorResponse:
    """Tests for build_error_response()."""

    def test_returns_error_result(self):
        result = build_error_response("not_found", "Not found", "Try again")
        assert isinstance(result, types.CallToolResult)
        assert result.isError is True
        assert len(result.content) == 1

    def test_error_format(self):
        """Text follows the 'Error (type): message / Action:' layout."""
        result = build_error_response(
            "validation_error", "id is required", "Pass an integer id."
        )
        assert _get_error_text(result) == (
            "Error (validation_error): id is required\n\n"
            "Action: Pass an integer id."
        )


# ---------------------------------------------------------------------------
# translate_sync_error tests
# ---------------------------------------------------------------------------


class TestTranslateSyncError:
    """Tests for translate_sync_error()."""

    def test_not_found(self):
        text = _get_error_text(translate_sync_error(RecordNotFoundError(12)))
        assert text.startswith("Error (not_found): Record 12 not found")
        assert "quote_list" in text

    def test_resolution_error(self):
        text = _get_error_text(
            translate_sync_error(ConflictResolutionError("No conflicts"))
        )
        assert text.startswith("Error (resolution_error)")
        assert "sync_conflicts" in text

    def test_gateway_error(self):
        text = _get_error_text(translate_sync_error(GatewayError("timed out")))
        assert text.startswith("Error (remote_unavailable): timed out")
        assert "Pending changes are kept" in text

    def test_generic_sync_error(self):
        text = _get_error_text(translate_sync_error(SyncError("busy")))
        assert text.startswith("Error (sync_error): busy")


# ---------------------------------------------------------------------------
# Argument helpers
# ---------------------------------------------------------------------------


class TestRequireInt:
    @pytest.mark.parametrize("value, expected", [(3, 3), ("4", 4)])
    def test_valid(self, value, expected):
        assert require_int({"id": value}, "id") == expected

    def test_missing(self):
        with pytest.raises(ValueError, match="id is required"):
            require_int({}, "id")

    @pytest.mark.parametrize("value", [True, "three", [1]])
    def test_invalid(self, value):
        with pytest.raises(ValueError, match="must be an integer"):
            require_int({"id": value}, "id")


class TestRequireStr:
    def test_valid(self):
        assert require_str({"text": "Hi"}, "text") == "Hi"

    @pytest.mark.parametrize("args", [{}, {"text": "   "}, {"text": 5}])
    def test_missing_or_blank(self, args):
        with pytest.raises(ValueError, match="text is required"):
            require_str(args, "text")
