"""Tests for the query error enhancer."""

import pytest

from dataql.queryerror import RULES, ErrorHint, classify, enhance_error, is_enhanced_error
from dataql.utils.error_handling import EnhancedQueryError


class TestClassify:
    """Tests for individual rules."""

    def test_strftime_varchar(self):
        error = Exception(
            'Binder Error: Could not choose a best candidate function for the function call '
            '"strftime(VARCHAR, STRING_LITERAL)". In order to select one, please add explicit type casts.'
        )

        enhanced = enhance_error(error)

        assert isinstance(enhanced, EnhancedQueryError)
        assert "wrong order" in enhanced.hint.message
        assert "CAST(" in enhanced.hint.example
        assert "AS DATE)" in enhanced.hint.example
        assert enhanced.original == str(error)
        assert enhanced.__cause__ is error

    def test_strftime_other_types(self):
        hint = classify(
            'Could not choose a best candidate function for the function call '
            '"strftime(INTEGER, STRING_LITERAL)"'
        )
        assert hint.message == "strftime function type mismatch"

    def test_column_not_found(self):
        hint = classify('Binder Error: Referenced column "amount" not found in FROM clause!')
        assert hint.message == "Column 'amount' not found in table"

    def test_table_not_found(self):
        hint = classify("Catalog Error: Table with name sales does not exist!")
        assert hint.message == "Table 'sales' does not exist"
        assert hint.example == ".tables"

    def test_syntax_error(self):
        hint = classify('Parser Error: syntax error at or near "FORM"')
        assert hint.message == "SQL syntax error near 'FORM'"

    def test_conversion_error(self):
        hint = classify('Conversion Error: Could not convert string "abc" to INT32')
        assert hint.message == "Cannot convert 'abc' to INT32"
        assert hint.example == "TRY_CAST('abc' AS INT32)"

    def test_division_by_zero(self):
        hint = classify("Out of Range Error: Divide by zero")
        assert "NULLIF" in hint.example

    def test_ambiguous_column(self):
        hint = classify('Binder Error: Ambiguous reference: column "id" is ambiguous')
        assert hint.message.startswith("Column 'id' is ambiguous")

    def test_group_by(self):
        hint = classify(
            'Binder Error: column "region" must appear in the GROUP BY clause or be used in an aggregate function'
        )
        assert "GROUP BY region" in hint.example

    def test_out_of_memory(self):
        hint = classify("Out of Memory Error: could not allocate block")
        assert "LIMIT" in hint.example

    def test_date_parse(self):
        hint = classify(
            'Invalid Input Error: Conversion Error: Could not parse string "22/01/2024" according to format specifier "%Y-%m-%d"'
        )
        assert hint.message == "Cannot parse date/time value '22/01/2024'"

    def test_first_match_wins(self):
        text = (
            'Could not choose a best candidate function for the function call '
            '"strftime(VARCHAR, STRING_LITERAL)"'
        )
        assert [r.name for r in RULES if r.apply(text)][0] == "strftime_varchar"

    def test_no_match(self):
        assert classify("IO Error: disk quota exceeded") is None


class TestEnhanceError:
    """Tests for enhance_error."""

    def test_none(self):
        assert enhance_error(None) is None

    def test_unrecognized_passes_through(self):
        error = RuntimeError("something unexpected")
        assert enhance_error(error) is error

    def test_string_input(self):
        enhanced = enhance_error("division by zero")
        assert isinstance(enhanced, EnhancedQueryError)
        assert enhanced.__cause__ is None

    def test_is_enhanced_error(self):
        assert is_enhanced_error(enhance_error("division by zero"))
        assert not is_enhanced_error(RuntimeError("x"))
        assert not is_enhanced_error(None)

    def test_rendering(self):
        hint = ErrorHint(original="raw", message="Message", hint="Do this", example="SELECT 1")
        assert str(hint) == "Message\n\nHint: Do this\n\nExample:\n  SELECT 1"
        assert str(ErrorHint(original="raw", message="Only message")) == "Only message"

    @pytest.mark.parametrize("text", ["division by zero", "Out of memory"])
    def test_str_is_rendered_hint(self, text):
        enhanced = enhance_error(RuntimeError(text))
        assert str(enhanced) == str(enhanced.hint)
