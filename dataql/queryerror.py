"""Query error enhancer.

Turns raw DuckDB error text into a short message, a hint and an example.
Rules are tried in order and the first match wins, so specific patterns must
come before general ones.
"""

import re
from dataclasses import dataclass
from typing import Callable, List, Optional, Pattern, Union

from .utils.error_handling import EnhancedQueryError


@dataclass(frozen=True)
class ErrorHint:
    """User-facing explanation of an engine error."""

    original: str
    message: str
    hint: str = ""
    example: str = ""

    def __str__(self) -> str:
        text = self.message
        if self.hint:
            text += "\n\nHint: " + self.hint
        if self.example:
            text += "\n\nExample:\n  " + self.example
        return text


HintBuilder = Callable[[re.Match, str], ErrorHint]


@dataclass(frozen=True)
class ErrorRule:
    """A pattern plus the builder that turns its match into a hint."""

    name: str
    pattern: Pattern[str]
    build: HintBuilder

    def apply(self, text: str) -> Optional[ErrorHint]:
        match = self.pattern.search(text)
        if match is None:
            return None
        return self.build(match, text)


def _first_group(match: re.Match) -> str:
    """First non-empty capture group (alternations capture in different slots)."""
    for group in match.groups():
        if group:
            return group
    return ""


def _strftime_varchar(match: re.Match, original: str) -> ErrorHint:
    return ErrorHint(
        original=original,
        message="strftime function received arguments in wrong order or with incompatible types",
        hint=(
            "The strftime function expects: strftime(format_string, date_value)\n"
            "If your date column is stored as VARCHAR, you need to cast it to DATE first."
        ),
        example="strftime('%Y-%m', CAST(date_column AS DATE))",
    )


def _strftime_mismatch(match: re.Match, original: str) -> ErrorHint:
    return ErrorHint(
        original=original,
        message="strftime function type mismatch",
        hint=(
            "The strftime function expects: strftime(format_string, date_value)\n"
            "Format string must be first, followed by a DATE, TIMESTAMP, or TIMESTAMP_NS value."
        ),
        example=(
            "strftime('%Y-%m-%d', date_column)\n"
            "  strftime('%Y-%m', CAST(varchar_date AS DATE))"
        ),
    )


def _column_not_found(match: re.Match, original: str) -> ErrorHint:
    column = _first_group(match)
    return ErrorHint(
        original=original,
        message=f"Column '{column}' not found in table",
        hint=(
            "Check the column name for typos. Column names are case-sensitive.\n"
            "Use .tables or \\d to list available tables, and \\dt <table> to see column names."
        ),
        example="\\dt my_table",
    )


def _table_not_found(match: re.Match, original: str) -> ErrorHint:
    table = _first_group(match)
    return ErrorHint(
        original=original,
        message=f"Table '{table}' does not exist",
        hint=(
            "Check the table name for typos. Table names are derived from file names.\n"
            "Use .tables or \\d to list available tables."
        ),
        example=".tables",
    )


def _syntax_error(match: re.Match, original: str) -> ErrorHint:
    token = _first_group(match)
    return ErrorHint(
        original=original,
        message=f"SQL syntax error near '{token}'",
        hint=(
            "Check your SQL syntax. Common issues:\n"
            "- Missing quotes around string values\n"
            "- Missing commas between columns\n"
            "- Typos in SQL keywords (SELECT, FROM, WHERE, etc.)"
        ),
        example="SELECT * FROM table WHERE column = 'value'",
    )


def _conversion_error(match: re.Match, original: str) -> ErrorHint:
    value, target_type = match.group(1), match.group(2)
    return ErrorHint(
        original=original,
        message=f"Cannot convert '{value}' to {target_type}",
        hint=(
            "The value cannot be automatically converted to the expected type.\n"
            "Use TRY_CAST for safe conversion that returns NULL on failure."
        ),
        example=f"TRY_CAST('{value}' AS {target_type})",
    )


def _division_by_zero(match: re.Match, original: str) -> ErrorHint:
    return ErrorHint(
        original=original,
        message="Division by zero error",
        hint="Use NULLIF to handle potential zero divisors, which returns NULL instead of error.",
        example="SELECT a / NULLIF(b, 0) FROM table",
    )


def _ambiguous_column(match: re.Match, original: str) -> ErrorHint:
    column = match.group(1)
    return ErrorHint(
        original=original,
        message=f"Column '{column}' is ambiguous (exists in multiple tables)",
        hint="When joining tables with same column names, qualify the column with the table name.",
        example=f"SELECT table1.{column}, table2.{column} FROM table1 JOIN table2 ON ...",
    )


def _group_by(match: re.Match, original: str) -> ErrorHint:
    column = match.group(1)
    return ErrorHint(
        original=original,
        message=f"Column '{column}' must be in GROUP BY or used with an aggregate function",
        hint=(
            "When using GROUP BY, all selected columns must either:\n"
            "1. Be in the GROUP BY clause, or\n"
            "2. Be used with an aggregate function (SUM, COUNT, AVG, etc.)"
        ),
        example=f"SELECT {column}, COUNT(*) FROM table GROUP BY {column}",
    )


def _out_of_memory(match: re.Match, original: str) -> ErrorHint:
    return ErrorHint(
        original=original,
        message="Memory allocation failed - data too large",
        hint=(
            "The query requires more memory than available. Try:\n"
            "1. Add LIMIT to reduce result size\n"
            "2. Filter data with WHERE clause\n"
            "3. Use --lines flag to limit imported rows"
        ),
        example="SELECT * FROM large_table LIMIT 1000",
    )


def _date_parse(match: re.Match, original: str) -> ErrorHint:
    value = match.group(1)
    return ErrorHint(
        original=original,
        message=f"Cannot parse date/time value '{value}'",
        hint=(
            "The string doesn't match the expected date/time format.\n"
            "Use strptime with the correct format specifier for your data."
        ),
        example="strptime('2024-01-22', '%Y-%m-%d')\n  strptime('22/01/2024', '%d/%m/%Y')",
    )


_CANDIDATE = r'Could not choose a best candidate function for the function call '

# Order matters: the VARCHAR strftime rule is a special case of the next one.
RULES: List[ErrorRule] = [
    ErrorRule(
        "strftime_varchar",
        re.compile(_CANDIDATE + r'"strftime\(VARCHAR, STRING_LITERAL\)"', re.IGNORECASE),
        _strftime_varchar,
    ),
    ErrorRule(
        "strftime_mismatch",
        re.compile(_CANDIDATE + r'"strftime\([^)]+\)"', re.IGNORECASE),
        _strftime_mismatch,
    ),
    ErrorRule(
        "column_not_found",
        re.compile(
            r'column\s+"?([^"]+?)"?\s+not found|Binder Error:.*Referenced column "([^"]+)" not found',
            re.IGNORECASE,
        ),
        _column_not_found,
    ),
    ErrorRule(
        "table_not_found",
        re.compile(
            r'Table with name\s+"?([^"]+?)"?\s+does not exist|Catalog Error:.*Table.*"([^"]+)".*does not exist',
            re.IGNORECASE,
        ),
        _table_not_found,
    ),
    ErrorRule(
        "syntax_error",
        re.compile(
            r'syntax error at or near "([^"]+)"|Parser Error:.*syntax error at or near "([^"]+)"',
            re.IGNORECASE,
        ),
        _syntax_error,
    ),
    ErrorRule(
        "conversion_error",
        re.compile(r'Conversion Error:.*Could not convert string "([^"]+)" to (\w+)', re.IGNORECASE),
        _conversion_error,
    ),
    ErrorRule(
        "division_by_zero",
        re.compile(r"division by zero|Divide by zero", re.IGNORECASE),
        _division_by_zero,
    ),
    ErrorRule(
        "ambiguous_column",
        re.compile(r'Binder Error:.*column "([^"]+)" is ambiguous', re.IGNORECASE),
        _ambiguous_column,
    ),
    ErrorRule(
        "group_by",
        re.compile(r'Binder Error:.*column "([^"]+)" must appear in the GROUP BY clause', re.IGNORECASE),
        _group_by,
    ),
    ErrorRule(
        "out_of_memory",
        re.compile(r"memory allocation failed|Out of memory|OutOfMemoryException", re.IGNORECASE),
        _out_of_memory,
    ),
    ErrorRule(
        "date_parse",
        re.compile(r'Conversion Error:.*Could not parse string "([^"]+)" according to format', re.IGNORECASE),
        _date_parse,
    ),
]


def classify(text: str, rules: Optional[List[ErrorRule]] = None) -> Optional[ErrorHint]:
    """Return the hint of the first matching rule, or None."""
    for rule in RULES if rules is None else rules:
        hint = rule.apply(text)
        if hint is not None:
            return hint
    return None


def enhance_error(
    error: Union[BaseException, str, None],
) -> Union[BaseException, str, None]:
    """Translate an engine error into an EnhancedQueryError when possible.

    Args:
        error: Exception (or raw message) raised by the engine

    Returns:
        EnhancedQueryError chained to ``error`` when a rule matches; otherwise
        ``error`` itself, unchanged
    """
    if error is None:
        return None

    hint = classify(str(error))
    if hint is None:
        return error

    enhanced = EnhancedQueryError(hint)
    if isinstance(error, BaseException):
        enhanced.__cause__ = error
    return enhanced


def is_enhanced_error(error: Optional[BaseException]) -> bool:
    """Check whether an error came out of enhance_error."""
    return isinstance(error, EnhancedQueryError)
