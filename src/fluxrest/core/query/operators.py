# src/fluxrest/core/query/operators.py
from enum import Enum
from typing import Optional


class FilterOperator(str, Enum):
    """Filter operators accepted in query strings and JSON bodies."""

    EQ = "eq"
    NEQ = "neq"
    GT = "gt"
    GTE = "gte"
    LT = "lt"
    LTE = "lte"
    LIKE = "like"
    ILIKE = "ilike"
    IN = "in"
    IS = "is"

    @classmethod
    def parse(cls, token: str) -> Optional["FilterOperator"]:
        """Normalize an operator token. Unknown tokens give `None`."""
        try:
            return cls(str(token).strip().lower())
        except ValueError:
            return None

    @property
    def sql(self) -> str:
        return OPERATOR_MAP[self]


# Maps API operators to the SQL operator rendered between column and value.
# For example, `?age=gte.18` renders `"age" >= $1`.
OPERATOR_MAP = {
    FilterOperator.EQ: "=",       # Equal
    FilterOperator.NEQ: "!=",     # Not Equal
    FilterOperator.GT: ">",       # Greater Than
    FilterOperator.GTE: ">=",     # Greater Than or Equal
    FilterOperator.LT: "<",       # Less Than
    FilterOperator.LTE: "<=",     # Less Than or Equal
    FilterOperator.LIKE: "LIKE",  # String LIKE
    FilterOperator.ILIKE: "ILIKE",  # String ILIKE (case-insensitive)
    FilterOperator.IN: "IN",      # In a list of values
    FilterOperator.IS: "IS",      # IS NULL / IS NOT NULL / IS TRUE / IS FALSE
}

# Operators that expect a list of values, typically comma-separated.
LIST_OPERATORS = {FilterOperator.IN}

# Keywords accepted after `IS`. The value side is never bound as a parameter.
IS_KEYWORDS = {
    "null": "NULL",
    "notnull": "NOT NULL",
    "not_null": "NOT NULL",
    "true": "TRUE",
    "false": "FALSE",
}
