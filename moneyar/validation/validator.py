"""
Two-Stage Input Validation

DESIGN DECISION: Validation happens in two distinct stages:

STAGE 1 - SCHEMA VALIDATION:
- Type checking
- Required field presence
- Closed enumerations (account type, category, direction)
- Positive amounts with at most two decimal places
This stage is blocking: any error raises ValidationError before
the store is touched.

STAGE 2 - SEMANTIC CHECKS:
- Unusually large amounts
- Dates far in the future
These are warnings only. Nothing a user legitimately types is rejected
because it looks odd; it is logged for review instead.

IMPORTANT: Validation NEVER silently fixes issues.
"""

from datetime import timedelta
from decimal import Decimal
from typing import Any, Optional, TypeVar

from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from moneyar.config import LedgerSettings, get_settings
from moneyar.ledger.errors import ValidationError
from moneyar.models.ledger import ValidationIssue, utcnow


SchemaT = TypeVar("SchemaT", bound=BaseModel)

_ISSUE_TYPES = {
    "missing": "missing",
    "enum": "invalid_choice",
    "string_too_short": "empty",
    "decimal_max_places": "too_precise",
    "decimal_max_digits": "out_of_range",
    "decimal_whole_digits": "out_of_range",
    "greater_than_equal": "out_of_range",
    "greater_than": "out_of_range",
}


class LedgerValidator:
    """
    Validates ledger input through a two-stage pipeline.

    Stage 1: Schema validation (blocking)
    Stage 2: Semantic checks (warnings)
    """

    def __init__(self, settings: Optional[LedgerSettings] = None):
        self._settings = settings or get_settings().ledger

    def _issues_from_pydantic(
        self,
        exc: PydanticValidationError,
    ) -> list[ValidationIssue]:
        issues = []
        for err in exc.errors():
            field = ".".join(str(part) for part in err["loc"]) or "input"
            issues.append(ValidationIssue(
                field=field,
                issue_type=_ISSUE_TYPES.get(err["type"], "invalid_value"),
                message=err["msg"],
                severity="error",
            ))
        return issues

    def _validate_schema(
        self,
        schema: type[SchemaT],
        data: dict[str, Any],
    ) -> SchemaT:
        """
        Stage 1: parse raw input into its schema.

        Raises:
            ValidationError: With one issue per failing field
        """
        try:
            return schema.model_validate(data)
        except PydanticValidationError as e:
            raise ValidationError(self._issues_from_pydantic(e)) from e

    def _validate_semantic(self, parsed: BaseModel) -> list[ValidationIssue]:
        """
        Stage 2: flag suspicious but legal values.

        Returns: list of warning-level issues
        """
        issues = []
        max_amount = self._settings.max_transaction_amount

        for field in ("amount", "balance"):
            value = getattr(parsed, field, None)
            if isinstance(value, Decimal) and abs(value) > max_amount:
                issues.append(ValidationIssue(
                    field=field,
                    issue_type="suspicious_value",
                    message=f"{field.capitalize()} ({value:,.2f}) seems unusually high",
                    severity="warning",
                ))

        when = getattr(parsed, "date", None)
        if when is not None:
            horizon = utcnow() + timedelta(days=self._settings.future_date_tolerance_days)
            if when > horizon:
                issues.append(ValidationIssue(
                    field="date",
                    issue_type="future_date",
                    message=f"Date ({when.date()}) is far in the future",
                    severity="warning",
                ))

        return issues

    def validate(
        self,
        schema: type[SchemaT],
        data: dict[str, Any],
    ) -> tuple[SchemaT, list[ValidationIssue]]:
        """
        Run full two-stage validation.

        Args:
            schema: The pydantic input schema to parse into
            data: Raw field values from the caller

        Returns:
            (parsed_input, warnings)

        Raises:
            ValidationError: If stage 1 fails
        """
        parsed = self._validate_schema(schema, data)
        return parsed, self._validate_semantic(parsed)

    @staticmethod
    def get_user_friendly_summary(issues: list[ValidationIssue]) -> str:
        """One line per issue, errors before warnings."""
        if not issues:
            return "All checks passed."

        lines = []
        errors = [i for i in issues if i.severity == "error"]
        warnings = [i for i in issues if i.severity == "warning"]

        if errors:
            lines.append("Please fix the following:")
            lines.extend(f"  - {i.field}: {i.message}" for i in errors)
        if warnings:
            lines.append("Please double-check:")
            lines.extend(f"  - {i.field}: {i.message}" for i in warnings)

        return "\n".join(lines)
