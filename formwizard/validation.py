"""
Field and section validation for configured forms.

Validation Rules Documentation:
===============================

Rules are checked in a fixed order and the first failure wins:

1. REQUIRED
   - Fails for an absent value, an empty string or an empty list
   - Any other value (including 0, False and whitespace) passes

2. STRING LENGTH (string values of non-numeric fields)
   - min / max bound the length of the string
   - minLength is an additional lower length bound (table columns)

3. NUMERIC BOUNDS (numeric fields, rating components, number columns)
   - min / max bound the value; numeric strings are coerced
   - A value that is not a number fails with a type message

4. SELECTION COUNT (list values)
   - minSelect / maxSelect bound the number of selected options

5. PATTERN
   - Full-string match: the whole value must match the expression
     ("abc" does not satisfy pattern "b")

6. EMAIL
   - Shape check only: something@something.something

7. DATE BOUNDS
   - minDate / maxDate: absolute ISO date, "today", or a day offset from today
   - An unparseable date fails with a format message

8. COMPARE
   - value <operator> answers[compare.field]; see formwizard.conditions for
     the operator table and the absent-value convention
   - In a table row, compare.field names another column of the same row

Empty optional values skip rules 2-8.

Message Resolution:
===================
errorMessages[rule] if configured, else the blanket message if configured,
else a generated default naming the rule and its bound.

Section Validation:
===================
Only currently visible fields (and fields of visible subsections) are
validated. Table fields validate every row against the column schema;
row errors are keyed "<table>[<row>].<column>". Hidden fields never block
a section.
"""

import re
from dataclasses import dataclass, field
from datetime import date
from typing import Any, Dict, List, Mapping, Optional

from formwizard.conditions import OPERATOR_TEXT, compare_values, visible_section_fields
from formwizard.config_model import FieldDefinition, Section, ValidationRules
from formwizard.utils import coerce_to_float, is_empty, parse_date, resolve_date_bound


EMAIL_PATTERN = re.compile(r'\S+@\S+\.\S+')

REQUIRED = 'required'
MIN = 'min'
MAX = 'max'
MIN_LENGTH = 'minLength'
MIN_SELECT = 'minSelect'
MAX_SELECT = 'maxSelect'
PATTERN = 'pattern'
EMAIL = 'email'
TYPE = 'type'
MIN_DATE = 'minDate'
MAX_DATE = 'maxDate'
DATE = 'date'
COMPARE = 'compare'


@dataclass
class ValidationError:
    """Represents a single validation error with precise field path."""
    field: str
    message: str
    code: str
    section: str = ''  # For grouping errors by section


@dataclass
class ValidationResult:
    """Container for validation results."""
    errors: List[ValidationError] = field(default_factory=list)
    is_valid: bool = True

    def add_error(self, field: str, message: str, code: str = 'invalid', section: str = ''):
        """Add a validation error."""
        self.errors.append(ValidationError(field, message, code, section))
        self.is_valid = False

    @property
    def error_map(self) -> Dict[str, str]:
        """Errors keyed by field path (first error per path)."""
        out: Dict[str, str] = {}
        for error in self.errors:
            out.setdefault(error.field, error.message)
        return out

    def errors_for(self, field_id: str) -> List[ValidationError]:
        """Errors on a field, including its table-row paths."""
        prefix = f'{field_id}['
        return [e for e in self.errors if e.field == field_id or e.field.startswith(prefix)]

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON response."""
        return {
            'ok': self.is_valid,
            'errors': [
                {'field': e.field, 'message': e.message, 'code': e.code, 'section': e.section}
                for e in self.errors
            ]
        }


@dataclass
class RuleFailure:
    """The first rule a value failed."""
    code: str
    message: str


def _message(rules: ValidationRules, code: str, default: str) -> str:
    custom = rules.error_messages.get(code)
    if custom:
        return custom
    if rules.message:
        return rules.message
    return default


def _format_bound(value: Any) -> str:
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def _check_required(rules: ValidationRules, value: Any, label: str) -> Optional[RuleFailure]:
    if rules.required and is_empty(value):
        default = f'{label} is required' if label else 'This field is required'
        return RuleFailure(REQUIRED, _message(rules, REQUIRED, default))
    return None


def _check_length(rules: ValidationRules, value: str) -> Optional[RuleFailure]:
    length = len(value)
    if rules.min is not None and length < rules.min:
        return RuleFailure(MIN, _message(
            rules, MIN, f'Minimum length is {_format_bound(rules.min)} characters'))
    if rules.min_length is not None and length < rules.min_length:
        return RuleFailure(MIN_LENGTH, _message(
            rules, MIN_LENGTH, f'Minimum length is {rules.min_length} characters'))
    if rules.max is not None and length > rules.max:
        return RuleFailure(MAX, _message(
            rules, MAX, f'Maximum length is {_format_bound(rules.max)} characters'))
    return None


def _check_numeric(rules: ValidationRules, value: Any) -> Optional[RuleFailure]:
    number = coerce_to_float(value)
    if number is None:
        return RuleFailure(TYPE, _message(rules, TYPE, 'Must be a valid number'))
    if rules.min is not None and number < rules.min:
        return RuleFailure(MIN, _message(
            rules, MIN, f'Minimum value is {_format_bound(rules.min)}'))
    if rules.max is not None and number > rules.max:
        return RuleFailure(MAX, _message(
            rules, MAX, f'Maximum value is {_format_bound(rules.max)}'))
    return None


def _check_selection(rules: ValidationRules, value: list) -> Optional[RuleFailure]:
    count = len(value)
    if rules.min_select is not None and count < rules.min_select:
        return RuleFailure(MIN_SELECT, _message(
            rules, MIN_SELECT, f'Select at least {rules.min_select} options'))
    if rules.max_select is not None and count > rules.max_select:
        return RuleFailure(MAX_SELECT, _message(
            rules, MAX_SELECT, f'Select at most {rules.max_select} options'))
    return None


def _check_date(rules: ValidationRules, value: Any, today: Optional[date]) -> Optional[RuleFailure]:
    parsed = parse_date(value)
    if parsed is None:
        return RuleFailure(DATE, _message(rules, DATE, 'Please enter a valid date (YYYY-MM-DD)'))

    lower = resolve_date_bound(rules.date.min_date, today)
    upper = resolve_date_bound(rules.date.max_date, today)
    if lower is not None and parsed < lower:
        return RuleFailure(MIN_DATE, _message(
            rules, MIN_DATE, f'Date must be on or after {lower.isoformat()}'))
    if upper is not None and parsed > upper:
        return RuleFailure(MAX_DATE, _message(
            rules, MAX_DATE, f'Date must be on or before {upper.isoformat()}'))
    return None


def check_value(element: FieldDefinition, value: Any,
                reference: Optional[Mapping[str, Any]] = None,
                today: Optional[date] = None,
                row_labels: Optional[Mapping[str, str]] = None) -> Optional[RuleFailure]:
    """
    Run the rule pipeline for one value.

    Args:
        element: Field or column definition
        value: Value to check
        reference: Mapping the compare rule looks its operand up in
            (answers for fields, the row for table columns)
        today: Evaluation instant for relative date bounds
        row_labels: Column labels when checking a table row; default
            messages then name the column

    Returns:
        The first failing rule, or None if the value passes
    """
    rules = element.validation
    reference = reference or {}
    in_row = row_labels is not None

    failure = _check_required(rules, value, element.label if in_row else '')
    if failure:
        return failure

    if is_empty(value):
        return None

    if element.is_numeric:
        failure = _check_numeric(rules, value)
    elif isinstance(value, str):
        failure = _check_length(rules, value)
    elif isinstance(value, (int, float)) and not isinstance(value, bool):
        failure = _check_numeric(rules, value)
    if failure:
        return failure

    if isinstance(value, list):
        failure = _check_selection(rules, value)
        if failure:
            return failure

    if rules.pattern is not None and isinstance(value, str):
        if re.fullmatch(rules.pattern, value) is None:
            return RuleFailure(PATTERN, _message(rules, PATTERN, 'Invalid format'))

    if rules.email and not EMAIL_PATTERN.search(str(value)):
        return RuleFailure(EMAIL, _message(rules, EMAIL, 'Invalid email format'))

    if rules.date is not None or element.is_date:
        if rules.date is not None:
            failure = _check_date(rules, value, today)
        elif parse_date(value) is None:
            failure = RuleFailure(DATE, _message(rules, DATE, 'Please enter a valid date (YYYY-MM-DD)'))
        if failure:
            return failure

    if rules.compare is not None:
        target = rules.compare.field
        if not compare_values(rules.compare.operator, value, reference.get(target)):
            operator_text = OPERATOR_TEXT.get(rules.compare.operator, rules.compare.operator)
            if in_row:
                default = f'{element.label} must be {operator_text} {row_labels.get(target, target)}'
            else:
                default = f'Must be {operator_text} {target}'
            return RuleFailure(COMPARE, _message(rules, COMPARE, default))

    return None


def validate_field(element: FieldDefinition, value: Any,
                   answers: Optional[Mapping[str, Any]] = None,
                   today: Optional[date] = None) -> Optional[str]:
    """
    Validate a single field value.

    Args:
        element: The field definition
        value: The field's current value (None when unanswered)
        answers: Current answers, used by compare rules
        today: Evaluation instant for relative date bounds

    Returns:
        The error message, or None if the value is valid
    """
    failure = check_value(element, value, answers, today)
    return failure.message if failure else None


def validate_table_row(columns, row: Mapping[str, Any],
                       today: Optional[date] = None) -> Dict[str, str]:
    """
    Validate one table row against its column schema.

    Args:
        columns: Column definitions of the table
        row: Row object keyed by column id

    Returns:
        Mapping of column id to error message (empty when the row is valid)
    """
    labels = {c.id: c.label or c.id for c in columns}
    errors: Dict[str, str] = {}
    if not isinstance(row, Mapping):
        return {'': 'Row must be an object'}
    for column in columns:
        failure = check_value(column, row.get(column.id), row, today, row_labels=labels)
        if failure:
            errors[column.id] = failure.message
    return errors


def validate_section(section: Section, answers: Mapping[str, Any],
                     today: Optional[date] = None) -> ValidationResult:
    """
    Validate every visible field of a section.

    Args:
        section: The section to validate
        answers: Current answers

    Returns:
        ValidationResult aggregating all field and table-row errors
    """
    result = ValidationResult()

    for element in visible_section_fields(section, answers):
        value = answers.get(element.id)
        message = validate_field(element, value, answers, today)
        if message:
            result.add_error(element.id, message, 'invalid', section.id)
            continue

        if element.is_table and isinstance(value, list):
            for row_index, row in enumerate(value):
                for column_id, row_message in validate_table_row(element.columns, row, today).items():
                    path = f'{element.id}[{row_index}].{column_id}' if column_id else f'{element.id}[{row_index}]'
                    result.add_error(path, row_message, 'row', section.id)

    return result
