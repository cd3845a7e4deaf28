"""
Condition Evaluator

Decides whether a field or subsection is visible for the current answers.

Visibility Rules:
=================
1. No predicate: always visible
2. {field, value}: visible if the stored answer equals value exactly
   (no type coercion: "1" does not equal 1, True does not equal 1)
3. {field, compareField, operator}: visible if
   answers[field] <operator> answers[compareField]
4. Several conditions: all must hold (AND). There is no OR combinator.

Visibility is recomputed from the answers on every call and never cached.

Comparison Operators:
=====================
lt, lte, gt, gte, eq, neq. The same table is used by validation compare
rules. Absent operands (None):
- eq holds only when both sides are absent
- neq holds when exactly one side is absent
- ordering operators never hold
Two numeric strings (or a number and a numeric string) compare as numbers.
Values that cannot be ordered against each other fail ordering operators.
"""

from typing import Any, Iterable, List, Mapping, Sequence

from formwizard.config_model import FieldDefinition, Section, ShowIfCondition, Subsection
from formwizard.utils import coerce_to_float


OPERATOR_TEXT = {
    'lt': 'less than',
    'lte': 'less than or equal to',
    'gt': 'greater than',
    'gte': 'greater than or equal to',
    'eq': 'equal to',
    'neq': 'not equal to',
}


def _strict_equal(left: Any, right: Any) -> bool:
    if isinstance(left, bool) or isinstance(right, bool):
        return type(left) is type(right) and left == right
    return left == right


def _ordering_operands(left: Any, right: Any):
    left_num = coerce_to_float(left)
    right_num = coerce_to_float(right)
    if left_num is not None and right_num is not None:
        return left_num, right_num
    return left, right


def compare_values(operator: str, left: Any, right: Any) -> bool:
    """
    Apply a comparison operator.

    Args:
        operator: One of lt, lte, gt, gte, eq, neq
        left: Value under test
        right: Reference value

    Returns:
        Whether ``left <operator> right`` holds
    """
    if operator == 'eq':
        return _strict_equal(left, right)
    if operator == 'neq':
        return not _strict_equal(left, right)

    if left is None or right is None:
        return False

    a, b = _ordering_operands(left, right)
    try:
        if operator == 'lt':
            return a < b
        if operator == 'lte':
            return a <= b
        if operator == 'gt':
            return a > b
        if operator == 'gte':
            return a >= b
    except TypeError:
        return False

    return False


def condition_holds(condition: ShowIfCondition, answers: Mapping[str, Any]) -> bool:
    """Evaluate one condition against the answers."""
    current = answers.get(condition.field)
    if condition.is_comparison:
        return compare_values(condition.operator, current, answers.get(condition.compare_field))
    return _strict_equal(current, condition.value)


def is_visible(predicate: Sequence[ShowIfCondition], answers: Mapping[str, Any]) -> bool:
    """
    Evaluate a visibility predicate.

    Args:
        predicate: Conditions attached to a field or subsection (may be empty)
        answers: Current answers

    Returns:
        True if every condition holds
    """
    if not predicate:
        return True
    if isinstance(predicate, ShowIfCondition):
        predicate = (predicate,)
    return all(condition_holds(c, answers) for c in predicate)


def visible_elements(elements: Iterable[FieldDefinition],
                     answers: Mapping[str, Any]) -> List[FieldDefinition]:
    """Filter elements down to those currently visible."""
    return [e for e in elements if is_visible(e.show_if, answers)]


def visible_subsections(section: Section, answers: Mapping[str, Any]) -> List[Subsection]:
    """Subsections of a section whose own predicate currently holds."""
    return [s for s in section.subsections if is_visible(s.show_if, answers)]


def visible_section_fields(section: Section, answers: Mapping[str, Any]) -> List[FieldDefinition]:
    """
    Every field of a section that is live for the current answers.

    A field inside a hidden subsection is hidden regardless of its own
    predicate.
    """
    fields = visible_elements(section.elements, answers)
    for subsection in visible_subsections(section, answers):
        fields.extend(visible_elements(subsection.elements, answers))
    return fields
