"""
Response Summary Module

Builds a readable view of the current answers: one entry per section with
the visible, answered fields and display values. Option values are shown
with their labels, dates as "DD Month YYYY", booleans as Yes/No and tables
as their rows.

The summary is computed from the answers on demand and holds no state.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping

from formwizard.conditions import visible_section_fields
from formwizard.config_model import FieldDefinition, FieldType, FormConfig
from formwizard.utils import format_date, is_empty


@dataclass
class SummaryItem:
    """A single answered field."""
    field_id: str
    label: str
    display: str
    value: Any = None
    rows: List[Dict[str, str]] = field(default_factory=list)


@dataclass
class SummarySection:
    """Answered fields of one section."""
    section_id: str
    title: str
    items: List[SummaryItem] = field(default_factory=list)
    order: int = 0


@dataclass
class ResponseSummary:
    """Complete summary of the current responses."""
    title: str = ''
    sections: List[SummarySection] = field(default_factory=list)
    answered_count: int = 0

    def to_dict(self) -> Dict[str, Any]:
        """Convert summary to dictionary for API response."""
        return {
            'title': self.title,
            'answered_count': self.answered_count,
            'sections': [
                {
                    'id': s.section_id,
                    'title': s.title,
                    'items': [
                        {
                            'field': i.field_id,
                            'label': i.label,
                            'display': i.display,
                            'value': i.value,
                            'rows': i.rows,
                        }
                        for i in s.items
                    ],
                }
                for s in sorted(self.sections, key=lambda x: x.order)
            ],
        }


def _option_labels(element: FieldDefinition, option_cache=None) -> Dict[str, str]:
    if element.options is not None:
        return {o.value: o.label for o in element.options}
    if element.options_ref is not None and option_cache is not None:
        cached = option_cache.get(element.options_ref.source) or []
        return {
            str(o.get('value')): str(o.get('label', o.get('value')))
            for o in cached if isinstance(o, Mapping)
        }
    return {}


def format_value(element: FieldDefinition, value: Any, option_cache=None) -> str:
    """
    Format a stored value for display.

    Args:
        element: Field or column definition
        value: Stored value
        option_cache: Cache used to label remote option values

    Returns:
        Display string
    """
    if value is None:
        return ''

    if isinstance(value, bool):
        return 'Yes' if value else 'No'

    labels = _option_labels(element, option_cache)

    if isinstance(value, list):
        if element.is_table:
            count = len(value)
            return f'{count} row' + ('' if count == 1 else 's')
        return ', '.join(labels.get(str(v), str(v)) for v in value)

    if element.is_date:
        return format_date(value)

    if element.type == FieldType.PASSWORD:
        return '*' * len(str(value))

    return labels.get(str(value), str(value))


def _format_rows(element: FieldDefinition, rows: List[Any]) -> List[Dict[str, str]]:
    out = []
    for row in rows:
        if not isinstance(row, Mapping):
            continue
        out.append({
            column.label or column.id: format_value(column, row.get(column.id))
            for column in element.columns
        })
    return out


def build_response_summary(config: FormConfig, answers: Mapping[str, Any],
                           option_cache=None) -> ResponseSummary:
    """
    Summarize the answered, visible fields of every section.

    Args:
        config: The form configuration
        answers: Current answers
        option_cache: Optional OptionCache to label remote option values

    Returns:
        ResponseSummary ordered like the form
    """
    summary = ResponseSummary(title=config.title)

    for order, section in enumerate(config.sections):
        summary_section = SummarySection(section_id=section.id, title=section.title, order=order)
        for element in visible_section_fields(section, answers):
            value = answers.get(element.id)
            if is_empty(value):
                continue
            summary_section.items.append(SummaryItem(
                field_id=element.id,
                label=element.label or element.id,
                display=format_value(element, value, option_cache),
                value=None if element.type == FieldType.PASSWORD else value,
                rows=_format_rows(element, value) if element.is_table and isinstance(value, list) else []
            ))
        summary.answered_count += len(summary_section.items)
        summary.sections.append(summary_section)

    return summary
