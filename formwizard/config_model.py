"""
Form Configuration Model

Typed, immutable representation of a form configuration document.

Configuration Shape:
====================

    {
        "title": "...",
        "sections": [
            {
                "id": "...", "title": "...", "description": "<p>...</p>",
                "prefetch": ["states"],
                "elements": [FieldDefinition, ...]
                    -- or --
                "subsections": [{"id", "title", "elements", "showIf"}, ...]
            }
        ],
        "remoteOptions": {
            "states": {"url": "...", "method": "GET", "headers": {},
                       "params": {"country": "{country}"},
                       "cache": true, "transform": "normalize_options"}
        }
    }

Reference Rules:
================
- Field ids are unique across the whole configuration
- compare.field, showIf.field, showIf.compareField and "{fieldId}" parameter
  placeholders must name an existing field
- Table column compare rules name a sibling column of the same row
- options.source and section prefetch entries must name a remote source
- pattern rules must compile as regular expressions

All problems found are reported together in a single ConfigError.
"""

import json
import os
import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Iterator, List, Mapping, Optional, Tuple, Union

from formwizard.exceptions import ConfigError


PLACEHOLDER_PATTERN = re.compile(r'^\{([^{}]+)\}$')

COMPARE_OPERATORS = ('lt', 'lte', 'gt', 'gte', 'eq', 'neq')


class FieldType(str, Enum):
    """Known field type tags."""
    TEXT = 'text'
    EMAIL = 'email'
    PASSWORD = 'password'
    TEXTAREA = 'textarea'
    RICH_TEXT = 'rich-text'
    FORMATTED = 'formatted'
    NUMBER = 'number'
    SELECT = 'select'
    MULTISELECT = 'multiselect'
    RADIO = 'radio'
    CHECKBOX = 'checkbox'
    DATE = 'date'
    TABLE = 'table'
    CUSTOM = 'custom'


NUMERIC_TYPES = {FieldType.NUMBER.value}
LIST_TYPES = {FieldType.CHECKBOX.value, FieldType.MULTISELECT.value}
OPTION_TYPES = {
    FieldType.SELECT.value,
    FieldType.MULTISELECT.value,
    FieldType.RADIO.value,
    FieldType.CHECKBOX.value,
}

# Custom components whose values are numbers
NUMERIC_COMPONENTS = {'StarRating'}
DEFAULT_RATING_MAX = 5


@dataclass(frozen=True)
class Option:
    """A selectable option."""
    value: str
    label: str

    @classmethod
    def from_dict(cls, data: Any) -> 'Option':
        if isinstance(data, str):
            return cls(value=data, label=data)
        value = data.get('value')
        label = data.get('label')
        return cls(
            value=str(value if value is not None else label),
            label=str(label if label is not None else value)
        )

    def to_dict(self) -> Dict[str, str]:
        return {'value': self.value, 'label': self.label}


@dataclass(frozen=True)
class CompareRule:
    """Cross-field comparison: this value <operator> answers[field]."""
    field: str
    operator: str

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> 'CompareRule':
        return cls(field=str(data.get('field', '')), operator=str(data.get('operator', 'eq')))


@dataclass(frozen=True)
class DateBounds:
    """Date bounds; each is an ISO date, "today", or a day offset from today."""
    min_date: Any = None
    max_date: Any = None


@dataclass(frozen=True)
class ValidationRules:
    """Validation rule set attached to a field or table column."""
    required: bool = False
    min: Optional[float] = None
    max: Optional[float] = None
    min_length: Optional[int] = None
    pattern: Optional[str] = None
    email: bool = False
    date: Optional[DateBounds] = None
    compare: Optional[CompareRule] = None
    min_select: Optional[int] = None
    max_select: Optional[int] = None
    message: Optional[str] = None
    error_messages: Mapping[str, str] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: Optional[Mapping[str, Any]]) -> 'ValidationRules':
        if not data:
            return cls()

        date_data = data.get('date') or {}
        min_date = date_data.get('minDate', data.get('minDate'))
        max_date = date_data.get('maxDate', data.get('maxDate'))
        bounds = None
        if min_date is not None or max_date is not None:
            bounds = DateBounds(min_date=min_date, max_date=max_date)

        compare = data.get('compare')
        return cls(
            required=bool(data.get('required', False)),
            min=data.get('min'),
            max=data.get('max'),
            min_length=data.get('minLength'),
            pattern=data.get('pattern'),
            email=bool(data.get('email', False)),
            date=bounds,
            compare=CompareRule.from_dict(compare) if compare else None,
            min_select=data.get('minSelect'),
            max_select=data.get('maxSelect'),
            message=data.get('message'),
            error_messages=dict(data.get('errorMessages') or {})
        )


@dataclass(frozen=True)
class ShowIfCondition:
    """
    A single visibility condition.

    Either ``{field, value}`` (equality) or
    ``{field, compareField, operator}`` (field-to-field comparison).
    """
    field: str
    value: Any = None
    compare_field: Optional[str] = None
    operator: Optional[str] = None

    @property
    def is_comparison(self) -> bool:
        return self.compare_field is not None

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> 'ShowIfCondition':
        return cls(
            field=str(data.get('field', '')),
            value=data.get('value'),
            compare_field=data.get('compareField'),
            operator=data.get('operator') or ('eq' if data.get('compareField') else None)
        )


def parse_show_if(data: Any) -> Tuple[ShowIfCondition, ...]:
    """Normalize a showIf value (object, list or absent) to a tuple."""
    if not data:
        return ()
    if isinstance(data, Mapping):
        return (ShowIfCondition.from_dict(data),)
    return tuple(ShowIfCondition.from_dict(c) for c in data)


@dataclass(frozen=True)
class OptionsRef:
    """Reference to a named remote option source."""
    source: str
    params: Mapping[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class FieldDefinition:
    """A single answerable form element (or a table column)."""
    id: str
    type: str = FieldType.TEXT.value
    label: str = ''
    placeholder: Optional[str] = None
    validation: ValidationRules = field(default_factory=ValidationRules)
    options: Optional[Tuple[Option, ...]] = None
    options_ref: Optional[OptionsRef] = None
    show_if: Tuple[ShowIfCondition, ...] = ()
    columns: Tuple['FieldDefinition', ...] = ()
    component: Optional[str] = None
    input_pattern: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> 'FieldDefinition':
        raw_options = data.get('options')
        options = None
        options_ref = None
        if isinstance(raw_options, Mapping):
            options_ref = OptionsRef(
                source=str(raw_options.get('source', '')),
                params=dict(raw_options.get('params') or {})
            )
        elif raw_options is not None:
            options = tuple(Option.from_dict(o) for o in raw_options)

        return cls(
            id=str(data.get('id', '')),
            type=str(data.get('type', FieldType.TEXT.value)),
            label=data.get('label', ''),
            placeholder=data.get('placeholder'),
            validation=ValidationRules.from_dict(data.get('validation')),
            options=options,
            options_ref=options_ref,
            show_if=parse_show_if(data.get('showIf')),
            columns=tuple(cls.from_dict(c) for c in data.get('columns') or ()),
            component=data.get('component'),
            input_pattern=data.get('inputPattern')
        )

    @property
    def is_numeric(self) -> bool:
        return self.type in NUMERIC_TYPES or self.component in NUMERIC_COMPONENTS

    @property
    def is_list(self) -> bool:
        return self.type in LIST_TYPES

    @property
    def is_table(self) -> bool:
        return self.type == FieldType.TABLE.value

    @property
    def is_date(self) -> bool:
        return self.type == FieldType.DATE.value

    @property
    def rating_max(self) -> int:
        """Upper bound for rating-style custom components."""
        if self.validation.max is not None:
            return int(self.validation.max)
        return DEFAULT_RATING_MAX


@dataclass(frozen=True)
class Subsection:
    """A titled group of elements inside a section."""
    id: str
    title: str = ''
    elements: Tuple[FieldDefinition, ...] = ()
    show_if: Tuple[ShowIfCondition, ...] = ()

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> 'Subsection':
        return cls(
            id=str(data.get('id', '')),
            title=data.get('title', ''),
            elements=tuple(FieldDefinition.from_dict(e) for e in data.get('elements') or ()),
            show_if=parse_show_if(data.get('showIf'))
        )


@dataclass(frozen=True)
class Section:
    """A top-level wizard step."""
    id: str
    title: str = ''
    description: Optional[str] = None
    prefetch: Tuple[str, ...] = ()
    elements: Tuple[FieldDefinition, ...] = ()
    subsections: Tuple[Subsection, ...] = ()

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> 'Section':
        return cls(
            id=str(data.get('id', '')),
            title=data.get('title', ''),
            description=data.get('description'),
            prefetch=tuple(data.get('prefetch') or ()),
            elements=tuple(FieldDefinition.from_dict(e) for e in data.get('elements') or ()),
            subsections=tuple(Subsection.from_dict(s) for s in data.get('subsections') or ())
        )

    def all_elements(self) -> Iterator[FieldDefinition]:
        """Every element of the section, including those in subsections."""
        yield from self.elements
        for subsection in self.subsections:
            yield from subsection.elements


@dataclass(frozen=True)
class RemoteOptionSource:
    """A named, parameterized remote provider of option lists."""
    name: str
    url: str
    method: str = 'GET'
    headers: Mapping[str, str] = field(default_factory=dict)
    params: Mapping[str, Any] = field(default_factory=dict)
    cache: bool = True
    transform: Optional[str] = None

    @classmethod
    def from_dict(cls, name: str, data: Mapping[str, Any]) -> 'RemoteOptionSource':
        return cls(
            name=name,
            url=str(data.get('url') or data.get('endpoint') or ''),
            method=str(data.get('method', 'GET')).upper(),
            headers=dict(data.get('headers') or {}),
            params=dict(data.get('params') or {}),
            cache=data.get('cache', True) is not False,
            transform=data.get('transform')
        )


@dataclass(frozen=True)
class FormConfig:
    """The whole form: title, ordered sections and named remote sources."""
    title: str
    sections: Tuple[Section, ...]
    sources: Mapping[str, RemoteOptionSource] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> 'FormConfig':
        raw_sources = data.get('remoteOptions') or data.get('sources') or {}
        return cls(
            title=data.get('title', ''),
            sections=tuple(Section.from_dict(s) for s in data.get('sections') or ()),
            sources={
                name: RemoteOptionSource.from_dict(name, data)
                for name, data in raw_sources.items()
            }
        )

    @property
    def section_count(self) -> int:
        return len(self.sections)

    def iter_fields(self) -> Iterator[Tuple[int, FieldDefinition]]:
        """Yield ``(section_index, field)`` for every top-level field."""
        for index, section in enumerate(self.sections):
            for element in section.all_elements():
                yield index, element

    def field_index(self) -> Dict[str, FieldDefinition]:
        return {f.id: f for _, f in self.iter_fields()}

    def find_field(self, field_id: str) -> Optional[FieldDefinition]:
        return self.field_index().get(field_id)

    def section_of(self, field_id: str) -> Optional[int]:
        for index, element in self.iter_fields():
            if element.id == field_id:
                return index
        return None


def placeholder_field(value: Any) -> Optional[str]:
    """Return the field id of an exact ``{fieldId}`` placeholder, else None."""
    if not isinstance(value, str):
        return None
    match = PLACEHOLDER_PATTERN.match(value)
    return match.group(1) if match else None


def _check_rules(rules: ValidationRules, owner: str, known: set, problems: List[str]):
    bounds = (
        ('min', rules.min),
        ('max', rules.max),
        ('minLength', rules.min_length),
        ('minSelect', rules.min_select),
        ('maxSelect', rules.max_select),
    )
    for name, bound in bounds:
        if bound is None:
            continue
        if isinstance(bound, bool) or not isinstance(bound, (int, float)):
            problems.append(f'{owner}: {name} must be a number, got {bound!r}')
    if rules.compare is not None:
        if rules.compare.field not in known:
            problems.append(f'{owner}: compare references unknown field {rules.compare.field!r}')
        if rules.compare.operator not in COMPARE_OPERATORS:
            problems.append(f'{owner}: unknown compare operator {rules.compare.operator!r}')
    if rules.pattern is not None:
        try:
            re.compile(rules.pattern)
        except re.error as e:
            problems.append(f'{owner}: invalid pattern {rules.pattern!r} ({e})')


def _check_conditions(conditions, owner: str, known: set, problems: List[str]):
    for condition in conditions:
        if condition.field not in known:
            problems.append(f'{owner}: showIf references unknown field {condition.field!r}')
        if condition.is_comparison:
            if condition.compare_field not in known:
                problems.append(
                    f'{owner}: showIf compares against unknown field {condition.compare_field!r}'
                )
            if condition.operator not in COMPARE_OPERATORS:
                problems.append(f'{owner}: unknown showIf operator {condition.operator!r}')


def validate_references(config: FormConfig) -> List[str]:
    """
    Check a configuration for dangling references.

    Args:
        config: The parsed configuration

    Returns:
        List of problem descriptions (empty when consistent)
    """
    problems: List[str] = []

    if not config.sections:
        problems.append('configuration has no sections')

    known = set()
    for _, element in config.iter_fields():
        if not element.id:
            problems.append('field without an id')
        elif element.id in known:
            problems.append(f'duplicate field id {element.id!r}')
        known.add(element.id)

    for section in config.sections:
        for source_name in section.prefetch:
            if source_name not in config.sources:
                problems.append(
                    f'section {section.id!r}: prefetch names unknown source {source_name!r}'
                )
        for subsection in section.subsections:
            _check_conditions(subsection.show_if, f'subsection {subsection.id!r}', known, problems)

    for _, element in config.iter_fields():
        owner = f'field {element.id!r}'
        _check_rules(element.validation, owner, known, problems)
        _check_conditions(element.show_if, owner, known, problems)

        if element.options_ref is not None:
            if element.options_ref.source not in config.sources:
                problems.append(f'{owner}: unknown option source {element.options_ref.source!r}')
            for value in element.options_ref.params.values():
                ref = placeholder_field(value)
                if ref is not None and ref not in known:
                    problems.append(f'{owner}: parameter placeholder names unknown field {ref!r}')

        column_ids = {c.id for c in element.columns}
        for column in element.columns:
            _check_rules(column.validation, f'{owner} column {column.id!r}', column_ids, problems)

    for source in config.sources.values():
        if not source.url:
            problems.append(f'option source {source.name!r} has no url')
        for value in source.params.values():
            ref = placeholder_field(value)
            if ref is not None and ref not in known:
                problems.append(
                    f'option source {source.name!r}: placeholder names unknown field {ref!r}'
                )

    return problems


def load_config(source: Union[Mapping[str, Any], str, os.PathLike]) -> FormConfig:
    """
    Load and check a form configuration.

    Args:
        source: A mapping, a JSON document string, or a path to a JSON file

    Returns:
        The immutable FormConfig

    Raises:
        ConfigError: If the document cannot be read or has dangling references
    """
    if isinstance(source, Mapping):
        data = source
    else:
        text = str(source) if not isinstance(source, os.PathLike) else None
        try:
            if text is not None and text.lstrip().startswith('{'):
                data = json.loads(text)
            else:
                with open(source, 'r', encoding='utf-8') as f:
                    data = json.load(f)
        except FileNotFoundError:
            raise ConfigError(f'Form configuration not found: {source}')
        except json.JSONDecodeError as e:
            raise ConfigError(f'Invalid JSON in form configuration: {e}')

    if not isinstance(data, Mapping):
        raise ConfigError('Form configuration must be a JSON object')

    try:
        config = FormConfig.from_dict(data)
    except (AttributeError, TypeError, ValueError) as e:
        raise ConfigError(f'Malformed form configuration: {e}')

    problems = validate_references(config)
    if problems:
        raise ConfigError('Inconsistent form configuration', problems)

    return config
