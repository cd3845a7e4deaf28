"""
Unit tests for validation module.
"""

from datetime import date

import pytest
from formwizard.config_model import FieldDefinition, Section
from formwizard.validation import (
    ValidationResult, check_value, validate_field, validate_section, validate_table_row
)


TODAY = date(2024, 6, 15)


def field(**data):
    data.setdefault('id', 'f')
    return FieldDefinition.from_dict(data)


class TestValidationResult:
    def test_initially_valid(self):
        result = ValidationResult()
        assert result.is_valid is True
        assert len(result.errors) == 0

    def test_add_error(self):
        result = ValidationResult()
        result.add_error('field', 'message', 'code')
        assert result.is_valid is False
        assert len(result.errors) == 1
        assert result.errors[0].field == 'field'
        assert result.errors[0].message == 'message'
        assert result.errors[0].code == 'code'

    def test_to_dict(self):
        result = ValidationResult()
        result.add_error('field', 'message', 'code')
        d = result.to_dict()
        assert d['ok'] is False
        assert len(d['errors']) == 1

    def test_error_map_keeps_first_message(self):
        result = ValidationResult()
        result.add_error('a', 'first')
        result.add_error('a', 'second')
        assert result.error_map == {'a': 'first'}

    def test_errors_for_includes_row_paths(self):
        result = ValidationResult()
        result.add_error('t[0].name', 'bad', 'row')
        result.add_error('tx', 'other')
        assert [e.field for e in result.errors_for('t')] == ['t[0].name']


class TestRequired:
    def test_missing_value(self):
        assert validate_field(field(validation={'required': True}), None) == 'This field is required'

    def test_empty_string_and_list(self):
        element = field(validation={'required': True})
        assert validate_field(element, '') is not None
        assert validate_field(element, []) is not None

    def test_zero_false_and_whitespace_pass(self):
        element = field(validation={'required': True})
        assert validate_field(element, 0) is None
        assert validate_field(element, False) is None
        assert validate_field(element, '   ') is None

    def test_custom_message(self):
        element = field(validation={'required': True, 'message': 'Please fill in'})
        assert validate_field(element, '') == 'Please fill in'

    def test_empty_optional_skips_other_rules(self):
        element = field(validation={'min': 3, 'pattern': '[0-9]+', 'email': True})
        assert validate_field(element, '') is None
        assert validate_field(element, None) is None


class TestLengthAndNumbers:
    def test_string_length_bounds(self):
        element = field(validation={'min': 2, 'max': 4})
        assert validate_field(element, 'a') == 'Minimum length is 2 characters'
        assert validate_field(element, 'abcde') == 'Maximum length is 4 characters'
        assert validate_field(element, 'abc') is None

    def test_numeric_bounds(self):
        element = field(type='number', validation={'min': 1, 'max': 10})
        assert validate_field(element, 0) == 'Minimum value is 1'
        assert validate_field(element, 11) == 'Maximum value is 10'
        assert validate_field(element, '5') is None

    def test_not_a_number(self):
        element = field(type='number', validation={'min': 1})
        assert validate_field(element, 'abc') == 'Must be a valid number'

    def test_rating_component_uses_numeric_bounds(self):
        element = field(type='custom', component='StarRating', validation={'min': 1, 'max': 5})
        assert validate_field(element, 6) == 'Maximum value is 5'
        assert validate_field(element, 3) is None

    def test_error_messages_per_rule(self):
        element = field(type='number', validation={
            'min': 18, 'message': 'Invalid', 'errorMessages': {'min': 'Too young'}
        })
        assert validate_field(element, 12) == 'Too young'


class TestSelection:
    def test_selection_bounds(self):
        element = field(type='checkbox', options=['a', 'b', 'c'],
                        validation={'minSelect': 2, 'maxSelect': 2})
        assert validate_field(element, ['a']) == 'Select at least 2 options'
        assert validate_field(element, ['a', 'b', 'c']) == 'Select at most 2 options'
        assert validate_field(element, ['a', 'b']) is None


class TestPatternAndEmail:
    def test_pattern_must_match_whole_value(self):
        element = field(validation={'pattern': 'b'})
        assert validate_field(element, 'abc') == 'Invalid format'
        assert validate_field(element, 'b') is None

    def test_email_shape(self):
        element = field(type='email', validation={'email': True})
        assert validate_field(element, 'not-an-email') == 'Invalid email format'
        assert validate_field(element, 'a@b.co') is None


class TestDates:
    def test_max_date_today(self):
        element = field(type='date', validation={'date': {'maxDate': 'today'}})
        assert validate_field(element, '2024-06-15', today=TODAY) is None
        assert validate_field(element, '2024-06-16', today=TODAY) == 'Date must be on or before 2024-06-15'

    def test_min_date_absolute(self):
        element = field(type='date', validation={'date': {'minDate': '2024-01-01'}})
        assert validate_field(element, '2023-12-31', today=TODAY) == 'Date must be on or after 2024-01-01'

    def test_min_date_offset(self):
        element = field(type='date', validation={'date': {'minDate': 7}})
        assert validate_field(element, '2024-06-21', today=TODAY) is not None
        assert validate_field(element, '2024-06-22', today=TODAY) is None

    def test_unparseable_date(self):
        element = field(type='date')
        assert validate_field(element, '31/02/2024') == 'Please enter a valid date (YYYY-MM-DD)'


class TestCompare:
    def test_compare_against_answers(self):
        element = field(id='end', type='number', validation={'compare': {'field': 'start', 'operator': 'gt'}})
        assert validate_field(element, 5, {'start': 3}) is None
        assert validate_field(element, 2, {'start': 3}) == 'Must be greater than start'

    def test_compare_with_absent_reference_fails_ordering(self):
        element = field(id='end', type='number', validation={'compare': {'field': 'start', 'operator': 'gte'}})
        assert validate_field(element, 5, {}) is not None

    def test_first_failure_wins(self):
        element = field(type='number', validation={
            'min': 10, 'compare': {'field': 'x', 'operator': 'lt'}
        })
        failure = check_value(element, 5, {'x': 1})
        assert failure.code == 'min'


class TestTableRows:
    columns = (
        field(id='name', label='Name', validation={'required': True, 'minLength': 2}),
        field(id='low', label='Low', type='number'),
        field(id='high', label='High', type='number',
              validation={'compare': {'field': 'low', 'operator': 'gte'}}),
    )

    def test_valid_row(self):
        assert validate_table_row(self.columns, {'name': 'Al', 'low': 1, 'high': 2}) == {}

    def test_required_column_names_label(self):
        errors = validate_table_row(self.columns, {'low': 1})
        assert errors == {'name': 'Name is required'}

    def test_min_length_column(self):
        errors = validate_table_row(self.columns, {'name': 'A'})
        assert errors['name'] == 'Minimum length is 2 characters'

    def test_compare_within_row(self):
        errors = validate_table_row(self.columns, {'name': 'Al', 'low': 5, 'high': 2})
        assert errors == {'high': 'High must be greater than or equal to Low'}

    def test_non_object_row(self):
        assert validate_table_row(self.columns, 'row') == {'': 'Row must be an object'}


class TestValidateSection:
    def _section(self):
        return Section.from_dict({
            'id': 'details',
            'elements': [
                {'id': 'kind', 'validation': {'required': True}},
                {'id': 'other', 'showIf': {'field': 'kind', 'value': 'other'},
                 'validation': {'required': True}},
                {'id': 'people', 'type': 'table', 'columns': [
                    {'id': 'name', 'label': 'Name', 'validation': {'required': True}},
                ]},
            ],
        })

    def test_hidden_required_field_does_not_block(self):
        result = validate_section(self._section(), {'kind': 'basic'})
        assert result.is_valid

    def test_visible_required_field_blocks(self):
        result = validate_section(self._section(), {'kind': 'other'})
        assert result.error_map == {'other': 'This field is required'}
        assert result.errors[0].section == 'details'

    def test_row_errors_use_paths(self):
        answers = {'kind': 'basic', 'people': [{'name': 'Ann'}, {'name': ''}]}
        result = validate_section(self._section(), answers)
        assert result.error_map == {'people[1].name': 'Name is required'}
        assert result.errors[0].code == 'row'

    @pytest.mark.parametrize('answers', [{}, {'kind': ''}])
    def test_missing_required(self, answers):
        assert validate_section(self._section(), answers).error_map == {'kind': 'This field is required'}
