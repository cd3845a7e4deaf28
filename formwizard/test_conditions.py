"""
Unit tests for visibility conditions and comparison operators.
"""

import pytest
from formwizard.conditions import (
    compare_values, condition_holds, is_visible, visible_section_fields
)
from formwizard.config_model import Section, ShowIfCondition


class TestCompareValues:
    @pytest.mark.parametrize('operator,left,right,expected', [
        ('lt', 1, 2, True),
        ('lt', 2, 2, False),
        ('lte', 2, 2, True),
        ('gt', 3, 2, True),
        ('gte', 2, 3, False),
        ('eq', 'a', 'a', True),
        ('neq', 'a', 'b', True),
    ])
    def test_operator_table(self, operator, left, right, expected):
        assert compare_values(operator, left, right) is expected

    def test_numeric_strings_compare_as_numbers(self):
        assert compare_values('gt', '10', '9') is True
        assert compare_values('lt', 5, '12') is True

    def test_iso_dates_compare_in_order(self):
        assert compare_values('gte', '2024-05-02', '2024-05-01') is True
        assert compare_values('gte', '2024-04-30', '2024-05-01') is False

    def test_absent_operands(self):
        assert compare_values('eq', None, None) is True
        assert compare_values('eq', 1, None) is False
        assert compare_values('neq', None, 1) is True
        assert compare_values('neq', None, None) is False
        assert compare_values('gt', 5, None) is False
        assert compare_values('lte', None, 5) is False

    def test_unorderable_values_fail(self):
        assert compare_values('lt', 'abc', 3) is False

    def test_booleans_are_not_numbers(self):
        assert compare_values('eq', True, 1) is False
        assert compare_values('eq', True, True) is True


class TestConditions:
    def test_value_condition_is_strict(self):
        condition = ShowIfCondition(field='age', value=1)
        assert condition_holds(condition, {'age': 1}) is True
        assert condition_holds(condition, {'age': '1'}) is False

    def test_compare_field_condition(self):
        condition = ShowIfCondition(field='end', compare_field='start', operator='gt')
        assert condition_holds(condition, {'start': 3, 'end': 5}) is True
        assert condition_holds(condition, {'start': 5, 'end': 3}) is False

    def test_empty_predicate_is_visible(self):
        assert is_visible((), {}) is True

    def test_all_conditions_must_hold(self):
        predicate = (
            ShowIfCondition(field='a', value='x'),
            ShowIfCondition(field='b', value='y'),
        )
        assert is_visible(predicate, {'a': 'x', 'b': 'y'}) is True
        assert is_visible(predicate, {'a': 'x', 'b': 'z'}) is False

    def test_single_condition_accepted(self):
        assert is_visible(ShowIfCondition(field='a', value=True), {'a': True}) is True


class TestVisibleSectionFields:
    def _section(self):
        return Section.from_dict({
            'id': 's',
            'elements': [
                {'id': 'kind'},
                {'id': 'detail', 'showIf': {'field': 'kind', 'value': 'other'}},
            ],
            'subsections': [
                {'id': 'extra', 'showIf': {'field': 'kind', 'value': 'business'}, 'elements': [
                    {'id': 'abn'},
                    {'id': 'note'},
                ]},
            ],
        })

    def test_hidden_field(self):
        ids = [f.id for f in visible_section_fields(self._section(), {'kind': 'personal'})]
        assert ids == ['kind']

    def test_shown_field(self):
        ids = [f.id for f in visible_section_fields(self._section(), {'kind': 'other'})]
        assert ids == ['kind', 'detail']

    def test_subsection_visibility_hides_its_fields(self):
        ids = [f.id for f in visible_section_fields(self._section(), {'kind': 'business'})]
        assert ids == ['kind', 'abn', 'note']
