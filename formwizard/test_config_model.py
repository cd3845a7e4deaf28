"""
Unit tests for configuration loading and reference checks.
"""

import json

import pytest
from formwizard import DEFAULT_FORM_PATH
from formwizard.config_model import (
    FieldType, FormConfig, load_config, placeholder_field, validate_references
)
from formwizard.exceptions import ConfigError


def _config(**overrides):
    data = {
        'title': 'Test',
        'sections': [
            {'id': 's1', 'title': 'One', 'elements': [
                {'id': 'a', 'type': 'number', 'label': 'A'},
                {'id': 'b', 'type': 'number', 'label': 'B',
                 'validation': {'compare': {'field': 'a', 'operator': 'gt'}}},
            ]},
        ],
    }
    data.update(overrides)
    return data


class TestParsing:
    def test_sections_and_fields(self):
        config = FormConfig.from_dict(_config())
        assert config.title == 'Test'
        assert config.section_count == 1
        assert [f.id for f in config.sections[0].elements] == ['a', 'b']
        assert config.sections[0].elements[1].validation.compare.operator == 'gt'

    def test_inline_options_from_strings_and_objects(self):
        config = FormConfig.from_dict(_config(sections=[{'id': 's', 'elements': [
            {'id': 'c', 'type': 'radio', 'options': ['x', {'value': 'y', 'label': 'Why'}]}
        ]}]))
        options = config.sections[0].elements[0].options
        assert options[0].value == 'x' and options[0].label == 'x'
        assert options[1].label == 'Why'

    def test_remote_options_reference(self):
        config = FormConfig.from_dict(_config(
            sections=[{'id': 's', 'elements': [
                {'id': 'c', 'type': 'select', 'options': {'source': 'cities'}}
            ]}],
            remoteOptions={'cities': {'url': '/cities', 'method': 'post', 'cache': False}}
        ))
        element = config.sections[0].elements[0]
        assert element.options is None
        assert element.options_ref.source == 'cities'
        source = config.sources['cities']
        assert source.method == 'POST'
        assert source.cache is False

    def test_show_if_object_becomes_tuple(self):
        config = FormConfig.from_dict(_config(sections=[{'id': 's', 'elements': [
            {'id': 'a'},
            {'id': 'b', 'showIf': {'field': 'a', 'value': 'yes'}},
        ]}]))
        show_if = config.sections[0].elements[1].show_if
        assert len(show_if) == 1
        assert show_if[0].is_comparison is False

    def test_date_bounds_and_camel_case_rules(self):
        config = FormConfig.from_dict(_config(sections=[{'id': 's', 'elements': [
            {'id': 'd', 'type': 'date', 'validation': {'date': {'minDate': '2024-01-01', 'maxDate': 'today'}}},
            {'id': 'm', 'type': 'checkbox', 'options': ['a'], 'validation': {'minSelect': 1, 'maxSelect': 2}},
        ]}]))
        d, m = config.sections[0].elements
        assert d.validation.date.min_date == '2024-01-01'
        assert d.validation.date.max_date == 'today'
        assert d.is_date
        assert m.validation.min_select == 1 and m.is_list

    def test_rating_component_is_numeric(self):
        config = FormConfig.from_dict(_config(sections=[{'id': 's', 'elements': [
            {'id': 'r', 'type': 'custom', 'component': 'StarRating'}
        ]}]))
        element = config.sections[0].elements[0]
        assert element.is_numeric
        assert element.rating_max == 5

    def test_field_lookup_includes_subsections(self):
        config = FormConfig.from_dict(_config(sections=[
            {'id': 's1', 'elements': [{'id': 'a'}]},
            {'id': 's2', 'subsections': [{'id': 'sub', 'elements': [{'id': 'b'}]}]},
        ]))
        assert config.find_field('b').id == 'b'
        assert config.section_of('b') == 1
        assert config.section_of('zzz') is None

    def test_field_type_values(self):
        assert FieldType.RICH_TEXT.value == 'rich-text'
        assert FieldType('table') is FieldType.TABLE


class TestPlaceholders:
    def test_exact_placeholder(self):
        assert placeholder_field('{country}') == 'country'

    def test_embedded_placeholder_is_literal(self):
        assert placeholder_field('x{country}') is None
        assert placeholder_field('{a}{b}') is None
        assert placeholder_field(3) is None


class TestReferenceChecks:
    def test_consistent_config(self):
        assert validate_references(FormConfig.from_dict(_config())) == []

    def test_no_sections(self):
        problems = validate_references(FormConfig.from_dict({'title': 't', 'sections': []}))
        assert problems == ['configuration has no sections']

    def test_duplicate_ids(self):
        config = FormConfig.from_dict(_config(sections=[
            {'id': 's1', 'elements': [{'id': 'a'}]},
            {'id': 's2', 'elements': [{'id': 'a'}]},
        ]))
        assert "duplicate field id 'a'" in validate_references(config)

    def test_dangling_compare_and_show_if(self):
        config = FormConfig.from_dict(_config(sections=[{'id': 's', 'elements': [
            {'id': 'a', 'validation': {'compare': {'field': 'ghost', 'operator': 'gt'}}},
            {'id': 'b', 'showIf': {'field': 'phantom', 'value': 1}},
        ]}]))
        problems = validate_references(config)
        assert any('ghost' in p for p in problems)
        assert any('phantom' in p for p in problems)

    def test_unknown_operator(self):
        config = FormConfig.from_dict(_config(sections=[{'id': 's', 'elements': [
            {'id': 'a'},
            {'id': 'b', 'validation': {'compare': {'field': 'a', 'operator': 'between'}}},
        ]}]))
        assert any('between' in p for p in validate_references(config))

    def test_invalid_pattern(self):
        config = FormConfig.from_dict(_config(sections=[{'id': 's', 'elements': [
            {'id': 'a', 'validation': {'pattern': '(unclosed'}},
        ]}]))
        assert any('invalid pattern' in p for p in validate_references(config))

    def test_non_numeric_bounds(self):
        config = FormConfig.from_dict(_config(sections=[{'id': 's', 'elements': [
            {'id': 'a', 'type': 'number', 'validation': {'min': '3', 'max': True}},
            {'id': 'b', 'validation': {'minLength': 2, 'max': 10.5}},
            {'id': 'c', 'type': 'checkbox', 'options': ['x'], 'validation': {'minSelect': [1]}},
            {'id': 't', 'type': 'table', 'columns': [
                {'id': 'qty', 'type': 'number', 'validation': {'max': 'ten'}},
            ]},
        ]}]))
        problems = validate_references(config)
        assert len(problems) == 4
        assert "field 'a': min must be a number, got '3'" in problems
        assert "field 'a': max must be a number, got True" in problems
        assert any("minSelect must be a number" in p for p in problems)
        assert any("column 'qty'" in p and 'max must be a number' in p for p in problems)

    def test_string_bound_rejected_at_load(self):
        with pytest.raises(ConfigError) as info:
            load_config(_config(sections=[{'id': 's', 'elements': [
                {'id': 'age', 'type': 'number', 'validation': {'min': '18'}},
            ]}]))
        assert any("min must be a number" in p for p in info.value.problems)

    def test_unknown_source_and_prefetch(self):
        config = FormConfig.from_dict(_config(sections=[{'id': 's', 'prefetch': ['nope'], 'elements': [
            {'id': 'a', 'type': 'select', 'options': {'source': 'missing'}},
        ]}]))
        problems = validate_references(config)
        assert any("unknown source 'nope'" in p for p in problems)
        assert any("unknown option source 'missing'" in p for p in problems)

    def test_source_placeholder_names_unknown_field(self):
        config = FormConfig.from_dict(_config(remoteOptions={
            'cities': {'url': '/cities', 'params': {'state': '{state}'}}
        }))
        assert any("unknown field 'state'" in p for p in validate_references(config))

    def test_column_compare_checks_sibling_columns(self):
        config = FormConfig.from_dict(_config(sections=[{'id': 's', 'elements': [
            {'id': 'a'},
            {'id': 't', 'type': 'table', 'columns': [
                {'id': 'low', 'type': 'number'},
                {'id': 'high', 'type': 'number', 'validation': {'compare': {'field': 'low', 'operator': 'gte'}}},
                {'id': 'other', 'validation': {'compare': {'field': 'a', 'operator': 'eq'}}},
            ]},
        ]}]))
        problems = validate_references(config)
        assert len(problems) == 1
        assert "column 'other'" in problems[0]


class TestLoadConfig:
    def test_load_from_mapping(self):
        config = load_config(_config())
        assert config.title == 'Test'

    def test_load_from_json_string(self):
        config = load_config(json.dumps(_config()))
        assert config.section_count == 1

    def test_load_from_path(self, tmp_path):
        path = tmp_path / 'form.json'
        path.write_text(json.dumps(_config()), encoding='utf-8')
        assert load_config(path).title == 'Test'
        assert load_config(str(path)).title == 'Test'

    def test_missing_file(self, tmp_path):
        with pytest.raises(ConfigError, match='not found'):
            load_config(tmp_path / 'missing.json')

    def test_invalid_json(self):
        with pytest.raises(ConfigError, match='Invalid JSON'):
            load_config('{"title": ')

    def test_not_an_object(self, tmp_path):
        path = tmp_path / 'form.json'
        path.write_text('[1, 2]', encoding='utf-8')
        with pytest.raises(ConfigError, match='JSON object'):
            load_config(path)

    def test_all_problems_reported_together(self):
        data = _config(sections=[{'id': 's', 'elements': [
            {'id': 'a', 'validation': {'compare': {'field': 'x', 'operator': 'gt'}}},
            {'id': 'a'},
        ]}])
        with pytest.raises(ConfigError) as exc_info:
            load_config(data)
        assert len(exc_info.value.problems) == 2

    def test_bundled_example_form_loads(self):
        config = load_config(DEFAULT_FORM_PATH)
        assert config.section_count == 4
        assert set(config.sources) == {'countries', 'states'}
