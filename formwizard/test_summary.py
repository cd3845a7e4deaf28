"""
Unit tests for the response summary.
"""

from formwizard.config_model import FieldDefinition, load_config
from formwizard.options import OptionCache
from formwizard.summary import build_response_summary, format_value


CONFIG = load_config({
    'title': 'Summary',
    'remoteOptions': {'cities': {'url': '/cities'}},
    'sections': [
        {'id': 'one', 'title': 'One', 'elements': [
            {'id': 'name', 'label': 'Name'},
            {'id': 'secret', 'type': 'password', 'label': 'Password'},
            {'id': 'size', 'type': 'radio', 'label': 'Size',
             'options': [{'value': 's', 'label': 'Small'}, {'value': 'l', 'label': 'Large'}]},
            {'id': 'extra', 'label': 'Extra', 'showIf': {'field': 'size', 'value': 'l'}},
        ]},
        {'id': 'two', 'title': 'Two', 'elements': [
            {'id': 'city', 'type': 'select', 'label': 'City', 'options': {'source': 'cities'}},
            {'id': 'arrive', 'type': 'date', 'label': 'Arrive'},
            {'id': 'agree', 'type': 'checkbox', 'label': 'Agree', 'options': ['yes']},
            {'id': 'people', 'type': 'table', 'label': 'People', 'columns': [
                {'id': 'who', 'label': 'Who'},
                {'id': 'adult', 'label': 'Adult'},
            ]},
        ]},
    ],
})


class TestFormatValue:
    def test_option_label(self):
        assert format_value(CONFIG.find_field('size'), 's') == 'Small'

    def test_unknown_option_value_shown_raw(self):
        assert format_value(CONFIG.find_field('size'), 'xl') == 'xl'

    def test_booleans(self):
        assert format_value(FieldDefinition(id='b'), True) == 'Yes'
        assert format_value(FieldDefinition(id='b'), False) == 'No'

    def test_dates(self):
        assert format_value(CONFIG.find_field('arrive'), '2024-03-05') == '05 March 2024'

    def test_password_masked(self):
        assert format_value(CONFIG.find_field('secret'), 'hunter2') == '*******'

    def test_table_row_count(self):
        people = CONFIG.find_field('people')
        assert format_value(people, [{}]) == '1 row'
        assert format_value(people, [{}, {}]) == '2 rows'

    def test_remote_labels_from_cache(self):
        cache = OptionCache()
        cache.mark_resolved('cities', [{'value': 'bne', 'label': 'Brisbane'}])
        assert format_value(CONFIG.find_field('city'), 'bne', cache) == 'Brisbane'


class TestBuildResponseSummary:
    def test_only_answered_visible_fields(self):
        answers = {'name': 'Ada', 'size': 's', 'extra': 'hidden answer', 'arrive': ''}
        summary = build_response_summary(CONFIG, answers)
        first, second = summary.sections
        assert [i.field_id for i in first.items] == ['name', 'size']
        assert second.items == []
        assert summary.answered_count == 2

    def test_password_value_withheld(self):
        summary = build_response_summary(CONFIG, {'secret': 'pw'})
        item = summary.sections[0].items[0]
        assert item.value is None
        assert item.display == '**'

    def test_table_rows_formatted(self):
        answers = {'people': [{'who': 'Bo', 'adult': True}]}
        item = build_response_summary(CONFIG, answers).sections[1].items[0]
        assert item.display == '1 row'
        assert item.rows == [{'Who': 'Bo', 'Adult': 'Yes'}]

    def test_to_dict(self):
        data = build_response_summary(CONFIG, {'agree': ['yes']}).to_dict()
        assert data['title'] == 'Summary'
        assert [s['id'] for s in data['sections']] == ['one', 'two']
        assert data['sections'][1]['items'][0]['display'] == 'yes'
