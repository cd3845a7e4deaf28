"""
Flask routes exposing form sessions as a JSON API.

Each session is an independent FormSession held in the application's
in-process SessionStore, which drops idle sessions and caps how many are
live at once. Nothing is persisted.
"""

import asyncio
import logging
import secrets
import time
from typing import Any, Callable, Dict, Optional, Tuple

from flask import Blueprint, Response, current_app, jsonify, request
from flask_wtf.csrf import generate_csrf

from formwizard.config_model import FieldDefinition, FormConfig, Section
from formwizard.exceptions import AnswersImportError, OptionSourceError
from formwizard.security import rate_limit, sanitize_rich_text, sanitize_string
from formwizard.session import FormSession


logger = logging.getLogger(__name__)

api_bp = Blueprint('api', __name__, url_prefix='/api')


class SessionStore:
    """
    In-process registry of live form sessions.

    Sessions idle for longer than ``idle_timeout`` seconds are dropped, and
    once ``max_sessions`` are live, creating another drops the one that has
    been idle longest. Either limit may be None to disable it.
    """

    def __init__(self, factory: Callable[[str], FormSession],
                 max_sessions: Optional[int] = 1000,
                 idle_timeout: Optional[float] = 3600,
                 clock: Callable[[], float] = time.monotonic):
        self._factory = factory
        self.max_sessions = max_sessions
        self.idle_timeout = idle_timeout
        self._clock = clock
        # Ordered least recently used first
        self._sessions: Dict[str, Tuple[FormSession, float]] = {}

    def __len__(self) -> int:
        return len(self._sessions)

    def create(self) -> FormSession:
        self._expire()
        if self.max_sessions is not None:
            while self._sessions and len(self._sessions) >= self.max_sessions:
                oldest = next(iter(self._sessions))
                del self._sessions[oldest]
                logger.info('Session store full; dropped session %s', oldest)

        session_id = secrets.token_urlsafe(16)
        form_session = self._factory(session_id)
        self._sessions[session_id] = (form_session, self._clock())
        return form_session

    def get(self, session_id: str) -> Optional[FormSession]:
        self._expire()
        entry = self._sessions.pop(session_id, None)
        if entry is None:
            return None
        self._sessions[session_id] = (entry[0], self._clock())
        return entry[0]

    def discard(self, session_id: str):
        self._sessions.pop(session_id, None)

    def _expire(self):
        if self.idle_timeout is None:
            return
        cutoff = self._clock() - self.idle_timeout
        while self._sessions:
            session_id, (_, last_seen) = next(iter(self._sessions.items()))
            if last_seen > cutoff:
                break
            del self._sessions[session_id]
            logger.info('Session %s expired after %ss idle', session_id, self.idle_timeout)


def _extension() -> Dict[str, Any]:
    return current_app.extensions['formwizard']


def _error(message: str, code: str, status: int, field: str = ''):
    return jsonify({
        'ok': False,
        'errors': [{'field': field, 'message': message, 'code': code}]
    }), status


def _error_list(errors: Dict[str, str]) -> list:
    return [{'field': k, 'message': v, 'code': 'invalid'} for k, v in sorted(errors.items())]


def _load_session(session_id: str) -> Optional[FormSession]:
    return _extension()['sessions'].get(session_id)


def _session_response(form_session: FormSession, ok: bool = True, status: int = 200, **extra):
    body = {
        'ok': ok,
        'state': form_session.state(),
        'errors': _error_list(form_session.errors),
    }
    body.update(extra)
    return jsonify(body), status


def _run_prefetch(form_session: FormSession):
    """Resolve the current section's prefetch sources after a transition."""
    if not current_app.config.get('PREFETCH_ON_NAVIGATION', True):
        return
    if not form_session.current_section.prefetch:
        return
    outcome = asyncio.run(form_session.prefetch_current())
    failed = [name for name, ok in outcome.items() if not ok]
    if failed:
        current_app.logger.warning(f'Prefetch failed for: {", ".join(failed)}')


def describe_field(element: FieldDefinition) -> Dict[str, Any]:
    """Client-facing description of a field."""
    data: Dict[str, Any] = {
        'id': element.id,
        'type': element.type,
        'label': sanitize_string(element.label),
        'placeholder': element.placeholder,
        'required': element.validation.required,
        'showIf': [
            {'field': c.field, 'value': c.value, 'compareField': c.compare_field, 'operator': c.operator}
            for c in element.show_if
        ],
    }
    if element.options is not None:
        data['options'] = [o.to_dict() for o in element.options]
    if element.options_ref is not None:
        data['optionsSource'] = element.options_ref.source
    if element.columns:
        data['columns'] = [describe_field(c) for c in element.columns]
    if element.component:
        data['component'] = element.component
    if element.input_pattern:
        data['inputPattern'] = element.input_pattern
    return data


def describe_section(section: Section) -> Dict[str, Any]:
    return {
        'id': section.id,
        'title': sanitize_string(section.title),
        'description': sanitize_rich_text(section.description) if section.description else None,
        'prefetch': list(section.prefetch),
        'elements': [describe_field(e) for e in section.elements],
        'subsections': [
            {
                'id': s.id,
                'title': sanitize_string(s.title),
                'elements': [describe_field(e) for e in s.elements],
            }
            for s in section.subsections
        ],
    }


def describe_config(config: FormConfig) -> Dict[str, Any]:
    return {
        'title': sanitize_string(config.title),
        'sections': [describe_section(s) for s in config.sections],
        'sources': sorted(config.sources),
    }


# Configuration

@api_bp.route('/config', methods=['GET'])
def api_config():
    """Describe the loaded form for a rendering client."""
    return jsonify({'ok': True, 'config': describe_config(_extension()['config'])}), 200


@api_bp.route('/csrf-token', methods=['GET'])
def api_csrf_token():
    return jsonify({'ok': True, 'csrf_token': generate_csrf()}), 200


# Sessions

@api_bp.route('/session', methods=['POST'])
@rate_limit('session_create')
def api_create_session():
    """Start a new form session."""
    form_session = _extension()['sessions'].create()
    current_app.logger.info(f'Session {form_session.session_id} created')
    _run_prefetch(form_session)
    return _session_response(form_session, status=201)


@api_bp.route('/session/<session_id>', methods=['GET'])
def api_get_session(session_id: str):
    form_session = _load_session(session_id)
    if form_session is None:
        return _error('Session not found', 'not_found', 404)
    return _session_response(form_session)


@api_bp.route('/session/<session_id>', methods=['DELETE'])
def api_end_session(session_id: str):
    if _load_session(session_id) is None:
        return _error('Session not found', 'not_found', 404)
    _extension()['sessions'].discard(session_id)
    return jsonify({'ok': True}), 200


# Answers

@api_bp.route('/session/<session_id>/fields/<field_id>', methods=['POST'])
@rate_limit('answers')
def api_set_field(session_id: str, field_id: str):
    """
    Set a field's value.

    Body is one of:
        {"value": ...}                       any single-valued field
        {"option": "x", "checked": true}     checkbox group toggle
        {"rows": [...]}                      table field
    """
    form_session = _load_session(session_id)
    if form_session is None:
        return _error('Session not found', 'not_found', 404)

    payload = request.get_json(silent=True)
    if not isinstance(payload, dict):
        return _error('No JSON payload provided', 'missing_payload', 400)

    try:
        element = form_session.field(field_id)
    except KeyError:
        return _error(f'Unknown field: {field_id}', 'unknown_field', 404, field_id)

    try:
        if 'option' in payload:
            error = form_session.set_multi_value(
                field_id, str(payload['option']), bool(payload.get('checked', True))
            )
        elif 'rows' in payload:
            error = form_session.set_table_value(field_id, payload['rows'])
        elif element.is_date:
            error = form_session.set_date_value(field_id, payload.get('value'))
        else:
            error = form_session.set_field_value(field_id, payload.get('value'))
    except TypeError as e:
        return _error(str(e), 'type', 400, field_id)

    return _session_response(form_session, ok=error is None, field_error=error)


@api_bp.route('/session/<session_id>/tables/<field_id>/rows', methods=['POST'])
@api_bp.route('/session/<session_id>/tables/<field_id>/rows/<int:index>', methods=['PUT', 'DELETE'])
@rate_limit('answers')
def api_table_row(session_id: str, field_id: str, index: Optional[int] = None):
    """Add, replace or delete one row of a table field."""
    form_session = _load_session(session_id)
    if form_session is None:
        return _error('Session not found', 'not_found', 404)

    try:
        element = form_session.field(field_id)
    except KeyError:
        return _error(f'Unknown field: {field_id}', 'unknown_field', 404, field_id)
    if not element.is_table:
        return _error(f'{field_id} is not a table', 'not_a_table', 400, field_id)

    try:
        if request.method == 'DELETE':
            form_session.delete_table_row(field_id, index)
            return _session_response(form_session)

        payload = request.get_json(silent=True) or {}
        row = payload.get('row')
        if not isinstance(row, dict):
            return _error('Row must be an object', 'missing_payload', 400, field_id)

        if request.method == 'PUT':
            row_errors = form_session.update_table_row(field_id, index, row)
        else:
            row_errors = form_session.add_table_row(field_id, row)
    except IndexError as e:
        return _error(str(e), 'not_found', 404, field_id)
    except TypeError as e:
        return _error(str(e), 'type', 400, field_id)

    if row_errors:
        return _session_response(form_session, ok=False, status=422, row_errors=row_errors)
    return _session_response(form_session)


# Navigation

@api_bp.route('/session/<session_id>/next', methods=['POST'])
@rate_limit('navigation')
def api_next(session_id: str):
    form_session = _load_session(session_id)
    if form_session is None:
        return _error('Session not found', 'not_found', 404)
    moved = form_session.next()
    if moved and not form_session.submitted:
        _run_prefetch(form_session)
    return _session_response(form_session, ok=moved, status=200 if moved else 422,
                             submission=form_session.last_submission if form_session.submitted else None)


@api_bp.route('/session/<session_id>/previous', methods=['POST'])
@rate_limit('navigation')
def api_previous(session_id: str):
    form_session = _load_session(session_id)
    if form_session is None:
        return _error('Session not found', 'not_found', 404)
    moved = form_session.previous()
    if moved:
        _run_prefetch(form_session)
    return _session_response(form_session, ok=moved)


@api_bp.route('/session/<session_id>/jump/<int:index>', methods=['POST'])
@rate_limit('navigation')
def api_jump(session_id: str, index: int):
    form_session = _load_session(session_id)
    if form_session is None:
        return _error('Session not found', 'not_found', 404)
    origin = form_session.current
    moved = form_session.jump(index)
    if moved and form_session.current != origin:
        _run_prefetch(form_session)
    return _session_response(form_session, ok=moved, status=200 if moved else 409)


@api_bp.route('/session/<session_id>/submit', methods=['POST'])
@rate_limit('navigation')
def api_submit(session_id: str):
    """Submit from the last section; the answers go to the submission sink."""
    form_session = _load_session(session_id)
    if form_session is None:
        return _error('Session not found', 'not_found', 404)
    if not form_session.submit():
        return _session_response(form_session, ok=False, status=422)
    return _session_response(form_session, submission=form_session.last_submission)


@api_bp.route('/session/<session_id>/reset', methods=['POST'])
@rate_limit('navigation')
def api_reset(session_id: str):
    form_session = _load_session(session_id)
    if form_session is None:
        return _error('Session not found', 'not_found', 404)
    form_session.reset()
    _run_prefetch(form_session)
    return _session_response(form_session)


# Import / export

@api_bp.route('/session/<session_id>/export', methods=['GET'])
def api_export(session_id: str):
    form_session = _load_session(session_id)
    if form_session is None:
        return _error('Session not found', 'not_found', 404)
    return Response(
        form_session.export_answers(),
        mimetype='application/json',
        headers={'Content-Disposition': 'attachment; filename=answers.json'}
    )


@api_bp.route('/session/<session_id>/import', methods=['POST'])
@rate_limit('import')
def api_import(session_id: str):
    form_session = _load_session(session_id)
    if form_session is None:
        return _error('Session not found', 'not_found', 404)
    try:
        form_session.import_answers(request.get_data(as_text=True))
    except AnswersImportError as e:
        current_app.logger.warning(f'Import rejected for {session_id}: {e}')
        return _error(str(e), 'import_failed', 400)
    return _session_response(form_session)


# Options

@api_bp.route('/session/<session_id>/options/<field_id>', methods=['GET'])
@rate_limit('options')
def api_field_options(session_id: str, field_id: str):
    """
    Options of a field.

    With ?load=1 a remote source without a cache entry is resolved first;
    otherwise the current state is reported (idle/pending/failed/resolved).
    """
    form_session = _load_session(session_id)
    if form_session is None:
        return _error('Session not found', 'not_found', 404)
    try:
        form_session.field(field_id)
    except KeyError:
        return _error(f'Unknown field: {field_id}', 'unknown_field', 404, field_id)

    if request.args.get('load') in ('1', 'true', 'yes'):
        view = asyncio.run(form_session.load_field_options(field_id))
    else:
        view = form_session.field_options(field_id)
    return jsonify({'ok': view.error is None, 'field': field_id, **view.to_dict()}), 200


@api_bp.route('/session/<session_id>/options/<source>/resolve', methods=['POST'])
@rate_limit('options')
def api_resolve_source(session_id: str, source: str):
    form_session = _load_session(session_id)
    if form_session is None:
        return _error('Session not found', 'not_found', 404)
    try:
        options = asyncio.run(form_session.resolve_options(source))
    except OptionSourceError as e:
        current_app.logger.error(f'Option source error: {e}')
        return _error(str(e), 'option_source_failed', 502)
    return jsonify({'ok': True, 'source': source, 'options': options}), 200


# Read-only views

@api_bp.route('/session/<session_id>/responses', methods=['GET'])
def api_responses(session_id: str):
    """Readable summary of the current responses."""
    form_session = _load_session(session_id)
    if form_session is None:
        return _error('Session not found', 'not_found', 404)
    return jsonify({'ok': True, 'summary': form_session.responses().to_dict()}), 200


@api_bp.route('/session/<session_id>/audit', methods=['GET'])
def api_audit(session_id: str):
    form_session = _load_session(session_id)
    if form_session is None:
        return _error('Session not found', 'not_found', 404)
    valid_count, invalid_count, invalid = form_session.audit.verify_integrity()
    return jsonify({
        'ok': invalid_count == 0,
        'entries': form_session.audit.to_list(),
        'integrity': {'valid': valid_count, 'invalid': invalid_count, 'invalid_sequences': invalid},
    }), 200
