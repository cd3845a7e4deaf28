"""
Form session: the aggregate owning one user's progress through a form.

A FormSession holds the answers, the error map, the option cache, the
navigation state and an audit trail, and exposes the action surface used by
a UI or API layer. Sessions are plain objects: several can coexist against
the same configuration.

Revalidation Policy:
====================
Setting a value validates that one field and updates only its error entry.
Fields whose compare or showIf rules depend on the changed field are not
revalidated; they are checked again on the next section transition or
submit, when the whole section is validated and the error map replaced.

Prefetch:
=========
Entering a section schedules its prefetch sources on the running event loop.
Without a running loop nothing is scheduled and the caller may await
prefetch_current(). Prefetch failures are logged and never block navigation.
In-flight prefetches are not cancelled by leaving the section.
"""

import asyncio
import copy
import json
import logging
import secrets
from datetime import date, datetime
from typing import Any, Callable, Dict, List, Mapping, Optional, Union

from formwizard.audit_logger import AuditAction, AuditCategory, AuditTrail
from formwizard.conditions import visible_section_fields
from formwizard.config_model import NUMERIC_COMPONENTS, FieldDefinition, FormConfig, Section
from formwizard.exceptions import AnswersImportError, OptionSourceError
from formwizard.navigation import NavigationController, NavigationEvent
from formwizard.options import FieldOptions, OptionCache, OptionResolver, Transport
from formwizard.summary import ResponseSummary, build_response_summary
from formwizard.utils import apply_input_mask, coerce_to_float, parse_date
from formwizard.validation import (
    ValidationResult, validate_field, validate_section, validate_table_row
)


logger = logging.getLogger(__name__)

SubmitSink = Callable[[Dict[str, Any]], None]

_SCALAR_TYPES = (str, int, float, bool)


def _is_row(value: Any) -> bool:
    if not isinstance(value, dict):
        return False
    for key, cell in value.items():
        if not isinstance(key, str):
            return False
        if cell is None or isinstance(cell, _SCALAR_TYPES):
            continue
        if isinstance(cell, list) and all(isinstance(v, str) for v in cell):
            continue
        return False
    return True


def is_answer_value(value: Any) -> bool:
    """Whether a value has one of the supported answer shapes."""
    if value is None or isinstance(value, _SCALAR_TYPES):
        return True
    if isinstance(value, list):
        return all(isinstance(v, str) for v in value) or all(_is_row(v) for v in value)
    return False


class FormSession:
    """
    One user's answers and position in a configured form.

    Args:
        config: Loaded form configuration
        transport: Async transport for remote option sources
        submit_sink: Called with a copy of the answers on successful submit
        today: Fixed evaluation date for relative date rules (defaults to
            the current date at each validation)
        session_id: Identifier used in audit records
        base_url: Prefix for relative remote source urls
    """

    def __init__(self, config: FormConfig, transport: Optional[Transport] = None,
                 submit_sink: Optional[SubmitSink] = None, today: Optional[date] = None,
                 session_id: Optional[str] = None, base_url: Optional[str] = None):
        self.config = config
        self.session_id = session_id or secrets.token_urlsafe(16)
        self.today = today
        self.submit_sink = submit_sink

        self.answers: Dict[str, Any] = {}
        self.errors: Dict[str, str] = {}
        self.option_cache = OptionCache()
        self.options = OptionResolver(config, self.option_cache, transport, base_url)
        self.audit = AuditTrail(self.session_id)
        self.last_submission: Optional[Dict[str, Any]] = None

        self._fields = config.field_index()
        self._prefetch_tasks = set()

        self.navigation = NavigationController(config.section_count, self._validate_section_at)
        self.navigation.add_listener(self._on_navigation)
        self._schedule_prefetch(0)

    # Read helpers

    @property
    def current(self) -> int:
        return self.navigation.current

    @property
    def current_section(self) -> Section:
        return self.config.sections[self.navigation.current]

    @property
    def section_validity(self) -> List[bool]:
        return self.navigation.section_validity

    @property
    def submitted(self) -> bool:
        return self.navigation.submitted

    def field(self, field_id: str) -> FieldDefinition:
        try:
            return self._fields[field_id]
        except KeyError:
            raise KeyError(f'Unknown field: {field_id}')

    def visible_fields(self, index: Optional[int] = None) -> List[FieldDefinition]:
        """Fields of a section (default: current) visible for the answers."""
        section = self.config.sections[self.current if index is None else index]
        return visible_section_fields(section, self.answers)

    def validate_section(self, index: Optional[int] = None) -> ValidationResult:
        """Validate a section without touching errors or navigation."""
        section = self.config.sections[self.current if index is None else index]
        return validate_section(section, self.answers, self.today)

    def responses(self) -> ResponseSummary:
        return build_response_summary(self.config, self.answers, self.option_cache)

    def state(self) -> Dict[str, Any]:
        """Snapshot of the session for API responses."""
        section = self.current_section
        return {
            'session_id': self.session_id,
            'title': self.config.title,
            'navigation': self.navigation.to_dict([s.title for s in self.config.sections]),
            'section': {
                'id': section.id,
                'title': section.title,
                'visible_fields': [f.id for f in self.visible_fields()],
            },
            'answers': copy.deepcopy(self.answers),
            'errors': dict(self.errors),
            'options': self.option_cache.snapshot(),
        }

    # Answer actions

    def _store(self, element: FieldDefinition, value: Any) -> Optional[str]:
        if not is_answer_value(value):
            raise TypeError(f'Unsupported value for {element.id}: {type(value).__name__}')
        self.answers[element.id] = value
        error = validate_field(element, value, self.answers, self.today)
        if error:
            self.errors[element.id] = error
        else:
            self.errors.pop(element.id, None)
        self.audit.log_action(
            AuditAction.FIELD_CHANGED, AuditCategory.UPDATE, element.id,
            details={'valid': error is None}
        )
        return error

    def set_field_value(self, field_id: str, value: Any) -> Optional[str]:
        """
        Set a single-valued field and validate it.

        Masked fields are formatted through their input pattern and rating
        components store numbers.

        Returns:
            The field's error message, or None if valid
        """
        element = self.field(field_id)

        if element.input_pattern and isinstance(value, str):
            value = apply_input_mask(element.input_pattern, value)
        elif element.component in NUMERIC_COMPONENTS and value is not None:
            number = coerce_to_float(value)
            if number is not None:
                value = int(number) if number.is_integer() else number

        return self._store(element, value)

    def set_multi_value(self, field_id: str, option_value: str, checked: bool) -> Optional[str]:
        """Check or uncheck one option of a checkbox group."""
        element = self.field(field_id)
        current = list(self.answers.get(field_id) or [])
        if checked and option_value not in current:
            current.append(option_value)
        elif not checked:
            current = [v for v in current if v != option_value]
        return self._store(element, current)

    def set_date_value(self, field_id: str, value: Union[date, datetime, str, None]) -> Optional[str]:
        """Set a date field; dates are stored as YYYY-MM-DD strings."""
        element = self.field(field_id)
        if value is None:
            stored = ''
        elif not isinstance(value, (str, date)):
            raise TypeError(f'Unsupported date for {field_id}: {type(value).__name__}')
        else:
            parsed = parse_date(value)
            stored = parsed.isoformat() if parsed is not None else str(value)
        return self._store(element, stored)

    def set_table_value(self, field_id: str, rows: List[Mapping[str, Any]]) -> Optional[str]:
        """Replace the rows of a table field."""
        element = self.field(field_id)
        if not isinstance(rows, list) or not all(isinstance(r, Mapping) for r in rows):
            raise TypeError('Table value must be a list of row objects')
        return self._store(element, [dict(r) for r in rows])

    def _row_errors(self, element: FieldDefinition, row: Mapping[str, Any]) -> Dict[str, str]:
        if not isinstance(row, Mapping) or not _is_row(dict(row)):
            raise TypeError(f'Unsupported row for {element.id}')
        errors = validate_table_row(element.columns, row, self.today)
        if errors:
            self.audit.log_action(
                AuditAction.ROW_REJECTED, AuditCategory.UPDATE, element.id,
                details={'columns': sorted(errors)}, success=False
            )
        return errors

    def add_table_row(self, field_id: str, row: Mapping[str, Any]) -> Dict[str, str]:
        """
        Validate a row and append it to a table field.

        Returns:
            Column errors; empty when the row was saved
        """
        element = self.field(field_id)
        errors = self._row_errors(element, row)
        if errors:
            return errors
        rows = list(self.answers.get(field_id) or [])
        rows.append(dict(row))
        self._store(element, rows)
        return {}

    def update_table_row(self, field_id: str, index: int, row: Mapping[str, Any]) -> Dict[str, str]:
        """Validate a row and replace the row at ``index``."""
        element = self.field(field_id)
        rows = list(self.answers.get(field_id) or [])
        if not 0 <= index < len(rows):
            raise IndexError(f'{field_id} has no row {index}')
        errors = self._row_errors(element, row)
        if errors:
            return errors
        rows[index] = dict(row)
        self._store(element, rows)
        return {}

    def delete_table_row(self, field_id: str, index: int) -> Optional[str]:
        element = self.field(field_id)
        rows = list(self.answers.get(field_id) or [])
        if not 0 <= index < len(rows):
            raise IndexError(f'{field_id} has no row {index}')
        del rows[index]
        return self._store(element, rows)

    # Navigation actions

    def _validate_section_at(self, index: int) -> bool:
        result = validate_section(self.config.sections[index], self.answers, self.today)
        self.errors = result.error_map
        return result.is_valid

    def next(self) -> bool:
        return self.navigation.go_next()

    def previous(self) -> bool:
        return self.navigation.go_previous()

    def jump(self, index: int) -> bool:
        return self.navigation.jump_to(index)

    def submit(self) -> bool:
        return self.navigation.submit()

    def reset(self):
        """Clear answers, errors and progress; the option cache is kept."""
        self.answers = {}
        self.errors = {}
        self.last_submission = None
        self.navigation.reset()

    def _on_navigation(self, event: str, from_index: int, to_index: int):
        if event == NavigationEvent.BLOCKED:
            self.audit.log_action(
                AuditAction.NAVIGATION_BLOCKED, AuditCategory.NAVIGATE, str(from_index),
                details={'target': to_index, 'errors': sorted(self.errors)}, success=False
            )
            return

        if event == NavigationEvent.SUBMIT_REJECTED:
            self.audit.log_action(
                AuditAction.SUBMISSION_REJECTED, AuditCategory.SUBMIT, str(from_index),
                details={'errors': sorted(self.errors)}, success=False
            )
            return

        if event == NavigationEvent.SUBMITTED:
            self._deliver_submission()
            return

        if event == NavigationEvent.RESET:
            self.audit.log_action(AuditAction.RESET, AuditCategory.SYSTEM)
        else:
            self.audit.log_action(
                AuditAction.NAVIGATED, AuditCategory.NAVIGATE, str(to_index),
                details={'event': event, 'from': from_index}
            )
        self._schedule_prefetch(to_index)

    def _deliver_submission(self):
        snapshot = copy.deepcopy(self.answers)
        self.last_submission = snapshot
        self.audit.log_action(
            AuditAction.SUBMITTED, AuditCategory.SUBMIT,
            details={'answer_count': len(snapshot)}
        )
        if self.submit_sink is None:
            logger.info('Form %r submitted with %d answers', self.config.title, len(snapshot))
            return
        try:
            self.submit_sink(copy.deepcopy(snapshot))
        except Exception as e:
            logger.error('Submission sink failed: %s', e)
            self.audit.log_action(
                AuditAction.SINK_FAILED, AuditCategory.SUBMIT,
                success=False, error_message=str(e)
            )

    # Import / export

    def export_answers(self) -> str:
        """Serialize the answers as a flat JSON object."""
        self.audit.log_action(
            AuditAction.ANSWERS_EXPORTED, AuditCategory.SYSTEM,
            details={'answer_count': len(self.answers)}
        )
        return json.dumps(self.answers, sort_keys=True, ensure_ascii=False)

    def import_answers(self, payload: Union[str, bytes, Mapping[str, Any]]):
        """
        Replace the answers wholesale.

        Imported answers are not validated now; they are checked on the next
        section transition or submit. Errors are cleared.

        Raises:
            AnswersImportError: If the payload is not a flat mapping of
                supported answer shapes; the answers are left unchanged
        """
        try:
            data = self._parse_import(payload)
        except AnswersImportError as e:
            self.audit.log_action(
                AuditAction.IMPORT_FAILED, AuditCategory.UPDATE,
                success=False, error_message=str(e)
            )
            raise

        unknown = sorted(k for k in data if k not in self._fields)
        if unknown:
            logger.debug('Imported answers for unknown fields: %s', ', '.join(unknown))

        self.answers = data
        self.errors = {}
        self.audit.log_action(
            AuditAction.ANSWERS_IMPORTED, AuditCategory.UPDATE,
            details={'answer_count': len(data), 'unknown_fields': unknown}
        )

    @staticmethod
    def _parse_import(payload: Union[str, bytes, Mapping[str, Any]]) -> Dict[str, Any]:
        if isinstance(payload, (str, bytes)):
            try:
                payload = json.loads(payload)
            except (json.JSONDecodeError, UnicodeDecodeError) as e:
                raise AnswersImportError(f'Import is not valid JSON: {e}')

        if not isinstance(payload, Mapping):
            raise AnswersImportError('Import must be a JSON object of field answers')

        for key, value in payload.items():
            if not isinstance(key, str):
                raise AnswersImportError(f'Answer key {key!r} is not a field id')
            if not is_answer_value(value):
                raise AnswersImportError(f'Answer for {key!r} has an unsupported shape')

        return copy.deepcopy(dict(payload))

    # Option sources

    def field_options(self, field_id: str) -> FieldOptions:
        """Current options of a field without triggering a load."""
        return self.options.options_for(self.field(field_id))

    async def load_field_options(self, field_id: str) -> FieldOptions:
        """Resolve a field's remote options if needed and return them."""
        return await self.options.resolve_field(self.field(field_id), self.answers)

    async def resolve_options(self, source_name: str) -> Any:
        """
        Resolve a named source for the current answers.

        Raises:
            OptionSourceError: If the source fails; the cache keeps any
                previous entry
        """
        try:
            options = await self.options.resolve(source_name, self.answers)
        except OptionSourceError as e:
            self._audit_options(source_name, False, str(e))
            raise
        self._audit_options(source_name, True)
        return options

    async def prefetch_section(self, index: Optional[int] = None) -> Dict[str, bool]:
        """Resolve a section's prefetch sources, logging failures."""
        section = self.config.sections[self.current if index is None else index]
        if not section.prefetch:
            return {}
        outcome = await self.options.prefetch(section.prefetch, self.answers)
        for name, ok in outcome.items():
            self._audit_options(name, ok, self.option_cache.error(name))
        return outcome

    async def prefetch_current(self) -> Dict[str, bool]:
        return await self.prefetch_section(self.current)

    async def wait_for_prefetch(self):
        """Wait for every scheduled prefetch to finish."""
        while self._prefetch_tasks:
            await asyncio.gather(*list(self._prefetch_tasks))

    def _schedule_prefetch(self, index: int):
        if not self.config.sections[index].prefetch:
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.debug('No running event loop; prefetch for section %d not scheduled', index)
            return
        task = loop.create_task(self.prefetch_section(index))
        self._prefetch_tasks.add(task)
        task.add_done_callback(self._prefetch_tasks.discard)

    def _audit_options(self, source_name: str, success: bool, error: Optional[str] = None):
        self.audit.log_action(
            AuditAction.OPTIONS_LOADED if success else AuditAction.OPTIONS_FAILED,
            AuditCategory.FETCH, source_name, success=success,
            error_message=None if success else error
        )
