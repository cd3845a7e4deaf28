"""
Remote option sources.

Resolves the option lists of select-style fields that reference a named
remote source, caches results per source name, and tracks a per-source
state so consumers can tell "never requested" from "in flight" from
"failed" from "loaded".

Resolution:
===========
1. Parameter values of the exact form "{fieldId}" are replaced by the
   current answer for that field (absent answers become "")
2. The request {method, url, headers, params} goes to the transport
3. The response passes through the source's named transform, if any
4. With cache enabled (the default) the result is stored under the source
   name; with cache: false every access re-resolves
5. On failure the state becomes FAILED and any previous entry is kept

Two overlapping resolutions of the same source both write the cache; the
one that completes last wins. Requests are not fenced by generation.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Mapping, Optional

import httpx

from formwizard.config_model import FieldDefinition, FormConfig, RemoteOptionSource, placeholder_field
from formwizard.exceptions import OptionSourceError


logger = logging.getLogger(__name__)


class OptionState(str, Enum):
    """Lifecycle of a remote source within a session."""
    IDLE = 'idle'
    PENDING = 'pending'
    RESOLVED = 'resolved'
    FAILED = 'failed'


@dataclass(frozen=True)
class OptionRequest:
    """What the transport is asked to fetch."""
    method: str
    url: str
    headers: Mapping[str, str] = field(default_factory=dict)
    params: Mapping[str, str] = field(default_factory=dict)


Transport = Callable[[OptionRequest], Awaitable[Any]]


@dataclass
class FieldOptions:
    """Options of one field as seen by a renderer."""
    state: OptionState
    options: Optional[List[Any]] = None
    error: Optional[str] = None

    @property
    def is_loading(self) -> bool:
        return self.state in (OptionState.IDLE, OptionState.PENDING) and self.options is None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'state': self.state.value,
            'options': self.options,
            'error': self.error,
        }


class OptionCache:
    """
    Per-session cache of resolved option lists keyed by source name.

    ``get`` returns None for a source that has never been stored, which is
    distinct from a stored empty list.
    """

    def __init__(self):
        self._entries: Dict[str, Any] = {}
        self._states: Dict[str, OptionState] = {}
        self._errors: Dict[str, str] = {}

    def __contains__(self, name: str) -> bool:
        return name in self._entries

    def get(self, name: str) -> Optional[Any]:
        return self._entries.get(name)

    def state(self, name: str) -> OptionState:
        return self._states.get(name, OptionState.IDLE)

    def error(self, name: str) -> Optional[str]:
        return self._errors.get(name)

    def mark_pending(self, name: str):
        self._states[name] = OptionState.PENDING

    def mark_resolved(self, name: str, options: Any = None, store: bool = True):
        if store:
            self._entries[name] = options
        self._states[name] = OptionState.RESOLVED
        self._errors.pop(name, None)

    def mark_failed(self, name: str, message: str):
        self._states[name] = OptionState.FAILED
        self._errors[name] = message

    def invalidate(self, name: str):
        self._entries.pop(name, None)
        self._states.pop(name, None)
        self._errors.pop(name, None)

    def clear(self):
        self._entries.clear()
        self._states.clear()
        self._errors.clear()

    def snapshot(self) -> Dict[str, Dict[str, Any]]:
        """State of every source touched so far."""
        names = set(self._entries) | set(self._states)
        return {
            name: {
                'state': self.state(name).value,
                'cached': name in self._entries,
                'error': self.error(name),
            }
            for name in sorted(names)
        }


# Transform registry
_TRANSFORMS: Dict[str, Callable[[Any], Any]] = {}


def register_transform(name: str):
    """Decorator registering a named response post-processing step."""
    def decorator(func: Callable[[Any], Any]) -> Callable[[Any], Any]:
        _TRANSFORMS[name] = func
        return func
    return decorator


def get_transform(name: str) -> Callable[[Any], Any]:
    try:
        return _TRANSFORMS[name]
    except KeyError:
        raise OptionSourceError(name, f'unknown transform {name!r}')


@register_transform('normalize_options')
def normalize_options(payload: Any) -> List[Dict[str, str]]:
    """
    Normalize option arrays into the canonical object form:
      [{ "value": str, "label": str }, ...]

    Accepts a bare list, or an object wrapping the list under
    "options", "data", "items" or "results".
    """
    if isinstance(payload, Mapping):
        for key in ('options', 'data', 'items', 'results'):
            if isinstance(payload.get(key), list):
                payload = payload[key]
                break
    if not isinstance(payload, list):
        return []

    out: List[Dict[str, str]] = []
    for item in payload:
        if isinstance(item, str):
            out.append({'value': item, 'label': item})
        elif isinstance(item, Mapping):
            value = item.get('value', item.get('id'))
            label = item.get('label', item.get('name', value))
            if value is None:
                continue
            out.append({'value': str(value), 'label': str(label)})
    return out


def _param_text(value: Any) -> str:
    if value is None:
        return ''
    if isinstance(value, bool):
        return 'true' if value else 'false'
    return str(value)


def substitute_params(params: Mapping[str, Any], answers: Mapping[str, Any]) -> Dict[str, str]:
    """
    Resolve "{fieldId}" placeholders against the answers.

    Only values that are exactly one placeholder are substituted; other
    values are passed through as text.
    """
    resolved: Dict[str, str] = {}
    for key, value in params.items():
        ref = placeholder_field(value)
        if ref is not None:
            resolved[key] = _param_text(answers.get(ref))
        else:
            resolved[key] = _param_text(value)
    return resolved


def build_request(source: RemoteOptionSource, answers: Mapping[str, Any],
                  extra_params: Optional[Mapping[str, Any]] = None,
                  base_url: Optional[str] = None) -> OptionRequest:
    """Build the transport request for a source and the current answers."""
    params = dict(source.params)
    if extra_params:
        params.update(extra_params)

    url = source.url
    if base_url and not url.startswith(('http://', 'https://')):
        url = base_url.rstrip('/') + '/' + url.lstrip('/')

    return OptionRequest(
        method=source.method,
        url=url,
        headers=dict(source.headers),
        params=substitute_params(params, answers)
    )


class HttpxTransport:
    """Transport that issues option requests with httpx."""

    def __init__(self, timeout: Optional[float] = 10.0,
                 client: Optional[httpx.AsyncClient] = None):
        self._timeout = httpx.Timeout(timeout)
        self._client = client

    async def __call__(self, request: OptionRequest) -> Any:
        if self._client is not None:
            return await self._send(self._client, request)
        async with httpx.AsyncClient(timeout=self._timeout) as client:
            return await self._send(client, request)

    async def _send(self, client: httpx.AsyncClient, request: OptionRequest) -> Any:
        if request.method == 'GET':
            response = await client.request(
                request.method, request.url, headers=dict(request.headers),
                params=dict(request.params)
            )
        else:
            response = await client.request(
                request.method, request.url, headers=dict(request.headers),
                json=dict(request.params)
            )
        response.raise_for_status()
        return response.json()


class OptionResolver:
    """
    Resolves remote option sources for one session.

    Args:
        config: The form configuration holding the named sources
        cache: The session's option cache
        transport: Async callable fetching an OptionRequest
        base_url: Prefix for relative source urls
    """

    def __init__(self, config: FormConfig, cache: OptionCache,
                 transport: Optional[Transport] = None,
                 base_url: Optional[str] = None):
        self.config = config
        self.cache = cache
        self.transport = transport or HttpxTransport()
        self.base_url = base_url

    def source(self, name: str) -> RemoteOptionSource:
        try:
            return self.config.sources[name]
        except KeyError:
            raise OptionSourceError(name, 'no such option source')

    async def resolve(self, name: str, answers: Mapping[str, Any],
                      extra_params: Optional[Mapping[str, Any]] = None) -> Any:
        """
        Resolve a named source.

        Args:
            name: Remote source name
            answers: Current answers used for placeholder substitution
            extra_params: Field-level parameters layered over the source's

        Returns:
            The (transformed) option list

        Raises:
            OptionSourceError: If the request or the transform fails
        """
        source = self.source(name)
        request = build_request(source, answers, extra_params, self.base_url)

        self.cache.mark_pending(name)
        logger.debug('Resolving option source %s: %s %s', name, request.method, request.url)

        try:
            payload = await self.transport(request)
            if source.transform:
                payload = get_transform(source.transform)(payload)
        except OptionSourceError as e:
            self.cache.mark_failed(name, str(e))
            logger.warning('Option source %s failed: %s', name, e)
            raise
        except Exception as e:
            self.cache.mark_failed(name, str(e))
            logger.warning('Option source %s failed: %s', name, e)
            raise OptionSourceError(name, str(e)) from e

        self.cache.mark_resolved(name, payload, store=source.cache)
        logger.info('Option source %s resolved (%s entries)', name,
                    len(payload) if hasattr(payload, '__len__') else '?')
        return payload

    async def prefetch(self, names: Iterable[str], answers: Mapping[str, Any]) -> Dict[str, bool]:
        """
        Resolve several sources concurrently, logging failures.

        Returns:
            Mapping of source name to whether it resolved
        """
        names = list(names)
        results = await asyncio.gather(
            *(self.resolve(name, answers) for name in names),
            return_exceptions=True
        )
        outcome: Dict[str, bool] = {}
        for name, result in zip(names, results):
            if isinstance(result, OptionSourceError):
                logger.warning('Prefetch of %s failed: %s', name, result)
                outcome[name] = False
            elif isinstance(result, BaseException):
                raise result
            else:
                outcome[name] = True
        return outcome

    def options_for(self, element: FieldDefinition) -> FieldOptions:
        """
        Options of a field as currently known.

        Inline options are always resolved. Remote options report the cache
        state; a source that was never loaded reports IDLE with no options.
        Sources with ``cache: false`` hold nothing between loads, so they
        report IDLE again once their last resolution has finished.
        """
        if element.options_ref is None:
            options = [o.to_dict() for o in element.options or ()]
            return FieldOptions(OptionState.RESOLVED, options)

        name = element.options_ref.source
        state = self.cache.state(name)
        options = self.cache.get(name)
        if state == OptionState.RESOLVED and name not in self.cache:
            state = OptionState.IDLE
        return FieldOptions(state=state, options=options, error=self.cache.error(name))

    async def resolve_field(self, element: FieldDefinition, answers: Mapping[str, Any]) -> FieldOptions:
        """Resolve the options of one field, returning its view afterwards."""
        if element.options_ref is None:
            return self.options_for(element)

        source = self.source(element.options_ref.source)
        if source.cache and element.options_ref.source in self.cache:
            return self.options_for(element)

        try:
            payload = await self.resolve(element.options_ref.source, answers,
                                         element.options_ref.params)
        except OptionSourceError:
            return self.options_for(element)

        if not source.cache:
            return FieldOptions(OptionState.RESOLVED, payload)
        return self.options_for(element)
