"""
Section navigation state machine.

States are the section indexes 0..N-1 plus a terminal "submitted" flag.

Transitions:
============
- next:     validate current; on success mark it completed and advance
            (on the last section this is a submit attempt)
- previous: always allowed above section 0, no validation
- jump(i):  allowed if i < current, i == current + 1, or section i was
            completed before; forward jumps validate the current section
            first and do not mark anything completed
- submit:   only on the last section; the validation outcome is recorded
            for that section and success sets "submitted"
- reset:    back to section 0, nothing completed, not submitted

Once submitted, every transition except reset is refused.

Section completion is sticky: it records that the user passed through a
section with valid answers, and later edits do not clear it.
"""

import logging
from typing import Callable, List, Optional


logger = logging.getLogger(__name__)


class NavigationEvent:
    """Constants for navigation events passed to listeners."""
    ADVANCED = 'advanced'
    RETREATED = 'retreated'
    JUMPED = 'jumped'
    BLOCKED = 'blocked'
    SUBMITTED = 'submitted'
    SUBMIT_REJECTED = 'submit_rejected'
    RESET = 'reset'


Listener = Callable[[str, int, int], None]


class NavigationController:
    """
    Wizard position and completion flags.

    Args:
        section_count: Number of top-level sections (at least 1)
        validate: Callback validating a section index, returning True if valid
    """

    def __init__(self, section_count: int, validate: Callable[[int], bool]):
        if section_count < 1:
            raise ValueError('A form needs at least one section')
        self.section_count = section_count
        self._validate = validate
        self.current = 0
        self.section_validity: List[bool] = [False] * section_count
        self.submitted = False
        self._listeners: List[Listener] = []

    def add_listener(self, listener: Listener):
        self._listeners.append(listener)

    def _emit(self, event: str, from_index: int, to_index: int):
        for listener in self._listeners:
            listener(event, from_index, to_index)

    @property
    def is_last(self) -> bool:
        return self.current == self.section_count - 1

    def can_jump(self, index: int) -> bool:
        """Whether jump rules allow the target, before validation."""
        if self.submitted or not 0 <= index < self.section_count:
            return False
        return (
            index <= self.current
            or index == self.current + 1
            or self.section_validity[index]
        )

    def go_next(self) -> bool:
        """
        Validate the current section and advance.

        Returns:
            True if the position advanced (or the form was submitted)
        """
        if self.submitted:
            return False

        if self.is_last:
            return self.submit()

        origin = self.current
        if not self._validate(origin):
            logger.debug('Section %d failed validation, staying', origin)
            self._emit(NavigationEvent.BLOCKED, origin, origin + 1)
            return False

        self.section_validity[origin] = True
        self.current = origin + 1
        self._emit(NavigationEvent.ADVANCED, origin, self.current)
        return True

    def go_previous(self) -> bool:
        """Step back one section without validation."""
        if self.submitted or self.current == 0:
            return False
        origin = self.current
        self.current -= 1
        self._emit(NavigationEvent.RETREATED, origin, self.current)
        return True

    def jump_to(self, index: int) -> bool:
        """
        Jump to a section if the jump rules allow it.

        Returns:
            True if the position is now ``index``
        """
        if not self.can_jump(index):
            return False

        origin = self.current
        if index == origin:
            return True

        if index > origin and not self._validate(origin):
            self._emit(NavigationEvent.BLOCKED, origin, index)
            return False

        self.current = index
        self._emit(NavigationEvent.JUMPED, origin, index)
        return True

    def submit(self) -> bool:
        """
        Submit from the last section.

        Returns:
            True if the form is now submitted
        """
        if self.submitted or not self.is_last:
            return False

        valid = self._validate(self.current)
        self.section_validity[self.current] = valid
        if not valid:
            self._emit(NavigationEvent.SUBMIT_REJECTED, self.current, self.current)
            return False

        self.submitted = True
        self._emit(NavigationEvent.SUBMITTED, self.current, self.current)
        return True

    def reset(self):
        origin = self.current
        self.current = 0
        self.section_validity = [False] * self.section_count
        self.submitted = False
        self._emit(NavigationEvent.RESET, origin, 0)

    def to_dict(self, titles: Optional[List[str]] = None) -> dict:
        data = {
            'current': self.current,
            'section_count': self.section_count,
            'section_validity': list(self.section_validity),
            'submitted': self.submitted,
        }
        if titles is not None:
            data['steps'] = [
                {'index': i, 'title': title, 'completed': self.section_validity[i],
                 'reachable': self.can_jump(i)}
                for i, title in enumerate(titles)
            ]
        return data
