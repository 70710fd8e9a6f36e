import logging
import threading
import time
import uuid
from collections import OrderedDict
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from . import config
from .errors import ElementNotFound, EvaluationWarning
from .interactions import ElementState, EvaluationState, evaluate_until_stable, initial_state
from .ordering import sorted_elements
from .schemas import ChoiceInputData, Element, ElementKind, Form, InteractionRule, ItemsSource, ItemsSourceItem
from .validation import validate

logger = logging.getLogger(__name__)


@dataclass
class SubmitResult:
    success: bool
    values: Dict[int, Any] = field(default_factory=dict)
    errors: Dict[int, str] = field(default_factory=dict)


@dataclass
class RenderedElement:
    element: Element
    value: Any
    is_enabled: bool
    error: Optional[str] = None
    options: List[ItemsSourceItem] = field(default_factory=list)


class PreviewSession:
    def __init__(self, form: Form, rules: List[InteractionRule],
                 items_sources: Optional[List[ItemsSource]] = None, max_passes: Optional[int] = None):
        if form is None:
            raise ValueError('PreviewSession requires a form')
        self.session_id = str(uuid.uuid4())
        self.form = form
        self.rules = list(rules)
        self.items_sources = {s.items_source_id: s for s in (items_sources or [])}
        self.max_passes = config.MAX_EVALUATION_PASSES if max_passes is None else max_passes
        self.state: EvaluationState = {}
        self.errors: Dict[int, str] = {}
        self.warnings: List[EvaluationWarning] = []
        self.last_used = time.monotonic()
        self._lock = threading.RLock()
        self.init()

    def init(self):
        """Seed the state from the element defaults and run the rules once."""
        with self._lock:
            self.errors = {}
            self.warnings = []
            self._run(initial_state(self.form))

    def _run(self, state: EvaluationState):
        result = evaluate_until_stable(self.form, self.rules, state, self.max_passes)
        self.state = result.state
        for warning in result.warnings:
            if warning not in self.warnings:
                self.warnings.append(warning)
        return result

    def element_state(self, element_id: int) -> ElementState:
        try:
            return self.state[element_id]
        except KeyError:
            raise ElementNotFound(element_id)

    def set_value(self, element_id: int, value: Any):
        """Write a field value and re-evaluate every interaction rule."""
        with self._lock:
            if element_id not in self.state:
                raise ElementNotFound(element_id)
            state = {k: ElementState(v.value, v.is_visible, v.is_enabled) for k, v in self.state.items()}
            state[element_id].value = value
            self.errors.pop(element_id, None)
            return self._run(state)

    def options_for(self, element: Element) -> List[ItemsSourceItem]:
        if element.kind != ElementKind.ChoiceInput or not isinstance(element.type_specific, ChoiceInputData):
            return []
        source = self.items_sources.get(element.type_specific.items_source_id)
        return list(source.items) if source else []

    def visible_elements(self) -> List[RenderedElement]:
        """Visible elements in display order, as the renderer needs them."""
        out = []
        for element in sorted_elements(self.form.elements):
            entry = self.state[element.element_id]
            if not entry.is_visible:
                continue
            out.append(RenderedElement(
                element=element,
                value=entry.value,
                is_enabled=entry.is_enabled,
                error=self.errors.get(element.element_id),
                options=self.options_for(element),
            ))
        return out

    def submit(self) -> SubmitResult:
        with self._lock:
            errors: Dict[int, str] = {}
            values: Dict[int, Any] = {}
            for element in sorted_elements(self.form.elements):
                entry = self.state[element.element_id]
                if not entry.is_visible:
                    continue
                message = validate(element, entry.value, entry.is_visible)
                if message is not None:
                    errors[element.element_id] = message
                else:
                    values[element.element_id] = entry.value
            self.errors = errors

        if errors:
            logger.info('preview submit for form %s failed validation on %s element(s)', self.form.form_id, len(errors))
            return SubmitResult(success=False, errors=errors)
        return SubmitResult(success=True, values=values)


class PreviewSessionStore:
    """In-process registry of preview sessions, keyed by session id.

    Holds at most ``max_sessions`` sessions, dropping the least recently used
    one past that, and forgets sessions idle for longer than ``ttl`` seconds.
    """

    def __init__(self, max_sessions: Optional[int] = None, ttl: Optional[float] = None, clock=time.monotonic):
        self.max_sessions = config.PREVIEW_MAX_SESSIONS if max_sessions is None else max_sessions
        self.ttl = config.PREVIEW_SESSION_TTL if ttl is None else ttl
        self._clock = clock
        self._sessions: 'OrderedDict[str, PreviewSession]' = OrderedDict()
        self._lock = threading.Lock()

    def __len__(self):
        with self._lock:
            return len(self._sessions)

    def _expire(self, now: float):
        while self._sessions:
            session_id, session = next(iter(self._sessions.items()))
            if now - session.last_used <= self.ttl:
                break
            del self._sessions[session_id]
            logger.debug('preview session %s expired', session_id)

    def create(self, form: Form, rules: List[InteractionRule], items_sources=None) -> PreviewSession:
        session = PreviewSession(form, rules, items_sources)
        with self._lock:
            now = self._clock()
            session.last_used = now
            self._expire(now)
            self._sessions[session.session_id] = session
            while len(self._sessions) > max(1, self.max_sessions):
                evicted, _ = self._sessions.popitem(last=False)
                logger.info('evicted preview session %s, store is at its limit of %s', evicted, self.max_sessions)
        return session

    def get(self, session_id: str) -> Optional[PreviewSession]:
        with self._lock:
            now = self._clock()
            self._expire(now)
            session = self._sessions.get(session_id)
            if session is not None:
                session.last_used = now
                self._sessions.move_to_end(session_id)
            return session

    def discard(self, session_id: str) -> bool:
        with self._lock:
            return self._sessions.pop(session_id, None) is not None
