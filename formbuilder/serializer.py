import json
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple, Union

from pydantic import ValidationError

from . import config
from .errors import SerializationError
from .ordering import normalize_order
from .schemas import Element, ElementKind, Form, InteractionRule, TYPE_SPECIFIC_MODELS

logger = logging.getLogger(__name__)

FORMAT_VERSION = 1

LEGACY_TYPE_SPECIFIC_KEY = 'elementTypeSpecificData'


@dataclass
class ImportResult:
    form: Optional[Form] = None
    rules: List[InteractionRule] = field(default_factory=list)
    error: Optional[SerializationError] = None
    duplicates_removed: int = 0

    @property
    def ok(self) -> bool:
        return self.error is None


def _fail(code: str, message: str) -> ImportResult:
    logger.warning('form import failed (%s): %s', code, message)
    return ImportResult(error=SerializationError(code, message))


def _dump_rule(rule: InteractionRule) -> Dict[str, Any]:
    return rule.model_dump(by_alias=True, mode='json')


def _type_specific_payload(element: Element) -> Dict[str, Any]:
    model = TYPE_SPECIFIC_MODELS[element.kind]
    data = element.type_specific if isinstance(element.type_specific, model) else model()
    return data.model_dump(by_alias=True, mode='json')


def element_to_portable(element: Element, rules: List[InteractionRule]) -> Dict[str, Any]:
    out = element.model_dump(by_alias=True, mode='json', exclude={'type_specific'})
    out['typeSpecificData'] = _type_specific_payload(element)
    out['sourceInteractionRules'] = [_dump_rule(r) for r in rules if r.source_element_id == element.element_id]
    out['targetInteractionRules'] = [_dump_rule(r) for r in rules if r.target_element_id == element.element_id]
    return out


def to_portable(form: Form, rules: List[InteractionRule]) -> Dict[str, Any]:
    rules = list(rules)
    doc = {'formatVersion': FORMAT_VERSION}
    doc.update(form.model_dump(by_alias=True, mode='json', exclude={'elements'}))
    doc['elements'] = [element_to_portable(e, rules) for e in form.elements]
    doc['interactionRules'] = [_dump_rule(r) for r in rules]
    return doc


def to_json(form: Form, rules: List[InteractionRule]) -> str:
    return json.dumps(to_portable(form, rules), indent=2, ensure_ascii=False)


def _flatten_element(raw: Dict[str, Any]) -> Tuple[Dict[str, Any], List[Any], List[Any]]:
    """Split a portable element into model input plus its two rule arrays."""
    raw = dict(raw)
    source_rules = raw.pop('sourceInteractionRules', None)
    target_rules = raw.pop('targetInteractionRules', None)
    source_rules = [] if source_rules is None else source_rules
    target_rules = [] if target_rules is None else target_rules

    payload = raw.pop('typeSpecificData', None)
    legacy = raw.pop(LEGACY_TYPE_SPECIFIC_KEY, None)
    if payload is None:
        payload = legacy

    kind = ElementKind(raw['type'])
    model = TYPE_SPECIFIC_MODELS[kind]
    merged = {}
    # older documents carry the type-specific fields on the element itself
    for name, info in model.model_fields.items():
        alias = info.alias or name
        if alias in raw:
            merged[alias] = raw.pop(alias)
    if isinstance(payload, dict):
        merged.update(payload)
    raw['typeSpecificData'] = merged
    return raw, source_rules, target_rules


def _collect_rules(top_level, per_element, dedupe: bool) -> Tuple[List[InteractionRule], int]:
    if not dedupe:
        return list(per_element), 0

    seen = set()
    rules = []
    duplicates = 0
    for rule in list(top_level) + list(per_element):
        if rule.interaction_rule_id in seen:
            duplicates += 1
            continue
        seen.add(rule.interaction_rule_id)
        rules.append(rule)
    return rules, duplicates


def from_portable(document: Union[str, bytes, Dict[str, Any]], dedupe: Optional[bool] = None) -> ImportResult:
    """Rebuild a form and its flat rule list from a portable document.

    Never raises for bad input; failures come back as ``ImportResult.error``.
    """
    if dedupe is None:
        dedupe = config.PORTABLE_DEDUPE_RULES

    if isinstance(document, bytes):
        try:
            document = document.decode('utf-8')
        except UnicodeDecodeError as e:
            return _fail('invalid_json', f'Document is not UTF-8: {e}')
    if isinstance(document, str):
        try:
            data = json.loads(document)
        except json.JSONDecodeError as e:
            return _fail('invalid_json', f'Invalid JSON: {e.msg} (line {e.lineno}, column {e.colno})')
    else:
        data = document

    if not isinstance(data, dict):
        return _fail('invalid_document', 'Document must be a JSON object')

    version = data.get('formatVersion', FORMAT_VERSION)
    if not isinstance(version, int) or version > FORMAT_VERSION:
        return _fail('unsupported_version', f'Unsupported format version: {version!r}')

    raw_elements = data.get('elements')
    if not isinstance(raw_elements, list):
        return _fail('missing_elements', 'Document has no "elements" array')

    raw_top_level = data.get('interactionRules')
    if raw_top_level is None:
        raw_top_level = []
    if not isinstance(raw_top_level, list):
        return _fail('invalid_document', '"interactionRules" must be an array')

    elements = []
    per_element_rules = []
    try:
        for idx, raw in enumerate(raw_elements):
            if not isinstance(raw, dict) or 'type' not in raw:
                return _fail('invalid_element', f'Element #{idx} is not an object with a "type"')
            element_data, source_rules, target_rules = _flatten_element(raw)
            if not isinstance(source_rules, list) or not isinstance(target_rules, list):
                return _fail('invalid_element', f'Element #{idx} has interaction rules that are not an array')
            elements.append(Element.model_validate(element_data))
            for raw_rule in source_rules + target_rules:
                per_element_rules.append(InteractionRule.model_validate(raw_rule))
        top_level_rules = [InteractionRule.model_validate(r) for r in raw_top_level]
    except ValidationError as e:
        return _fail('invalid_element', str(e))
    except (TypeError, ValueError) as e:
        # unknown element type or a value of the wrong shape
        return _fail('invalid_element', str(e))

    ids = [e.element_id for e in elements]
    if len(ids) != len(set(ids)):
        return _fail('duplicate_element', 'Element ids must be unique')

    orders = [e.order for e in elements]
    if len(orders) != len(set(orders)):
        logger.warning('imported form has duplicate element order values, renumbering')
        elements = normalize_order(elements)

    form_data = {k: v for k, v in data.items() if k not in ('elements', 'interactionRules', 'formatVersion')}
    try:
        form = Form.model_validate(form_data)
    except ValidationError as e:
        return _fail('invalid_form', str(e))
    form.elements = elements

    rules, duplicates = _collect_rules(top_level_rules, per_element_rules, dedupe)
    if duplicates:
        logger.debug('dropped %s duplicated interaction rules on import', duplicates)
    return ImportResult(form=form, rules=rules, duplicates_removed=duplicates)
