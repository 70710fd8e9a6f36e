import logging
from typing import List, Optional, Tuple

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from . import models, schemas
from .rules import RuleGraph

logger = logging.getLogger(__name__)


def _element_to_schema(row: models.FormElement) -> schemas.Element:
    return schemas.Element.model_validate({
        'elementId': row.element_id,
        'formId': row.form_id,
        'type': row.element_type,
        'label': row.label or '',
        'placeholder': row.placeholder or '',
        'defaultValue': row.default_value or '',
        'order': row.order_index or 0,
        'isRequired': bool(row.is_required),
        'isVisible': bool(row.is_visible),
        'isEnabled': bool(row.is_enabled),
        'typeSpecificData': row.type_specific or {},
        'validationRules': row.validation_rules or [],
    })


def _rule_to_schema(row: models.InteractionRule) -> schemas.InteractionRule:
    return schemas.InteractionRule(
        interaction_rule_id=row.rule_id,
        source_element_id=row.source_element_id,
        target_element_id=row.target_element_id,
        operator=row.operator,
        condition_value=row.condition_value or '',
        action=row.action,
    )


def form_to_schema(row: models.Form) -> Tuple[schemas.Form, List[schemas.InteractionRule]]:
    form = schemas.Form(
        form_id=row.id,
        database_id=row.database_id,
        name=row.name,
        description=row.description or '',
        is_active=bool(row.is_active),
        created_date=row.created_at,
        updated_date=row.updated_at,
        elements=[_element_to_schema(e) for e in row.elements],
    )
    return form, [_rule_to_schema(r) for r in row.interaction_rules]


def get_forms(db: Session, database_id: Optional[int] = None) -> List[models.Form]:
    q = db.query(models.Form).order_by(models.Form.created_at.desc(), models.Form.id.desc())
    if database_id is not None:
        q = q.filter(models.Form.database_id == database_id)
    return q.all()


def get_form(db: Session, form_id: int) -> Optional[models.Form]:
    return db.query(models.Form).filter(models.Form.id == form_id).first()


def load_form(db: Session, form_id: int) -> Optional[Tuple[schemas.Form, List[schemas.InteractionRule]]]:
    row = get_form(db, form_id)
    if not row:
        return None
    return form_to_schema(row)


def save_form(db: Session, form: schemas.Form, rules: List[schemas.InteractionRule]):
    """Insert or replace a form with its elements and rules.

    Rules whose endpoints are missing or identical are dropped before writing.
    """
    graph = RuleGraph(rules)
    graph.prune(form.element_ids())

    try:
        row = get_form(db, form.form_id) if form.form_id is not None else None
        if row is None:
            row = models.Form(id=form.form_id)
            db.add(row)
        row.database_id = form.database_id
        row.name = form.name
        row.description = form.description
        row.is_active = form.is_active
        row.elements.clear()
        row.interaction_rules.clear()
        db.flush()

        for e in form.elements:
            row.elements.append(models.FormElement(
                element_id=e.element_id,
                element_type=int(e.kind),
                label=e.label,
                placeholder=e.placeholder,
                default_value=e.default_value,
                order_index=e.order,
                is_required=e.is_required,
                is_visible=e.is_visible,
                is_enabled=e.is_enabled,
                type_specific=e.type_specific.model_dump(by_alias=True, mode='json'),
                validation_rules=[r.model_dump(by_alias=True, mode='json') for r in e.validation_rules],
            ))
        for position, r in enumerate(graph):
            row.interaction_rules.append(models.InteractionRule(
                rule_id=r.interaction_rule_id,
                position=position,
                source_element_id=r.source_element_id,
                target_element_id=r.target_element_id,
                operator=int(r.operator),
                condition_value=r.condition_value,
                action=int(r.action),
            ))
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        logger.error('failed to save form %s: %s', form.form_id, e)
        raise
    db.refresh(row)
    return form_to_schema(row)


def create_form(db: Session, form_data: dict):
    form = schemas.Form(
        name=form_data['name'],
        description=form_data.get('description') or '',
        database_id=form_data.get('database_id'),
        is_active=form_data.get('is_active', True),
    )
    return save_form(db, form, [])


def update_form(db: Session, form_id: int, updates: dict) -> Optional[models.Form]:
    row = get_form(db, form_id)
    if not row:
        return None
    for k, v in updates.items():
        if v is not None and hasattr(row, k):
            setattr(row, k, v)
    db.commit()
    db.refresh(row)
    return row


def delete_form(db: Session, form_id: int) -> bool:
    row = get_form(db, form_id)
    if not row:
        return False
    db.delete(row)
    db.commit()
    return True


def _items_source_to_schema(row: models.ItemsSource) -> schemas.ItemsSource:
    return schemas.ItemsSource(
        items_source_id=row.id,
        name=row.name,
        parent_id=row.parent_id,
        items=[schemas.ItemsSourceItem.model_validate(i) for i in (row.items or [])],
    )


def load_items_sources(db: Session) -> List[schemas.ItemsSource]:
    rows = db.query(models.ItemsSource).order_by(models.ItemsSource.id).all()
    return [_items_source_to_schema(r) for r in rows]


def get_items_source(db: Session, source_id: int) -> Optional[schemas.ItemsSource]:
    row = db.query(models.ItemsSource).filter(models.ItemsSource.id == source_id).first()
    return _items_source_to_schema(row) if row else None


def save_items_source(db: Session, source: schemas.ItemsSource) -> schemas.ItemsSource:
    row = None
    if source.items_source_id is not None:
        row = db.query(models.ItemsSource).filter(models.ItemsSource.id == source.items_source_id).first()
    if row is None:
        row = models.ItemsSource(id=source.items_source_id)
        db.add(row)
    row.name = source.name
    row.parent_id = source.parent_id
    row.items = [i.model_dump(by_alias=True, mode='json') for i in source.items]
    try:
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        logger.error('failed to save items source %s: %s', source.items_source_id, e)
        raise
    db.refresh(row)
    return _items_source_to_schema(row)


def delete_items_source(db: Session, source_id: int) -> bool:
    row = db.query(models.ItemsSource).filter(models.ItemsSource.id == source_id).first()
    if not row:
        return False
    db.delete(row)
    db.commit()
    return True
