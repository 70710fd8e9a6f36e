import logging

from fastapi import FastAPI, Depends, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from . import crud, schemas, serializer
from .builder import FormBuilder
from .config import CORS_ORIGINS, LOG_LEVEL
from .database import get_db, init_db
from .errors import ElementNotFound, RuleConfigError, RuleNotFound
from .preview import PreviewSession, PreviewSessionStore

logging.basicConfig(level=LOG_LEVEL, format='%(asctime)s %(levelname)s %(name)s: %(message)s')
logger = logging.getLogger(__name__)

app = FastAPI(title='Form Builder - FastAPI Backend')

app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

preview_store = PreviewSessionStore()


def get_preview_store() -> PreviewSessionStore:
    return preview_store


@app.on_event('startup')
def on_startup():
    init_db()


def _load_builder(db: Session, form_id: int) -> FormBuilder:
    loaded = crud.load_form(db, form_id)
    if not loaded:
        raise HTTPException(status_code=404, detail='Form not found')
    form, rules = loaded
    return FormBuilder(form, rules)


def _save_builder(db: Session, builder: FormBuilder):
    try:
        return crud.save_form(db, builder.form, builder.rules)
    except SQLAlchemyError:
        raise HTTPException(status_code=503, detail='Could not save form')


def _form_payload(form: schemas.Form, rules) -> dict:
    out = form.model_dump(by_alias=True, mode='json')
    out['elements'] = sorted(out['elements'], key=lambda e: e['order'])
    out['interactionRules'] = [r.model_dump(by_alias=True, mode='json') for r in rules]
    return out


def _session_payload(session: PreviewSession) -> dict:
    return {
        'sessionId': session.session_id,
        'formId': session.form.form_id,
        'elements': [
            {
                'elementId': r.element.element_id,
                'label': r.element.label,
                'type': int(r.element.kind),
                'value': r.value,
                'isEnabled': r.is_enabled,
                'error': r.error,
                'options': [o.model_dump(by_alias=True) for o in r.options],
            }
            for r in session.visible_elements()
        ],
        'warnings': [{'code': w.code, 'message': w.message, 'ruleId': w.rule_id} for w in session.warnings],
    }


@app.get('/health')
def health():
    return {'status': 'ok'}


@app.post('/forms')
def create_form(form: schemas.FormCreate, db: Session = Depends(get_db)):
    created, _ = crud.create_form(db, form.model_dump())
    return {'form': {'id': created.form_id, 'name': created.name}}


@app.get('/forms')
def list_forms(database_id: int | None = None, db: Session = Depends(get_db)):
    forms = crud.get_forms(db, database_id)
    result = []
    for f in forms:
        result.append(
            {
                'id': f.id,
                'name': f.name,
                'is_active': f.is_active,
                'created_at': f.created_at,
                'elements': len(f.elements),
            }
        )
    return {'forms': result}


@app.get('/forms/{form_id}')
def get_form(form_id: int, db: Session = Depends(get_db)):
    loaded = crud.load_form(db, form_id)
    if not loaded:
        raise HTTPException(status_code=404, detail='Form not found')
    form, rules = loaded
    return {'form': _form_payload(form, rules)}


@app.put('/forms/{form_id}')
def update_form(form_id: int, form: schemas.FormUpdate, db: Session = Depends(get_db)):
    updated = crud.update_form(db, form_id, form.model_dump())
    if not updated:
        raise HTTPException(status_code=404, detail='Form not found')
    return {'form': {'id': updated.id, 'name': updated.name}}


@app.delete('/forms/{form_id}')
def delete_form(form_id: int, db: Session = Depends(get_db)):
    if not crud.delete_form(db, form_id):
        raise HTTPException(status_code=404, detail='Form not found')
    return {'ok': True}


@app.post('/forms/{form_id}/elements')
def add_element(form_id: int, payload: schemas.ElementCreate, db: Session = Depends(get_db)):
    builder = _load_builder(db, form_id)
    element = builder.add_element(payload.kind, payload.index, payload.label, payload.placeholder)
    _save_builder(db, builder)
    return {'element': element.model_dump(by_alias=True, mode='json')}


@app.put('/forms/{form_id}/elements/{element_id}')
def update_element(form_id: int, element_id: int, updates: dict, db: Session = Depends(get_db)):
    builder = _load_builder(db, form_id)
    # accept the wire names used everywhere else
    aliases = {info.alias or name: name for name, info in schemas.Element.model_fields.items()}
    changes = {aliases.get(k, k): v for k, v in updates.items()}
    try:
        element = builder.update_element(element_id, **changes)
    except ElementNotFound:
        raise HTTPException(status_code=404, detail='Element not found')
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    _save_builder(db, builder)
    return {'element': element.model_dump(by_alias=True, mode='json')}


@app.delete('/forms/{form_id}/elements/{element_id}')
def delete_element(form_id: int, element_id: int, db: Session = Depends(get_db)):
    builder = _load_builder(db, form_id)
    try:
        dropped = builder.delete_element(element_id)
    except ElementNotFound:
        raise HTTPException(status_code=404, detail='Element not found')
    _save_builder(db, builder)
    return {'ok': True, 'removed_rules': [r.interaction_rule_id for r in dropped]}


@app.post('/forms/{form_id}/elements/move')
def move_element(form_id: int, payload: schemas.MovePayload, db: Session = Depends(get_db)):
    builder = _load_builder(db, form_id)
    try:
        builder.move_element(payload.drag_index, payload.hover_index)
    except IndexError as e:
        raise HTTPException(status_code=400, detail=str(e))
    _save_builder(db, builder)
    return {'order': [e.element_id for e in builder.sorted_elements()]}


@app.post('/forms/{form_id}/elements/{element_id}/validation-rules')
def add_validation_rule(form_id: int, element_id: int, payload: schemas.ValidationRuleCreate,
                        db: Session = Depends(get_db)):
    builder = _load_builder(db, form_id)
    try:
        rule = builder.add_validation_rule(element_id, payload.kind, payload.error_message, payload.value)
    except ElementNotFound:
        raise HTTPException(status_code=404, detail='Element not found')
    _save_builder(db, builder)
    return {'validationRule': rule.model_dump(by_alias=True, mode='json')}


@app.delete('/forms/{form_id}/elements/{element_id}/validation-rules/{rule_id}')
def remove_validation_rule(form_id: int, element_id: int, rule_id: int, db: Session = Depends(get_db)):
    builder = _load_builder(db, form_id)
    try:
        removed = builder.remove_validation_rule(element_id, rule_id)
    except ElementNotFound:
        raise HTTPException(status_code=404, detail='Element not found')
    if not removed:
        raise HTTPException(status_code=404, detail='Validation rule not found')
    _save_builder(db, builder)
    return {'ok': True}


@app.post('/forms/{form_id}/rules')
def add_interaction_rule(form_id: int, payload: schemas.InteractionRuleCreate, db: Session = Depends(get_db)):
    builder = _load_builder(db, form_id)
    try:
        rule = builder.add_interaction_rule(
            payload.source_element_id,
            payload.target_element_id,
            payload.operator,
            payload.action,
            payload.condition_value,
        )
    except RuleConfigError as e:
        raise HTTPException(status_code=400, detail=str(e))
    _save_builder(db, builder)
    return {'interactionRule': rule.model_dump(by_alias=True, mode='json')}


@app.delete('/forms/{form_id}/rules/{rule_id}')
def remove_interaction_rule(form_id: int, rule_id: int, db: Session = Depends(get_db)):
    builder = _load_builder(db, form_id)
    try:
        builder.remove_interaction_rule(rule_id)
    except RuleNotFound:
        raise HTTPException(status_code=404, detail='Interaction rule not found')
    _save_builder(db, builder)
    return {'ok': True}


@app.get('/forms/{form_id}/export')
def export_form(form_id: int, db: Session = Depends(get_db)):
    builder = _load_builder(db, form_id)
    return builder.export_portable()


@app.post('/forms/import')
def import_form(payload: schemas.ImportPayload, dedupe: bool | None = None, db: Session = Depends(get_db)):
    result = serializer.from_portable(payload.document, dedupe=dedupe)
    if not result.ok:
        raise HTTPException(status_code=422, detail={'code': result.error.code, 'message': result.error.message})
    # imported documents always become a new form
    result.form.form_id = None
    builder = FormBuilder(result.form, result.rules)
    form, rules = _save_builder(db, builder)
    return {'form': _form_payload(form, rules), 'duplicates_removed': result.duplicates_removed}


@app.get('/items-sources')
def list_items_sources(db: Session = Depends(get_db)):
    return {'itemsSources': [s.model_dump(by_alias=True) for s in crud.load_items_sources(db)]}


@app.post('/items-sources')
def create_items_source(source: schemas.ItemsSource, db: Session = Depends(get_db)):
    saved = crud.save_items_source(db, source)
    return {'itemsSource': saved.model_dump(by_alias=True)}


@app.put('/items-sources/{source_id}')
def update_items_source(source_id: int, source: schemas.ItemsSource, db: Session = Depends(get_db)):
    if not crud.get_items_source(db, source_id):
        raise HTTPException(status_code=404, detail='Items source not found')
    source.items_source_id = source_id
    saved = crud.save_items_source(db, source)
    return {'itemsSource': saved.model_dump(by_alias=True)}


@app.delete('/items-sources/{source_id}')
def delete_items_source(source_id: int, db: Session = Depends(get_db)):
    if not crud.delete_items_source(db, source_id):
        raise HTTPException(status_code=404, detail='Items source not found')
    return {'ok': True}


@app.post('/forms/{form_id}/preview-sessions')
def create_preview_session(form_id: int, db: Session = Depends(get_db),
                           store: PreviewSessionStore = Depends(get_preview_store)):
    loaded = crud.load_form(db, form_id)
    if not loaded:
        raise HTTPException(status_code=404, detail='Form not found')
    form, rules = loaded
    session = store.create(form, rules, crud.load_items_sources(db))
    return {'session': _session_payload(session)}


def _get_session(store: PreviewSessionStore, session_id: str) -> PreviewSession:
    session = store.get(session_id)
    if not session:
        raise HTTPException(status_code=404, detail='Preview session not found')
    return session


@app.get('/preview-sessions/{session_id}')
def get_preview_session(session_id: str, store: PreviewSessionStore = Depends(get_preview_store)):
    return {'session': _session_payload(_get_session(store, session_id))}


@app.put('/preview-sessions/{session_id}/values/{element_id}')
def set_preview_value(session_id: str, element_id: int, payload: schemas.SetValuePayload,
                      store: PreviewSessionStore = Depends(get_preview_store)):
    session = _get_session(store, session_id)
    try:
        session.set_value(element_id, payload.value)
    except ElementNotFound:
        raise HTTPException(status_code=404, detail='Element not found')
    return {'session': _session_payload(session)}


@app.post('/preview-sessions/{session_id}/submit')
def submit_preview(session_id: str, store: PreviewSessionStore = Depends(get_preview_store)):
    session = _get_session(store, session_id)
    result = session.submit()
    return {
        'success': result.success,
        'values': {str(k): v for k, v in result.values.items()},
        'errors': {str(k): v for k, v in result.errors.items()},
    }


@app.delete('/preview-sessions/{session_id}')
def discard_preview_session(session_id: str, store: PreviewSessionStore = Depends(get_preview_store)):
    if not store.discard(session_id):
        raise HTTPException(status_code=404, detail='Preview session not found')
    return {'ok': True}
