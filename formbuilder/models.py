from sqlalchemy import Column, String, Integer, ForeignKey, Boolean, DateTime, Text, JSON, UniqueConstraint, func
from sqlalchemy.orm import relationship
from .database import Base


class Form(Base):
    __tablename__ = 'forms'
    id = Column(Integer, primary_key=True)
    database_id = Column(Integer, nullable=True, index=True)
    name = Column(String, nullable=False)
    description = Column(Text)
    is_active = Column(Boolean, default=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())
    elements = relationship(
        'FormElement', back_populates='form', cascade='all, delete-orphan', order_by='FormElement.order_index'
    )
    interaction_rules = relationship(
        'InteractionRule', back_populates='form', cascade='all, delete-orphan', order_by='InteractionRule.position'
    )


class FormElement(Base):
    __tablename__ = 'form_elements'
    __table_args__ = (UniqueConstraint('form_id', 'element_id'),)
    id = Column(Integer, primary_key=True)
    form_id = Column(Integer, ForeignKey('forms.id', ondelete='CASCADE'), nullable=False)
    # builder-assigned id, unique within the form
    element_id = Column(Integer, nullable=False)
    element_type = Column(Integer, nullable=False)
    label = Column(String)
    placeholder = Column(String)
    default_value = Column(Text)
    order_index = Column(Integer, default=0)
    is_required = Column(Boolean, default=False)
    is_visible = Column(Boolean, default=True)
    is_enabled = Column(Boolean, default=True)
    type_specific = Column(JSON)
    validation_rules = Column(JSON)
    form = relationship('Form', back_populates='elements')


class InteractionRule(Base):
    __tablename__ = 'interaction_rules'
    __table_args__ = (UniqueConstraint('form_id', 'rule_id'),)
    id = Column(Integer, primary_key=True)
    form_id = Column(Integer, ForeignKey('forms.id', ondelete='CASCADE'), nullable=False)
    rule_id = Column(Integer, nullable=False)
    # declaration order, which is evaluation order
    position = Column(Integer, default=0)
    source_element_id = Column(Integer, nullable=False)
    target_element_id = Column(Integer, nullable=False)
    operator = Column(Integer, nullable=False)
    condition_value = Column(Text)
    action = Column(Integer, nullable=False)
    form = relationship('Form', back_populates='interaction_rules')


class ItemsSource(Base):
    __tablename__ = 'items_sources'
    id = Column(Integer, primary_key=True)
    name = Column(String, nullable=False)
    parent_id = Column(Integer, ForeignKey('items_sources.id', ondelete='SET NULL'), nullable=True)
    # list of {"value": ..., "displayText": ...}
    items = Column(JSON)
