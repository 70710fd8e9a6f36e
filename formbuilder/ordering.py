import logging
from typing import List, Optional

from .schemas import Element

logger = logging.getLogger(__name__)


def sorted_elements(elements: List[Element]) -> List[Element]:
    return sorted(elements, key=lambda e: e.order)


def normalize_order(elements: List[Element]) -> List[Element]:
    """Return copies of ``elements`` renumbered densely by their current order.

    The input list order is kept; only ``order`` values change.
    """
    position = {e.element_id: idx for idx, e in enumerate(sorted_elements(elements))}
    result = []
    for element in elements:
        if element.order != position[element.element_id]:
            element = element.model_copy(update={'order': position[element.element_id]})
        result.append(element)
    return result


def move_element(elements: List[Element], drag_index: int, hover_index: int) -> List[Element]:
    """Move the element at sorted position ``drag_index`` to ``hover_index``.

    Elements between the two positions shift by exactly one towards the
    vacated slot; everything else keeps its order.
    """
    count = len(elements)
    if not (0 <= drag_index < count and 0 <= hover_index < count):
        raise IndexError(f'move {drag_index} -> {hover_index} out of range for {count} elements')

    elements = normalize_order(elements)
    if drag_index == hover_index:
        return elements

    drag_element = sorted_elements(elements)[drag_index]
    result = []
    for element in elements:
        if element.element_id == drag_element.element_id:
            new_order = hover_index
        elif drag_index < hover_index and drag_index < element.order <= hover_index:
            new_order = element.order - 1
        elif drag_index > hover_index and hover_index <= element.order < drag_index:
            new_order = element.order + 1
        else:
            result.append(element)
            continue
        result.append(element.model_copy(update={'order': new_order}))

    logger.debug('moved element %s from %s to %s', drag_element.element_id, drag_index, hover_index)
    return result


def insert_element(elements: List[Element], new_element: Element, index: Optional[int] = None) -> List[Element]:
    """Insert ``new_element`` at sorted position ``index`` (append when ``None``)."""
    elements = normalize_order(elements)
    count = len(elements)
    if index is None or index >= count:
        index = count
    elif index < 0:
        raise IndexError(f'insert index {index} out of range')
    else:
        elements = [
            e.model_copy(update={'order': e.order + 1}) if e.order >= index else e
            for e in elements
        ]
    elements.append(new_element.model_copy(update={'order': index}))
    return elements


def remove_element(elements: List[Element], element_id: int) -> List[Element]:
    """Drop an element without renumbering the rest."""
    return [e for e in elements if e.element_id != element_id]
