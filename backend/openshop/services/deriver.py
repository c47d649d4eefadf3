"""Derive store capabilities from category answers.

derive() is a pure function: the same categories and answers always give
the same DerivedStoreConfig.  Categories without a flow entry, or without
an answer, contribute nothing.
"""

from typing import Iterable, Mapping

from openshop.schemas.catalog import DerivedStoreConfig, StoreType
from openshop.services.catalog import CategoryFlowCatalog


def derive(
    categories: Iterable[str],
    answers: Mapping[str, str],
    catalog: CategoryFlowCatalog,
) -> DerivedStoreConfig:
    can_produce = False
    can_process = False
    can_retail = True
    needs_partnerships = False
    partnership_type = ""

    for category in categories:
        flow = catalog.flow_for(category)
        answer = answers.get(category)
        if flow is None or not answer:
            continue
        option = flow.option(answer)
        if option is None:
            continue

        can_produce = can_produce or option.can_produce
        can_process = can_process or option.can_process
        if option.can_retail is not None:
            can_retail = option.can_retail
        if option.needs_partnerships:
            needs_partnerships = True
            # Last writer wins when categories disagree
            partnership_type = option.partner_type or partnership_type

    return DerivedStoreConfig(
        store_type=store_type_for(can_produce, can_process),
        can_produce=can_produce,
        can_process=can_process,
        can_retail=can_retail,
        needs_partnerships=needs_partnerships,
        partnership_type=partnership_type,
    )


def store_type_for(can_produce: bool, can_process: bool) -> StoreType:
    if can_produce and can_process:
        return "hybrid"
    if can_produce:
        return "producer"
    if can_process:
        return "processor"
    return "independent"


def store_role(config: DerivedStoreConfig) -> str | None:
    """Which side of a partnership this store sits on, if any."""
    if config.store_type in ("producer", "processor"):
        return config.store_type
    if config.partnership_type == "processor":
        return "producer"
    if config.partnership_type == "producer":
        return "processor"
    return None


def search_partner_type(config: DerivedStoreConfig) -> str | None:
    """Partner type to search for: the recorded type, else the opposite role."""
    if config.partnership_type:
        return config.partnership_type
    role = store_role(config)
    if role == "producer":
        return "processor"
    if role == "processor":
        return "producer"
    return None
