"""Category setup-flow catalog and the store configuration derived from it.

The remote API serves one flow per category name: a question plus an
ordered list of answer options.  Each option carries the capability flags
that StoreConfigDeriver folds into a DerivedStoreConfig.
"""

from typing import Literal

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

StoreType = Literal["independent", "producer", "processor", "hybrid"]


class CategoryFlowOption(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel, populate_by_name=True, frozen=True
    )

    key: str
    label: str = ""
    description: str = ""
    store_type: str = "independent"
    can_produce: bool = False
    can_process: bool = False
    # None means the option does not speak to retail capability
    can_retail: bool | None = None
    needs_partnerships: bool = False
    partner_type: str | None = None


class CategoryFlowConfig(BaseModel):
    model_config = ConfigDict(frozen=True)

    question: str
    options: tuple[CategoryFlowOption, ...] = ()

    def option(self, key: str) -> CategoryFlowOption | None:
        for opt in self.options:
            if opt.key == key:
                return opt
        return None


class DerivedStoreConfig(BaseModel):
    """Capabilities computed from category answers.  Never hand-edited."""
    model_config = ConfigDict(frozen=True)

    store_type: StoreType = "independent"
    can_produce: bool = False
    can_process: bool = False
    can_retail: bool = True
    needs_partnerships: bool = False
    partnership_type: str = ""
