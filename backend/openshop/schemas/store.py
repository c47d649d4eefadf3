"""Remote store API payloads the wizard reads back.

The store API owns these records; we only parse the fields the wizard
needs and ignore the rest.
"""

from datetime import datetime

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


class _RemoteModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel, populate_by_name=True, extra="ignore"
    )


class StoreSetupResponse(_RemoteModel):
    """Server-confirmed configuration returned by store creation."""
    store_id: int
    message: str = ""
    store_type: str = "independent"
    needs_partnerships: bool = False
    partnership_type: str = ""


class RemoteStore(_RemoteModel):
    store_id: int
    store_name: str = ""
    description: str | None = None
    categories: list[str] = []
    store_type: str = "independent"
    can_produce: bool = False
    can_process: bool = False
    can_retail: bool = True
    needs_partnerships: bool = False
    partnership_type: str | None = None
    partnership_radius_mi: int | None = None
    category_responses: dict[str, str] = {}


class StoreImage(_RemoteModel):
    image_id: int | None = None
    image_type: str | None = None
    file_path: str | None = None
    video_url: str | None = None

    @property
    def url(self) -> str | None:
        return self.file_path or self.video_url


class SubmissionReceipt(_RemoteModel):
    submission_id: str
    store_id: int
    status: str = "submitted"
    submitted_at: datetime | None = None
    estimated_review_time: str | None = None
