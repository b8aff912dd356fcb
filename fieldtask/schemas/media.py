import uuid
from typing import Literal, Optional

from pydantic import BaseModel, model_validator


# Which image types each owner record carries
IMAGE_TYPES_BY_ENTITY = {
    "site": ("cover",),
    "section": ("reference",),
    "task": ("before", "after", "reference"),
    "feedback": ("feedback",),
}


class DeleteImageRequest(BaseModel):
    storage_id: str
    entity_type: Literal["site", "section", "task", "feedback"]
    entity_id: uuid.UUID
    image_type: Literal["cover", "reference", "before", "after", "feedback"]
    # Sections live inside a site, so the owning site is needed to address one
    site_id: Optional[uuid.UUID] = None
    resource_type: Literal["image", "video"] = "image"

    @model_validator(mode="after")
    def check_combination(self):
        if not self.storage_id.strip():
            raise ValueError("storage_id is required")
        if self.image_type not in IMAGE_TYPES_BY_ENTITY[self.entity_type]:
            raise ValueError(f"image_type '{self.image_type}' is not valid for entity_type '{self.entity_type}'")
        if self.entity_type == "section" and self.site_id is None:
            raise ValueError("site_id is required when deleting a section image")
        return self
