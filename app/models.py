from typing import Optional
from pydantic import BaseModel


class AnalyzeBody(BaseModel):
    image: Optional[str] = None  # http(s) URL or data:image URL
    imageUrl: Optional[str] = None  # alias used by the web client
    text: Optional[str] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None

    @property
    def image_ref(self) -> Optional[str]:
        return self.image or self.imageUrl


class ValidateImageBody(BaseModel):
    imageUrl: Optional[str] = None
