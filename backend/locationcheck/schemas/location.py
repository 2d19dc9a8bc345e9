"""Location history schemas for API."""
from typing import List, Optional
from pydantic import BaseModel


class LocationView(BaseModel):
    """One decrypted location. Fields that failed to decrypt are null."""
    id: str
    timestamp: str
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    altitude: Optional[float] = None
    accuracy: Optional[float] = None


class LocationsResponse(BaseModel):
    success: bool = True
    locations: List[LocationView]
