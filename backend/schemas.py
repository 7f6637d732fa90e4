from typing import Dict, List, Optional

from pydantic import BaseModel, Field

from regularization.src.models import RegularizationMapping, RegularizationStatus


class SaveMappingRequest(BaseModel):
    canonical_make_id: int = Field(..., ge=1)
    canonical_model_id: int = Field(..., ge=1)
    vehicle_type_id: Optional[int] = Field(None, description="Vehicle type id, -1 for Unknown")
    fuel_selections: Dict[int, Optional[int]] = Field(
        default_factory=dict,
        description="Model year -> fuel type id (-1 for Unknown, null for not assigned)",
    )


class PairStatusResponse(BaseModel):
    make_id: int
    model_id: int
    status: RegularizationStatus
    vehicle_type_id: Optional[int] = None
    model_years: List[int] = Field(default_factory=list)
    mappings: List[RegularizationMapping] = Field(default_factory=list)
