from pydantic import BaseModel, ConfigDict
from typing import Any, Dict, Optional


class CostRequest(BaseModel):
    # provider-specific fields ride along untouched
    model_config = ConfigDict(extra="allow")

    cloudProvider: Any = None


class CostResponse(BaseModel):
    success: bool
    costs: Optional[Any] = None
    message: Optional[str] = None

    def body(self) -> Dict[str, Any]:
        return self.model_dump(exclude_unset=True)
