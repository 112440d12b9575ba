from pydantic import BaseModel, Field
from typing import List, Optional


class Principal(BaseModel):
    """Authenticated actor on whose behalf an operation runs."""
    id: str
    internal_id: Optional[str] = None
    name: str = ""
    email: Optional[str] = None
    capabilities: List[str] = Field(default_factory=list)

    def model_post_init(self, __context) -> None:
        if self.internal_id is None:
            self.internal_id = self.id


# System principal used by the managers (retention, etc.)
RETENTION_MANAGER_USER = Principal(
    id="82ed2c6c-eb27-498e-b904-4f2abc04e05f",
    name="RETENTION MANAGER",
    capabilities=["BYPASS"],
)
