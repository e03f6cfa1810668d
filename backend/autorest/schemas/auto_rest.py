"""
Auto-REST Schemas
"""
from pydantic import BaseModel, Field
from typing import Optional, List, Any, Dict, Union


class ErrorDetail(BaseModel):
    code: str
    message: str


class ErrorResponse(BaseModel):
    """Error payload returned for every engine error."""
    error: ErrorDetail


class RealtimeInfo(BaseModel):
    enabled: bool = True
    socketUrl: str
    channelId: str
    supportedMethods: List[str]
    defaultMethod: str


class ListEnvelope(BaseModel):
    """Paged list response."""
    data: List[Dict[str, Any]]
    page: int
    pageSize: int
    total: int
    hasNext: bool
    realtime: Optional[RealtimeInfo] = None


class CountResponse(BaseModel):
    total: int


class ExposedEntityResponse(BaseModel):
    id: int
    name: str
    schema_: Optional[str] = Field(default=None, alias="schema")
    type: str
    primaryKey: str
    defaultSort: List[str] = []
    pathSlug: str

    model_config = {"populate_by_name": True}


class DiscoveredTableResponse(BaseModel):
    name: str
    schema_: Optional[str] = Field(default=None, alias="schema")
    type: str
    isExposed: bool
    suggestedPathSlug: str

    model_config = {"populate_by_name": True}


class ExposeTableItem(BaseModel):
    """One table to expose, with optional overrides."""
    name: str = Field(..., min_length=1)
    schema_: Optional[str] = Field(default=None, alias="schema")
    pathSlug: Optional[str] = None
    primaryKey: Optional[str] = None
    defaultSort: Optional[Union[str, List[str]]] = None

    model_config = {"populate_by_name": True}

    def to_options(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "schema": self.schema_,
            "pathSlug": self.pathSlug,
            "primaryKey": self.primaryKey,
            "defaultSort": self.defaultSort,
        }


class ExposeRequest(BaseModel):
    """Tables to expose; plain names use the suggested alias."""
    tables: List[Union[str, ExposeTableItem]] = Field(..., min_length=1)


class ExposeError(BaseModel):
    table: str
    code: str
    message: str


class ExposedSummary(BaseModel):
    id: int
    name: str
    pathSlug: str
    endpoint: str


class ExposeResponse(BaseModel):
    exposed: List[ExposedSummary]
    errors: List[ExposeError]
    total: int
