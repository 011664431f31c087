"""Pydantic schemas for the discovery endpoints"""

from pydantic import BaseModel, ConfigDict, Field
from typing import Any, Dict, List, Optional


class ContinueSearchRequest(BaseModel):
    """Request schema for continuing a search by cursor"""
    model_config = ConfigDict(populate_by_name=True)

    cursor_id: str = Field(..., alias="cursorId", description="Cursor returned by the previous page")
    per_page: Optional[int] = Field(None, alias="perPage", description="Page size, clamped to 5..25")
    query_hash: Optional[str] = Field(None, alias="queryHash", description="meta.queryHash of the first page")
    debug: bool = False


class PageMeta(BaseModel):
    """Paging metadata returned with every page"""
    model_config = ConfigDict(extra="allow")

    cursor: Optional[str]
    perPage: int
    hasMore: bool
    queryHash: str
    pageNo: int
    version: int
    remainingBefore: int
    remainingAfter: int
    storage: str
    provider: str
    elapsedMs: int
    debug: Optional[Dict[str, Any]] = None


class DiscoveryResponse(BaseModel):
    """Response schema for both discovery endpoints"""
    curatedPlaces: List[Dict[str, Any]]
    meta: PageMeta


class ErrorResponse(BaseModel):
    error: str
    status: int
