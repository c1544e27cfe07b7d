from __future__ import annotations

from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, Field


class ContentNode(BaseModel):
    type: str = Field(..., min_length=1, description="Component name; must exist in config.components")
    props: Dict[str, Any]


class PageDocument(BaseModel):
    content: List[ContentNode]
    root: Dict[str, Any] = Field(default_factory=dict)
    zones: Dict[str, List[ContentNode]] = Field(default_factory=dict)


class GenerateSiteRequest(BaseModel):
    prompt: str = Field(..., min_length=1, description="Natural-language description of the site")
    context: Optional[Dict[str, Any]] = Field(default=None, description="Conversation context, e.g. scraped websites")


class UpdateSiteRequest(BaseModel):
    prompt: str = Field(..., min_length=1)
    currentData: Dict[str, Any]
    # mapping or module source (`export const config = {...};`)
    currentConfig: Union[str, Dict[str, Any]]


class ApplySiteRequest(BaseModel):
    puckData: Dict[str, Any]
    puckConfig: Union[str, Dict[str, Any]]
    sandboxId: Optional[str] = None


class RenderRequest(BaseModel):
    data: Dict[str, Any]
    configJs: Union[str, Dict[str, Any]]


class ValidateRequest(BaseModel):
    data: Dict[str, Any]
    config: Optional[Union[str, Dict[str, Any]]] = None
