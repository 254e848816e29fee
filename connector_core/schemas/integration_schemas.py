"""
Read-only catalog schemas: integrations and their actions.
"""

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel

from ..constants import AuthType, HttpMethod
from .auth_config_schemas import AuthConfig, normalize_auth_type, parse_auth_config


class CatalogModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        frozen=True,
        extra="ignore",
    )


class RequestTransform(CatalogModel):
    """Literal and templated maps used to build the outgoing request."""

    body: Optional[Dict[str, Any]] = None
    params: Optional[Dict[str, Any]] = None
    headers: Optional[Dict[str, Any]] = None


class ResponseTransform(CatalogModel):
    """``{output field: dot path into the response}``."""

    mapping: Optional[Dict[str, str]] = None


class TransformConfig(CatalogModel):
    request: Optional[RequestTransform] = None
    response: Optional[ResponseTransform] = None


class Integration(CatalogModel):
    """Catalog entry for one third-party API."""

    id: str
    name: str
    slug: str
    auth_type: AuthType
    auth_config: AuthConfig
    base_url: Optional[str] = None
    is_active: bool = True

    @model_validator(mode="before")
    @classmethod
    def build_auth_config(cls, data: Any) -> Any:
        """Parse the raw auth blob into its tagged variant using the auth type."""
        if not isinstance(data, dict):
            return data
        data = dict(data)
        raw_type = data.get("auth_type", data.get("authType"))
        tag = normalize_auth_type(raw_type)
        data["auth_type"] = tag
        data.pop("authType", None)
        raw_config = data.pop("authConfig", None) or data.get("auth_config")
        if raw_config is None or isinstance(raw_config, dict):
            data["auth_config"] = parse_auth_config(tag, raw_config)
        return data


class IntegrationAction(CatalogModel):
    """One declaratively described HTTP operation against an integration."""

    id: str
    integration_id: str
    name: str
    slug: str
    description: Optional[str] = None
    http_method: HttpMethod = HttpMethod.GET
    endpoint_path: str = Field(..., min_length=1)
    request_schema: Dict[str, Any] = Field(default_factory=dict)
    response_schema: Optional[Dict[str, Any]] = None
    transform_config: Optional[TransformConfig] = None

    @field_validator("http_method", mode="before")
    @classmethod
    def upper_method(cls, v: Any) -> Any:
        return v.upper() if isinstance(v, str) else v


class CatalogDocument(CatalogModel):
    """Shape of the JSON file the catalog is loaded from."""

    integrations: List[Integration] = Field(default_factory=list)
    actions: List[IntegrationAction] = Field(default_factory=list)
