"""Server configuration: authorization policy, search limits and real-time publishing.

The configuration is built once (usually from the environment) and handed to
the pipeline, store and query objects when they are constructed.
"""

import os
from typing import Mapping, Optional

from pydantic import BaseModel, Field, model_validator


class TrackerApiConfig(BaseModel):
    require_authentication: bool = False
    allow_tracker_creation: bool = False


class ClientApiConfig(BaseModel):
    default_search_results: int = Field(50, ge=0)
    max_search_results: int = Field(50, ge=0)


class RealtimeConfig(BaseModel):
    enabled: bool = False
    publish_url: Optional[str] = None
    timeout_seconds: float = Field(5.0, gt=0)

    @model_validator(mode="after")
    def _url_required_when_enabled(self):
        if self.enabled and not self.publish_url:
            raise ValueError("publish_url is required when real-time publishing is enabled")
        return self


class ServerConfig(BaseModel):
    tracker_api: TrackerApiConfig = Field(default_factory=TrackerApiConfig)
    client_api: ClientApiConfig = Field(default_factory=ClientApiConfig)
    realtime: RealtimeConfig = Field(default_factory=RealtimeConfig)


# Environment variable -> (section, field)
ENV_VARS = {
    "REQUIRE_AUTHENTICATION": ("tracker_api", "require_authentication"),
    "ALLOW_TRACKER_CREATION": ("tracker_api", "allow_tracker_creation"),
    "DEFAULT_SEARCH_RESULTS": ("client_api", "default_search_results"),
    "MAX_SEARCH_RESULTS": ("client_api", "max_search_results"),
    "REALTIME_ENABLED": ("realtime", "enabled"),
    "PUBLISH_URL": ("realtime", "publish_url"),
    "PUBLISH_TIMEOUT": ("realtime", "timeout_seconds"),
}


def load_config(environ: Mapping[str, str] = os.environ) -> ServerConfig:
    """Build a ServerConfig from environment variables, validating with pydantic."""
    sections: dict[str, dict] = {"tracker_api": {}, "client_api": {}, "realtime": {}}
    for var, (section, field) in ENV_VARS.items():
        value = environ.get(var)
        if value is not None and value.strip() != "":
            sections[section][field] = value.strip()
    return ServerConfig(**sections)
