from __future__ import annotations

from pydantic import BaseModel, Field, field_validator

from .bigip import split_pool


class AuthCert(BaseModel):
    client_cert: str | None = Field(None, description="Base64-encoded client certificate (PEM)")
    client_key: str | None = Field(None, description="Base64-encoded client key (PEM)")
    ca_cert: str | None = Field(None, description="Base64-encoded cluster CA certificate (PEM)")


class InstanceRequest(BaseModel):
    name: str = Field(..., min_length=1, description="Unique instance name")
    endpoint: str = Field(..., min_length=1, description="Kubernetes API base URL, e.g. https://10.1.1.4:6443")
    namespace: str = Field(..., min_length=1)
    service_name: str = Field(..., min_length=1)
    pool: str = Field(..., min_length=1, description="BIG-IP pool, e.g. /Common/web_pool")
    pool_type: str = Field("round-robin", description="Pool load-balancing mode")
    health_monitor: str | None = Field(None, description="Pool monitor, e.g. /Common/http")
    poll_interval_s: int | None = Field(None, ge=0, le=86400, description="Seconds; unset -> 30, minimum 10")
    auth: AuthCert | None = None

    @field_validator("pool")
    @classmethod
    def _pool_has_a_name(cls, v: str) -> str:
        split_pool(v)
        return v


class InstanceView(BaseModel):
    name: str
    pool: str
    state: str
    namespace: str
    service_name: str
    poll_interval_s: float
    running: bool
    updated_at: str
