"""Service discriminant types shared by the registry, router and config."""

from __future__ import annotations

from enum import Enum
from typing import FrozenSet

from pydantic import BaseModel, ConfigDict


class ServiceKey(str, Enum):
    PCB = "pcb"
    PCB_ASSEMBLY = "pcb_assembly"
    THREE_D_PRINTING = "3dprinting"
    TESTING = "testing"
    WIRE_HARNESS = "wire_harness"

    def __str__(self) -> str:
        return self.value


class ServiceDescriptor(BaseModel):
    """Where documents of one service live and which service values they may carry."""

    model_config = ConfigDict(frozen=True)

    service_key: ServiceKey
    collection_name: str
    model_name: str
    allowed_service_values: FrozenSet[ServiceKey]

    def accepts(self, service: ServiceKey) -> bool:
        return service in self.allowed_service_values


__all__ = ["ServiceKey", "ServiceDescriptor"]
