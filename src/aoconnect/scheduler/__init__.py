"""aoconnect.scheduler -- directory adapters and the caching resolver."""

from aoconnect.scheduler.directory import (
    Directory,
    GatewayDirectory,
    SchedulerLocation,
    StaticDirectory,
)
from aoconnect.scheduler.resolver import Resolution, ResolutionState, SchedulerResolver

__all__ = [
    "Directory",
    "GatewayDirectory",
    "Resolution",
    "ResolutionState",
    "SchedulerLocation",
    "SchedulerResolver",
    "StaticDirectory",
]
