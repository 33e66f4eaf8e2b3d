"""
aoconnect - client engine for the ao compute network.

Builds signed ANS-104 data items, locates the scheduler of a process,
dispatches messages with bounded retries and reads computed results back.

Examples:
    >>> from aoconnect import connect, Ed25519Signer
    >>> async with connect(signer=Ed25519Signer.generate()) as ao:
    ...     pid = await ao.spawn(module_id)
    ...     mid = await ao.message(pid, "ping", [("Action", "Ping")])
    ...     result = await ao.result(pid, mid)
"""

__version__ = "0.1.0"

from aoconnect.client import (
    NOT_YET_AVAILABLE,
    AOClient,
    Dispatcher,
    MonitorAck,
    OperationOptions,
    Result,
    ResultPoller,
    ResultsPage,
    connect,
)
from aoconnect.core import *  # noqa
from aoconnect.execution import CancellationToken
from aoconnect.protocol import (
    ArweaveSigner,
    DataItem,
    Ed25519Signer,
    Signer,
    Tag,
    build_tags,
    create_data_item_signer,
    sign_data_item,
    sign_request,
)
from aoconnect.scheduler import (
    GatewayDirectory,
    Resolution,
    SchedulerLocation,
    SchedulerResolver,
    StaticDirectory,
)
