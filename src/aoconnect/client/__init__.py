"""aoconnect.client -- operations against the ao units.

Architecture::

    options.py     OperationOptions (camelCase or snake_case, unknown keys rejected)
    models.py      Result, ResultsPage, SendResponse, MonitorAck
    dispatcher.py  spawn, message, dryrun, assign, monitor, unmonitor
    poller.py      fetch, result, results
    connect.py     AOClient facade and connect()
"""

from aoconnect.client.connect import AOClient, connect
from aoconnect.client.dispatcher import Dispatcher
from aoconnect.client.models import MonitorAck, Result, ResultEdge, ResultsPage, SendResponse
from aoconnect.client.options import OperationOptions
from aoconnect.client.poller import NOT_YET_AVAILABLE, ResultPoller

__all__ = [
    "AOClient",
    "Dispatcher",
    "MonitorAck",
    "NOT_YET_AVAILABLE",
    "OperationOptions",
    "Result",
    "ResultEdge",
    "ResultPoller",
    "ResultsPage",
    "SendResponse",
    "connect",
]
