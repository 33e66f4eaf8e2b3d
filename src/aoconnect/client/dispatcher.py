"""
Dispatcher: spawn, message, dry run, assign, monitor and unmonitor.

Manifesto:
    Each operation follows the same pipeline, and nothing is sent unless
    every step before the send succeeded:

    1. **Options**: normalise and validate caller options.
    2. **Envelope**: validate tags, append protocol tags, sign the data item.
    3. **Resolve**: find the scheduler URL (skipped with ``endpoint_override``).
    4. **Send**: attempt, classify, back off, repeat, with the same bytes.

Retry policy:
    ::

        NetworkError / TimeoutError / RateLimitError / 5xx  → retried
        RequestRejectedError (4xx)                          → surfaced at once
        ProtocolViolationError (bad 2xx shape)              → surfaced at once
        CancelledError                                      → surfaced at once

    ``max_retries`` bounds total attempts. Delays grow exponentially with
    upward-only jitter and never shrink. Attempts rotate across the
    location's URLs (primary first, then alternates). When the last attempt
    fails with a retryable error the resolver is told, so a location that
    keeps failing is invalidated.

Routes:
    ::

        spawn / message   POST  <su>/                       data item
        assign            POST  <su>/?process-id=P&assign=M[&base-layer][&exclude=a,b]
        dryrun            POST  <cu>/dry-run?process-id=P   JSON, unsigned
        monitor           POST  <mu>/monitor/P              data item
        unmonitor         DELETE <mu>/monitor/P             data item

Examples:
    >>> dispatcher = Dispatcher(transport, resolver, settings)
    >>> process_id = await dispatcher.spawn(module_id, [], signer)
    >>> message_id = await dispatcher.message(process_id, "ping", [("Action", "Ping")], signer)

Tags:
    dispatch, retry, backoff, data-item, scheduler-unit, aoconnect
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable, Iterable, Mapping
from typing import Any

from aoconnect.client.models import MonitorAck, Result, SendResponse, parse_model
from aoconnect.client.options import OperationOptions
from aoconnect.core.errors import AOError, InvalidOptionsError, ProtocolViolationError, SigningError
from aoconnect.core.logging import LogContext, get_logger
from aoconnect.core.settings import AOSettings, get_settings
from aoconnect.execution.cancellation import CancellationToken, sleep_cancellable
from aoconnect.execution.retry import RetryContext, backoff_from_settings
from aoconnect.execution.transport import Transport, json_body
from aoconnect.protocol.data_item import DataItem, sign_data_item
from aoconnect.protocol.signers import Signer, create_data_item_signer
from aoconnect.protocol.tags import compose_tags, protocol_tags
from aoconnect.scheduler.resolver import Resolution, SchedulerResolver

logger = get_logger(__name__)

DEFAULT_SPAWN_DATA = "1984"
DRYRUN_PLACEHOLDER_ID = "1234"
DRYRUN_PLACEHOLDER_ANCHOR = "0"

OptionsInput = OperationOptions | Mapping[str, Any] | None
SleepFn = Callable[[float, CancellationToken | None], Awaitable[None]]


class Dispatcher:
    """Builds envelopes and sends them with bounded retries.

    Args:
        transport: HTTP transport.
        resolver: Scheduler resolver shared by every operation.
        settings: Retry curve, unit URLs, envelope limits.
        signer: Default signer when a call passes none.
        sleep: Backoff sleep; tests pass a recorder.
    """

    def __init__(
        self,
        transport: Transport,
        resolver: SchedulerResolver,
        settings: AOSettings | None = None,
        *,
        signer: Signer | None = None,
        sleep: SleepFn = sleep_cancellable,
    ):
        self.transport = transport
        self.resolver = resolver
        self.settings = settings or get_settings()
        self.signer = signer
        self._sleep = sleep

    # ── operations ───────────────────────────────────────────────

    async def spawn(
        self,
        module_id: str,
        tags: Any = None,
        signer: Any = None,
        *,
        data: str | bytes = DEFAULT_SPAWN_DATA,
        scheduler: str | None = None,
        options: OptionsInput = None,
        cancel: CancellationToken | None = None,
    ) -> str:
        """Create a process from *module_id*; returns the new process id."""
        opts = OperationOptions.parse(options)
        if not module_id:
            raise InvalidOptionsError("module_id is required")
        identity = self._signer_for(signer, opts)
        scheduler = scheduler or self.settings.scheduler_for_module(module_id)

        with LogContext(operation="spawn", module_id=module_id):
            envelope_tags = compose_tags(
                self._tags_for(tags, opts),
                "Process",
                extra=[("Module", module_id), ("Scheduler", scheduler)],
                max_tag_bytes=self.settings.max_tag_bytes,
            )
            item = self._sign(identity, None, envelope_tags, None, data)

            resolution = None
            if opts.endpoint_override is None:
                resolution = await self.resolver.resolve_scheduler(scheduler, cancel=cancel)

            response = await self._send_item(
                item,
                resolution,
                opts,
                cancel,
                operation="spawn",
                failure_key={"scheduler": scheduler},
                signer=identity,
            )
            self._check_echo(response, item, "spawn")
            logger.info("process_spawned", process_id=item.id, scheduler=scheduler)
            return item.id

    async def message(
        self,
        process_id: str | None,
        payload: str | bytes = "",
        tags: Any = None,
        signer: Any = None,
        *,
        anchor: str | bytes | None = None,
        options: OptionsInput = None,
        cancel: CancellationToken | None = None,
    ) -> str:
        """Send a signed message to *process_id*; returns the message id."""
        opts = OperationOptions.parse(options)
        process_id = self._process_id_for(process_id, opts)
        identity = self._signer_for(signer, opts)

        with LogContext(operation="message", process_id=process_id):
            envelope_tags = compose_tags(
                self._tags_for(tags, opts),
                "Message",
                max_tag_bytes=self.settings.max_tag_bytes,
            )
            item = self._sign(identity, process_id, envelope_tags, anchor, payload)

            resolution = None
            if opts.endpoint_override is None:
                resolution = await self.resolver.resolve(process_id, cancel=cancel)

            response = await self._send_item(
                item,
                resolution,
                opts,
                cancel,
                operation="message",
                failure_key={"process_id": process_id},
                signer=identity,
            )
            self._check_echo(response, item, "message")
            logger.info("message_dispatched", message_id=item.id, timestamp=response.timestamp)
            return item.id

    async def dryrun(
        self,
        process_id: str | None,
        payload: str | bytes = DRYRUN_PLACEHOLDER_ID,
        tags: Any = None,
        *,
        anchor: str | None = None,
        owner: str | None = None,
        options: OptionsInput = None,
        cancel: CancellationToken | None = None,
    ) -> Result:
        """Evaluate a message on the CU without signing or persisting it."""
        opts = OperationOptions.parse(options)
        process_id = self._process_id_for(process_id, opts)

        with LogContext(operation="dryrun", process_id=process_id):
            caller_tags = compose_tags(
                self._tags_for(tags, opts),
                "Message",
                max_tag_bytes=self.settings.max_tag_bytes,
            )
            body = {
                "Id": DRYRUN_PLACEHOLDER_ID,
                "Target": process_id,
                "Owner": owner or DRYRUN_PLACEHOLDER_ID,
                "Anchor": anchor or DRYRUN_PLACEHOLDER_ANCHOR,
                "Data": payload.decode("utf-8") if isinstance(payload, bytes) else payload,
                "Tags": [tag.to_dict() for tag in caller_tags],
            }
            base = opts.endpoint_override or self.settings.cu_url.rstrip("/")
            url = f"{base}/dry-run"

            async def attempt() -> Any:
                response = await self.transport.request(
                    "POST",
                    url,
                    params={"process-id": process_id},
                    json_data=body,
                    timeout=opts.timeout_seconds,
                    signer=self._http_signer(opts),
                )
                return json_body(response)

            payload_json = await self._with_retry(attempt, opts, cancel, "dryrun")
            return parse_model(Result, payload_json, what="dry-run result")

    async def assign(
        self,
        process_id: str | None,
        message_id: str,
        base_layer: bool = False,
        exclude: Iterable[str] | None = None,
        *,
        options: OptionsInput = None,
        cancel: CancellationToken | None = None,
    ) -> str:
        """Assign an existing message to *process_id*; returns the assignment id."""
        opts = OperationOptions.parse(options)
        process_id = self._process_id_for(process_id, opts)
        if not message_id:
            raise InvalidOptionsError("message_id is required")

        params: dict[str, str] = {"process-id": process_id, "assign": message_id}
        if base_layer:
            params["base-layer"] = ""
        exclude = list(exclude or [])
        if exclude:
            params["exclude"] = ",".join(exclude)

        with LogContext(operation="assign", process_id=process_id, message_id=message_id):
            resolution = None
            if opts.endpoint_override is None:
                resolution = await self.resolver.resolve(process_id, cancel=cancel)
            urls = self._urls(resolution, opts)
            http_signer = self._http_signer(opts)

            async def attempt(n: int) -> Any:
                url = urls[(n - 1) % len(urls)]
                response = await self.transport.request(
                    "POST",
                    f"{url}/",
                    params=params,
                    timeout=opts.timeout_seconds,
                    signer=http_signer,
                )
                return json_body(response)

            payload = await self._with_failure_report(
                attempt, opts, cancel, "assign", {"process_id": process_id}
            )
            response = parse_model(SendResponse, payload, what="assign response")
            logger.info("message_assigned", assignment_id=response.id)
            return response.id

    async def monitor(
        self,
        process_id: str | None,
        signer: Any = None,
        *,
        options: OptionsInput = None,
        cancel: CancellationToken | None = None,
    ) -> MonitorAck:
        """Subscribe the messenger unit to cron output of *process_id*."""
        return await self._monitor("POST", "Monitor", process_id, signer, options, cancel)

    async def unmonitor(
        self,
        process_id: str | None,
        signer: Any = None,
        *,
        options: OptionsInput = None,
        cancel: CancellationToken | None = None,
    ) -> MonitorAck:
        """Cancel a monitor subscription for *process_id*."""
        return await self._monitor("DELETE", "Unmonitor", process_id, signer, options, cancel)

    # ── internals ────────────────────────────────────────────────

    async def _monitor(
        self,
        method: str,
        type_: str,
        process_id: str | None,
        signer: Any,
        options: OptionsInput,
        cancel: CancellationToken | None,
    ) -> MonitorAck:
        opts = OperationOptions.parse(options)
        process_id = self._process_id_for(process_id, opts)
        identity = self._signer_for(signer, opts)
        operation = type_.lower()

        with LogContext(operation=operation, process_id=process_id):
            item = self._sign(identity, process_id, protocol_tags(type_), None, " ")
            base = opts.endpoint_override or self.settings.mu_url.rstrip("/")
            url = f"{base}/monitor/{process_id}"

            async def attempt() -> MonitorAck:
                response = await self.transport.request(
                    method,
                    url,
                    content=item.to_bytes(),
                    headers={"content-type": "application/octet-stream"},
                    timeout=opts.timeout_seconds,
                    signer=self._http_signer(opts, identity),
                )
                return MonitorAck(
                    process_id=process_id,
                    message_id=item.id,
                    status_code=response.status_code,
                    body=response.text,
                )

            ack = await self._with_retry(attempt, opts, cancel, operation)
            logger.info(f"{operation}_acknowledged", message_id=item.id, status=ack.status_code)
            return ack

    def _signer_for(self, signer: Any, opts: OperationOptions) -> Signer:
        identity = signer if signer is not None else opts.signer or self.signer
        if identity is None:
            raise SigningError("no signer given for a signed operation")
        return create_data_item_signer(identity)

    @staticmethod
    def _tags_for(tags: Any, opts: OperationOptions) -> Any:
        return tags if tags is not None else opts.tags

    @staticmethod
    def _process_id_for(process_id: str | None, opts: OperationOptions) -> str:
        process_id = process_id or opts.process_id
        if not process_id:
            raise InvalidOptionsError("process_id is required")
        return process_id

    def _sign(
        self,
        signer: Signer,
        target: str | None,
        tags: list,
        anchor: str | bytes | None,
        data: str | bytes,
    ) -> DataItem:
        item = sign_data_item(
            signer, target, tags, anchor, data, max_size=self.settings.max_data_item_bytes
        )
        logger.debug("data_item_signed", message_id=item.id, size=len(item))
        return item

    def _http_signer(self, opts: OperationOptions, identity: Signer | None = None) -> Signer | None:
        if not self.settings.http_signatures:
            return None
        return identity or opts.signer or self.signer

    @staticmethod
    def _urls(resolution: Resolution | None, opts: OperationOptions) -> tuple[str, ...]:
        if opts.endpoint_override is not None:
            return (opts.endpoint_override,)
        assert resolution is not None
        if resolution.stale:
            logger.warning("dispatching_to_stale_scheduler", url=resolution.url)
        return resolution.location.urls

    @staticmethod
    def _check_echo(response: SendResponse, item: DataItem, what: str) -> None:
        if response.id != item.id:
            raise ProtocolViolationError(
                f"{what} acknowledged id {response.id}, sent {item.id}"
            ).with_context(message_id=item.id)

    async def _send_item(
        self,
        item: DataItem,
        resolution: Resolution | None,
        opts: OperationOptions,
        cancel: CancellationToken | None,
        *,
        operation: str,
        failure_key: dict[str, str],
        signer: Signer,
    ) -> SendResponse:
        urls = self._urls(resolution, opts)
        body = item.to_bytes()
        http_signer = self._http_signer(opts, signer)

        async def attempt(n: int) -> Any:
            url = urls[(n - 1) % len(urls)]
            response = await self.transport.request(
                "POST",
                f"{url}/",
                content=body,
                headers={
                    "content-type": "application/octet-stream",
                    "accept": "application/json",
                },
                timeout=opts.timeout_seconds,
                signer=http_signer,
            )
            return json_body(response)

        payload = await self._with_failure_report(attempt, opts, cancel, operation, failure_key)
        return parse_model(SendResponse, payload, what=f"{operation} response")

    async def _with_failure_report(
        self,
        attempt: Callable[[int], Awaitable[Any]],
        opts: OperationOptions,
        cancel: CancellationToken | None,
        operation: str,
        failure_key: dict[str, str],
    ) -> Any:
        try:
            result = await self._with_retry(attempt, opts, cancel, operation, numbered=True)
        except AOError as e:
            if e.retryable and opts.endpoint_override is None:
                self.resolver.report_failure(**failure_key)
            raise
        if opts.endpoint_override is None:
            self.resolver.report_success(**failure_key)
        return result

    async def _with_retry(
        self,
        attempt: Callable[..., Awaitable[Any]],
        opts: OperationOptions,
        cancel: CancellationToken | None,
        operation: str,
        *,
        numbered: bool = False,
    ) -> Any:
        strategy = backoff_from_settings(self.settings, max_retries=opts.max_retries)

        def on_retry(n: int, error: Exception, delay: float) -> None:
            logger.warning(
                "attempt_failed_retrying",
                attempt=n,
                delay=round(delay, 3),
                error=str(error),
            )

        retry = RetryContext(strategy, on_retry=on_retry, sleep=self._sleep)

        async def run_attempt() -> Any:
            return await (attempt(retry.attempt) if numbered else attempt())

        try:
            return await retry.run_async(run_attempt, cancel=cancel, operation=operation)
        except AOError as e:
            logger.error(
                "operation_failed",
                attempts=retry.attempts,
                error_type=type(e).__name__,
                error=e.message,
            )
            raise e.with_context(operation=operation, attempt=retry.attempts)


__all__ = ["Dispatcher"]
