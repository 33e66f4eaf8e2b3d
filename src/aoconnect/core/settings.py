"""Settings for aoconnect.

``AOSettings`` holds every tunable of the engine: unit URLs, the scheduler
bindings used by spawn, resolver cache and retry bounds, the dispatch retry
curve, result polling window and envelope limits. Values come from
``AO_``-prefixed environment variables or a ``.env`` file; the retry and
staleness values are defaults, never hard-coded policy.

Examples:
    >>> from aoconnect.core.settings import AOSettings
    >>> settings = AOSettings(cu_url="http://localhost:6363", max_retries=5)
    >>> settings.graphql_url
    'https://arweave.net/graphql'

    Environment driven::

        AO_CU_URL=http://localhost:6363
        AO_MODULE_SCHEDULERS='{"<module id>": "<scheduler address>"}'
        AO_HTTP_SIGNATURES=true

Tags:
    settings, configuration, pydantic, environment, aoconnect
"""

from __future__ import annotations

from pydantic import Field, computed_field
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_SCHEDULER = "_GQ33BkPtZrqxA84vM8Zk-N2aO0toNNu_C-l-rawrBA"


class AOSettings(BaseSettings):
    """Engine configuration.

    Fields
    ──────
    cu_url / mu_url / gateway_url : Unit and gateway base URLs
    default_scheduler             : Scheduler address used when a module has no binding
    module_schedulers             : Module id → scheduler address
    scheduler_alternates          : Scheduler address → extra URLs tried after the primary
    scheduler_cache_*             : Resolver cache sizing and default ttl
    resolve_*                     : Directory lookup retry bound
    max_retries / retry_*         : Dispatch retry curve
    result_poll_*                 : Result polling
    """

    model_config = SettingsConfigDict(
        env_prefix="AO_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ── Endpoints ────────────────────────────────────────────────
    cu_url: str = "https://cu.ao-testnet.xyz"
    mu_url: str = "https://mu.ao-testnet.xyz"
    gateway_url: str = "https://arweave.net"
    graphql_path: str = "/graphql"

    # ── Scheduler resolution ─────────────────────────────────────
    default_scheduler: str = DEFAULT_SCHEDULER
    module_schedulers: dict[str, str] = Field(default_factory=dict)
    scheduler_alternates: dict[str, list[str]] = Field(default_factory=dict)
    scheduler_cache_size: int = Field(default=100, ge=1)
    scheduler_cache_ttl_seconds: float = Field(
        default=300.0,
        gt=0,
        description="Used when the directory record carries no Time-To-Live",
    )
    scheduler_failure_threshold: int = Field(
        default=3,
        ge=1,
        description="Failed dispatches against a location before it is invalidated",
    )
    allow_stale_scheduler: bool = Field(
        default=True,
        description="Dispatch to an expired location when the directory is unreachable",
    )
    resolve_max_retries: int = Field(default=3, ge=1)
    resolve_base_delay: float = Field(default=0.25, ge=0)

    # ── Dispatch retry ───────────────────────────────────────────
    max_retries: int = Field(default=3, ge=1, description="Total attempts per request")
    retry_base_delay: float = Field(default=0.5, ge=0)
    retry_max_delay: float = Field(default=10.0, ge=0)
    retry_multiplier: float = Field(default=2.0, ge=1)
    retry_jitter: float = Field(default=0.25, ge=0, le=1)
    request_timeout_seconds: float = Field(default=30.0, gt=0)

    # ── Results ──────────────────────────────────────────────────
    result_poll_interval_seconds: float = Field(default=1.0, ge=0)
    result_poll_window_seconds: float = Field(default=60.0, ge=0)

    # ── Envelope ─────────────────────────────────────────────────
    max_data_item_bytes: int = Field(default=100 * 1024 * 1024, gt=0)
    max_tag_bytes: int = Field(default=4096, gt=0, le=4096)

    # ── Request signing ──────────────────────────────────────────
    http_signatures: bool = False

    # ── Observability ────────────────────────────────────────────
    log_level: str = "INFO"
    log_json: bool | None = None

    @computed_field  # type: ignore[prop-decorator]
    @property
    def graphql_url(self) -> str:
        return self.gateway_url.rstrip("/") + self.graphql_path

    def scheduler_for_module(self, module_id: str) -> str:
        """Scheduler address bound to *module_id*, else the default scheduler."""
        return self.module_schedulers.get(module_id, self.default_scheduler)


_settings: AOSettings | None = None


def get_settings(*, _force_reload: bool = False) -> AOSettings:
    """Load and cache the process-wide settings."""
    global _settings
    if _settings is None or _force_reload:
        _settings = AOSettings()
    return _settings


__all__ = ["AOSettings", "DEFAULT_SCHEDULER", "get_settings"]
