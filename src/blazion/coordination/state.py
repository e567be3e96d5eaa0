"""Single-flight sync coordination, cooldowns, and hint gating for one process."""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum

from blazion.config import CoordinationSettings
from blazion.content.models import ContentRecord, SyncResult
from blazion.content.sync import SyncService
from blazion.coordination.rate_limit import FixedWindowCounter
from blazion.coordination.signed_urls import any_needs_refresh

logger = logging.getLogger(__name__)

MINUTE_MS = 60_000
HOUR_MS = 60 * MINUTE_MS


def epoch_ms() -> int:
    return int(time.time() * 1000)


class SyncTrigger(str, Enum):
    NONE = "none"
    CRON = "cron"
    MANUAL = "manual"
    HINT = "hint"
    REQUEST = "request"


class SyncOutcomeStatus(str, Enum):
    COMPLETED = "completed"
    IN_PROGRESS = "in_progress"
    COOLDOWN = "cooldown"


class HintStatus(str, Enum):
    DISABLED = "disabled"
    NOT_CONFIGURED = "not_configured"
    RATE_LIMITED = "rate_limited"
    IN_PROGRESS = "in_progress"
    COOLDOWN = "cooldown"
    QUEUED = "queued"


class NoSyncTargetsError(LookupError):
    """No sync-capable pack matches the request."""


@dataclass(slots=True)
class SyncOutcome:
    status: SyncOutcomeStatus
    result: SyncResult | None = None


@dataclass(slots=True)
class HintDecision:
    status: HintStatus
    scope: str | None = None
    retry_after_ms: int | None = None
    next_allowed_at_ms: int | None = None
    last_sync_started_at_ms: int = 0
    last_sync_source: SyncTrigger = SyncTrigger.NONE


@dataclass(slots=True)
class PassState:
    """Bookkeeping for one pass kind (full sync or image refresh)."""

    in_progress: bool = False
    started_at_ms: int = 0
    finished_at_ms: int = 0
    source: SyncTrigger = SyncTrigger.NONE
    result: SyncResult | None = None
    pack_results: dict[str, SyncResult] = field(default_factory=dict)
    error: str | None = None


@dataclass(slots=True)
class CoordinatorStatus:
    sync: PassState
    image_refresh: PassState
    image_url_refresh_buffer_seconds: int
    image_url_refresh_cooldown_seconds: int
    hint_enabled: bool
    sync_active_packs: list[str]
    next_hint_allowed_at_ms: int
    hint_cooldown_remaining_ms: int


class SyncCoordinator:
    """Owns the in-memory guards around sync passes.

    Flags are claimed and released under a lock, so a pass of one kind never overlaps
    another pass of the same kind inside this process. Nothing here coordinates across
    processes.
    """

    def __init__(
        self,
        services: dict[str, SyncService],
        settings: CoordinationSettings,
        *,
        clock: Callable[[], int] = epoch_ms,
    ) -> None:
        self.services = services
        self.settings = settings
        self._clock = clock
        self._lock = threading.Lock()
        self._sync = PassState()
        self._images = PassState()
        self._ip_minute = FixedWindowCounter(
            window_ms=MINUTE_MS,
            limit=settings.ip_minute_limit,
            eviction_threshold=settings.counter_eviction_threshold,
        )
        self._ip_hour = FixedWindowCounter(
            window_ms=HOUR_MS,
            limit=settings.ip_hour_limit,
            eviction_threshold=settings.counter_eviction_threshold,
        )
        self._session_minute = FixedWindowCounter(
            window_ms=MINUTE_MS,
            limit=settings.session_minute_limit,
            eviction_threshold=settings.counter_eviction_threshold,
        )

    @property
    def sync_in_progress(self) -> bool:
        return self._sync.in_progress

    @property
    def image_refresh_in_progress(self) -> bool:
        return self._images.in_progress

    @property
    def has_targets(self) -> bool:
        return bool(self.services)

    def sync_targets(self, pack_name: str | None = None) -> list[tuple[str, SyncService]]:
        if pack_name and pack_name.strip():
            service = self.services.get(pack_name)
            return [(pack_name, service)] if service is not None else []
        return list(self.services.items())

    def run_sync(self, source: SyncTrigger, pack_name: str | None = None) -> SyncOutcome:
        """Run a full sync unless one is already running."""

        targets = self._require_targets(pack_name)
        with self._lock:
            if self._sync.in_progress:
                return SyncOutcome(status=SyncOutcomeStatus.IN_PROGRESS)
            self._begin(self._sync, source)
        return SyncOutcome(
            status=SyncOutcomeStatus.COMPLETED,
            result=self._execute(self._sync, targets, SyncService.sync_now),
        )

    def run_claimed_sync(self, pack_name: str | None = None) -> SyncResult:
        """Execute a full sync whose guard was already claimed by ``hint``."""

        if not self._sync.in_progress:
            raise RuntimeError("No claimed sync pass to execute")
        try:
            targets = self._require_targets(pack_name)
        except NoSyncTargetsError:
            with self._lock:
                self._sync.in_progress = False
                self._sync.finished_at_ms = self._clock()
            raise
        return self._execute(self._sync, targets, SyncService.sync_now)

    def run_image_refresh(self, source: SyncTrigger, pack_name: str | None = None) -> SyncOutcome:
        """Refresh signed image URLs.

        Request-triggered refreshes inside the cooldown and any refresh arriving while one is
        running skip the pass; their outcome carries the last known result.
        """

        targets = self._require_targets(pack_name)
        now = self._clock()
        with self._lock:
            if source == SyncTrigger.REQUEST:
                cooldown_ms = self.settings.image_url_refresh_cooldown_seconds * 1000
                started = self._images.started_at_ms
                if started and now - started < cooldown_ms:
                    return SyncOutcome(
                        status=SyncOutcomeStatus.COOLDOWN,
                        result=self._images.result or SyncResult(),
                    )
            if self._images.in_progress:
                return SyncOutcome(
                    status=SyncOutcomeStatus.IN_PROGRESS,
                    result=self._images.result or SyncResult(),
                )
            self._begin(self._images, source, now_ms=now)
        return SyncOutcome(
            status=SyncOutcomeStatus.COMPLETED,
            result=self._execute(self._images, targets, SyncService.refresh_image_urls),
        )

    def refresh_if_expiring(
        self,
        records: Iterable[ContentRecord],
        *,
        pack_name: str | None = None,
    ) -> bool:
        """Run a request-sourced image refresh when a served banner URL is near expiry.

        Returns True when a refresh ran (or was served from cooldown) and the caller should
        re-read the store. Refresh failures are logged and reported as False.
        """

        if not self.sync_targets(pack_name):
            return False
        now = datetime.fromtimestamp(self._clock() / 1000, tz=UTC)
        urls = [record.banner_image_url for record in records]
        if not any_needs_refresh(
            urls,
            now=now,
            buffer_seconds=self.settings.image_url_refresh_buffer_seconds,
        ):
            return False
        try:
            self.run_image_refresh(SyncTrigger.REQUEST, pack_name)
        except Exception as error:  # noqa: BLE001
            logger.warning("Proactive image URL refresh failed (pack=%s): %s", pack_name, error)
            return False
        return True

    def hint(self, *, ip: str, session_id: str) -> HintDecision:
        """Decide on a visitor hint; a ``queued`` decision has already claimed the sync guard."""

        if not self.settings.hint_enabled:
            return HintDecision(status=HintStatus.DISABLED)
        if not self.services:
            return HintDecision(status=HintStatus.NOT_CONFIGURED)

        now = self._clock()
        for scope, counter, key in (
            ("ip_minute", self._ip_minute, ip),
            ("ip_hour", self._ip_hour, ip),
            ("session_minute", self._session_minute, session_id),
        ):
            decision = counter.try_consume(key, now)
            if not decision.allowed:
                return HintDecision(
                    status=HintStatus.RATE_LIMITED,
                    scope=scope,
                    retry_after_ms=decision.retry_after_ms,
                )

        cooldown_ms = self.settings.hint_cooldown_seconds * 1000
        with self._lock:
            if self._sync.in_progress:
                return HintDecision(
                    status=HintStatus.IN_PROGRESS,
                    last_sync_started_at_ms=self._sync.started_at_ms,
                    last_sync_source=self._sync.source,
                )
            next_allowed = self._sync.started_at_ms + cooldown_ms
            if self._sync.started_at_ms and now < next_allowed:
                return HintDecision(
                    status=HintStatus.COOLDOWN,
                    next_allowed_at_ms=next_allowed,
                    retry_after_ms=next_allowed - now,
                )
            self._begin(self._sync, SyncTrigger.HINT, now_ms=now)
        return HintDecision(status=HintStatus.QUEUED, next_allowed_at_ms=now + cooldown_ms)

    def status(self) -> CoordinatorStatus:
        now = self._clock()
        next_allowed = self._sync.started_at_ms + self.settings.hint_cooldown_seconds * 1000
        return CoordinatorStatus(
            sync=self._sync,
            image_refresh=self._images,
            image_url_refresh_buffer_seconds=self.settings.image_url_refresh_buffer_seconds,
            image_url_refresh_cooldown_seconds=self.settings.image_url_refresh_cooldown_seconds,
            hint_enabled=self.settings.hint_enabled,
            sync_active_packs=list(self.services),
            next_hint_allowed_at_ms=next_allowed,
            hint_cooldown_remaining_ms=max(0, next_allowed - now),
        )

    def _require_targets(self, pack_name: str | None) -> list[tuple[str, SyncService]]:
        targets = self.sync_targets(pack_name)
        if not targets:
            raise NoSyncTargetsError("No sync-capable packs available for this request.")
        return targets

    def _begin(self, state: PassState, source: SyncTrigger, *, now_ms: int | None = None) -> None:
        state.in_progress = True
        state.started_at_ms = now_ms if now_ms is not None else self._clock()
        state.source = source
        state.error = None

    def _execute(
        self,
        state: PassState,
        targets: list[tuple[str, SyncService]],
        runner: Callable[[SyncService], SyncResult],
    ) -> SyncResult:
        try:
            pack_results = {name: runner(service) for name, service in targets}
            aggregated = SyncResult.aggregate(list(pack_results.values()))
            state.pack_results = pack_results
            state.result = aggregated
            return aggregated
        except Exception as error:
            state.error = str(error) or error.__class__.__name__
            raise
        finally:
            with self._lock:
                state.finished_at_ms = self._clock()
                state.in_progress = False


def to_iso(value_ms: int) -> str | None:
    if not value_ms:
        return None
    return (
        datetime.fromtimestamp(value_ms / 1000, tz=UTC)
        .isoformat(timespec="milliseconds")
        .replace("+00:00", "Z")
    )
