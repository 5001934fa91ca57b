from __future__ import annotations

import asyncio
import logging

from hybrid_recall.core.interfaces import (
    FLAG_BYOK,
    FLAG_CLOUD_PROXY,
    CredentialStore,
    FeatureFlags,
    NetworkMonitor,
    QuotaLedger,
    SubscriptionStatus,
)
from hybrid_recall.models import (
    NetworkState,
    RoutingContext,
    RoutingDecision,
    RoutingMode,
    SubscriptionTier,
    TaskDescriptor,
    TaskKind,
)
from hybrid_recall.settings import RoutingConfig, UnifiedSettings
from hybrid_recall.utils.exceptions import InsufficientCredits, RemoteError, RemoteTimeout
from hybrid_recall.utils.metrics import QUOTA_CONSUMED_TOTAL, REMOTE_FAILURES_TOTAL, ROUTING_DECISIONS_TOTAL

log = logging.getLogger(__name__)

# --- Pure policy -------------------------------------------------------------


def _local_or_disabled(task: TaskDescriptor, reason: str) -> RoutingDecision:
    if task.kind.has_local_path:
        return RoutingDecision(RoutingMode.LOCAL, reason)
    return RoutingDecision(RoutingMode.DISABLED, f"{reason}; no on-device path for {task.kind.value}")


def _tier_prefers_remote(task: TaskDescriptor, tier: SubscriptionTier, cfg: RoutingConfig) -> bool:
    if tier is SubscriptionTier.FREE:
        return task.kind.high_complexity and task.item_count <= cfg.free_max_items
    if tier is SubscriptionTier.EXPLORER:
        return task.item_count > cfg.mid_tier_min_items or task.kind is TaskKind.INSIGHT_GENERATION
    return True


def decide(
    task: TaskDescriptor, context: RoutingContext, config: RoutingConfig | None = None
) -> RoutingDecision:
    """Choose the execution path for ``task``.

    Rules are evaluated in order and the first match wins:

    1. user credential present and BYOK enabled -> remote on that credential
    2. platform proxy disabled -> local with a credential, otherwise disabled
    3. network not online -> local if the task has an on-device path
    4. no quota left -> local if possible
    5. per-tier complexity threshold

    Without a remote service (``context.remote_available`` false) rules 1
    and 5 never choose the remote path.

    The function is pure: the same inputs always give the same decision.
    """
    cfg = config or RoutingConfig()

    # 1) bring your own key
    if context.has_user_credential and context.byok_enabled and context.remote_available:
        return RoutingDecision(RoutingMode.REMOTE, "user-supplied credential", uses_user_credential=True)

    # 2) platform proxy switched off
    if not context.cloud_proxy_enabled:
        if context.has_user_credential:
            return RoutingDecision(RoutingMode.LOCAL, "cloud proxy disabled")
        return RoutingDecision(RoutingMode.DISABLED, "cloud proxy disabled and no credential")

    # 3) connectivity
    if context.network_state is not NetworkState.ONLINE:
        return _local_or_disabled(task, f"network {context.network_state.value}")

    # 4) quota
    if context.remaining_quota <= 0:
        return _local_or_disabled(task, "quota exhausted")

    # 5) tier threshold
    tier = context.subscription_tier
    if not context.remote_available:
        return _local_or_disabled(task, "no remote service configured")
    if _tier_prefers_remote(task, tier, cfg):
        return RoutingDecision(RoutingMode.REMOTE, f"{tier.value} tier routes {task.kind.value} remotely")
    return _local_or_disabled(task, f"{tier.value} tier keeps {task.kind.value} on device")


# --- Router with side effects -------------------------------------------------


class BackendRouter:
    """
    Builds a :class:`RoutingContext` from live collaborators and applies
    :func:`decide`.

    Choosing the platform remote path charges the quota ledger before any
    network request is issued. The charge is for the attempt: it is not
    refunded when the remote call later fails.
    """

    def __init__(
        self,
        ledger: QuotaLedger,
        flags: FeatureFlags,
        network: NetworkMonitor,
        subscription: SubscriptionStatus,
        credentials: CredentialStore | None = None,
        settings: UnifiedSettings | None = None,
        *,
        remote_available: bool = True,
    ) -> None:
        self.ledger = ledger
        self.flags = flags
        self.network = network
        self.subscription = subscription
        self.credentials = credentials
        self.settings = settings or UnifiedSettings()
        self.remote_available = remote_available

    @property
    def _quota_timeout(self) -> float:
        return self.settings.search.quota_timeout_seconds

    async def build_context(self) -> RoutingContext:
        try:
            remaining = await asyncio.wait_for(self.ledger.remaining(), self._quota_timeout)
        except (TimeoutError, RemoteError) as exc:
            # An unreachable ledger is treated as an empty one.
            log.warning("quota ledger unavailable, assuming no quota: %s", exc)
            REMOTE_FAILURES_TOTAL.labels(kind="quota").inc()
            remaining = 0
        has_credential = bool(self.credentials and self.credentials.has_valid_credential())
        return RoutingContext(
            network_state=self.network.current_state(),
            subscription_tier=self.subscription.current_tier(),
            remaining_quota=remaining,
            has_user_credential=has_credential,
            byok_enabled=self.flags.is_enabled(FLAG_BYOK),
            cloud_proxy_enabled=self.flags.is_enabled(FLAG_CLOUD_PROXY),
            remote_available=self.remote_available,
        )

    async def route(self, task: TaskDescriptor) -> RoutingDecision:
        """Decide and, for a platform remote call, charge the quota.

        Raises :class:`InsufficientCredits` when the ledger refuses the charge
        and :class:`RemoteTimeout` when it does not answer in time; in both
        cases no remote request has been issued.
        """
        context = await self.build_context()
        decision = decide(task, context, self.settings.routing)
        ROUTING_DECISIONS_TOTAL.labels(mode=decision.mode.value, task=task.kind.value).inc()
        log.debug("routing %s (%d items): %s (%s)", task.kind.value, task.item_count, decision.mode.value, decision.reason)

        if decision.mode is RoutingMode.REMOTE and not decision.uses_user_credential:
            await self._charge()
        return decision

    async def _charge(self) -> None:
        cost = self.settings.routing.remote_call_cost
        try:
            ok = await asyncio.wait_for(self.ledger.consume(cost), self._quota_timeout)
        except TimeoutError as exc:
            REMOTE_FAILURES_TOTAL.labels(kind="quota").inc()
            raise RemoteTimeout("quota ledger did not answer") from exc
        if not ok:
            raise InsufficientCredits(f"could not charge {cost} credit(s)")
        QUOTA_CONSUMED_TOTAL.inc(cost)


__all__ = ["BackendRouter", "decide"]
