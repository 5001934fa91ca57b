import pytest

from hybrid_recall.core.interfaces import FLAG_BYOK, FLAG_CLOUD_PROXY
from hybrid_recall.models import (
    NetworkState,
    RoutingContext,
    RoutingMode,
    SubscriptionTier,
    TaskDescriptor,
    TaskKind,
)
from hybrid_recall.router import BackendRouter, decide
from hybrid_recall.settings import UnifiedSettings
from hybrid_recall.utils.exceptions import InsufficientCredits, RemoteTimeout
from tests.conftest import FakeCredentials, FakeFlags, FakeLedger, FakeNetwork, FakeSubscription

try:  # pragma: no cover - optional dependency
    from hypothesis import given, settings as hsettings, strategies as st
except ModuleNotFoundError:  # pragma: no cover - optional dependency
    pytest.skip("hypothesis not installed", allow_module_level=True)


def ctx(
    *,
    network: NetworkState = NetworkState.ONLINE,
    tier: SubscriptionTier = SubscriptionTier.FREE,
    quota: int = 10,
    credential: bool = False,
    byok: bool = False,
    proxy: bool = True,
) -> RoutingContext:
    return RoutingContext(network, tier, quota, credential, byok, proxy)


def test_byok_goes_remote_on_user_credential() -> None:
    d = decide(TaskDescriptor(TaskKind.SEARCH, 1), ctx(credential=True, byok=True, quota=0, network=NetworkState.OFFLINE))
    assert d.mode is RoutingMode.REMOTE
    assert d.uses_user_credential


def test_credential_without_byok_flag_is_ignored_by_rule_one() -> None:
    d = decide(TaskDescriptor(TaskKind.SEARCH, 1), ctx(credential=True, byok=False))
    assert not d.uses_user_credential


def test_proxy_disabled() -> None:
    task = TaskDescriptor(TaskKind.SEARCH, 1)
    assert decide(task, ctx(proxy=False, credential=True)).mode is RoutingMode.LOCAL
    assert decide(task, ctx(proxy=False)).mode is RoutingMode.DISABLED


def test_offline_free_tier_with_quota_is_local() -> None:
    d = decide(TaskDescriptor(TaskKind.SEARCH, 1), ctx(network=NetworkState.OFFLINE, quota=5))
    assert d.mode is RoutingMode.LOCAL


def test_no_remote_service_keeps_work_on_device() -> None:
    task = TaskDescriptor(TaskKind.SEARCH, 20)
    context = RoutingContext(NetworkState.ONLINE, SubscriptionTier.PROFESSIONAL, 10, remote_available=False)
    assert decide(task, context).mode is RoutingMode.LOCAL
    byok = RoutingContext(
        NetworkState.ONLINE, SubscriptionTier.PROFESSIONAL, 10, True, True, True, remote_available=False
    )
    assert decide(task, byok).mode is RoutingMode.LOCAL
    synthesis = decide(TaskDescriptor(TaskKind.SYNTHESIS, 1), context)
    assert synthesis.mode is RoutingMode.DISABLED


@pytest.mark.parametrize("state", [NetworkState.OFFLINE, NetworkState.UNKNOWN])
def test_not_online_without_local_path_is_disabled(state: NetworkState) -> None:
    d = decide(TaskDescriptor(TaskKind.SYNTHESIS, 1), ctx(network=state, tier=SubscriptionTier.PROFESSIONAL))
    assert d.mode is RoutingMode.DISABLED


def test_no_quota() -> None:
    assert decide(TaskDescriptor(TaskKind.SEARCH, 20), ctx(tier=SubscriptionTier.ADVANCED, quota=0)).mode is RoutingMode.LOCAL
    assert decide(TaskDescriptor(TaskKind.SYNTHESIS, 2), ctx(quota=-1)).mode is RoutingMode.DISABLED


def test_free_tier_thresholds() -> None:
    assert decide(TaskDescriptor(TaskKind.INSIGHT_GENERATION, 3), ctx()).mode is RoutingMode.REMOTE
    assert decide(TaskDescriptor(TaskKind.INSIGHT_GENERATION, 4), ctx()).mode is RoutingMode.LOCAL
    assert decide(TaskDescriptor(TaskKind.SEARCH, 1), ctx()).mode is RoutingMode.LOCAL
    assert decide(TaskDescriptor(TaskKind.SYNTHESIS, 10), ctx()).mode is RoutingMode.DISABLED


def test_explorer_tier_thresholds() -> None:
    c = ctx(tier=SubscriptionTier.EXPLORER)
    assert decide(TaskDescriptor(TaskKind.SEARCH, 3), c).mode is RoutingMode.REMOTE
    assert decide(TaskDescriptor(TaskKind.SEARCH, 2), c).mode is RoutingMode.LOCAL
    assert decide(TaskDescriptor(TaskKind.INSIGHT_GENERATION, 1), c).mode is RoutingMode.REMOTE


@pytest.mark.parametrize("tier", [SubscriptionTier.ADVANCED, SubscriptionTier.PROFESSIONAL])
def test_top_tiers_prefer_remote(tier: SubscriptionTier) -> None:
    assert decide(TaskDescriptor(TaskKind.SEARCH, 1), ctx(tier=tier, quota=1)).mode is RoutingMode.REMOTE


@pytest.mark.property
@given(
    kind=st.sampled_from(list(TaskKind)),
    items=st.integers(min_value=0, max_value=100),
    network=st.sampled_from(list(NetworkState)),
    tier=st.sampled_from(list(SubscriptionTier)),
    quota=st.integers(min_value=-5, max_value=50),
    credential=st.booleans(),
    byok=st.booleans(),
    proxy=st.booleans(),
)
@hsettings(max_examples=200)
def test_decide_is_deterministic(
    kind: TaskKind,
    items: int,
    network: NetworkState,
    tier: SubscriptionTier,
    quota: int,
    credential: bool,
    byok: bool,
    proxy: bool,
) -> None:
    task = TaskDescriptor(kind, items)
    c = ctx(network=network, tier=tier, quota=quota, credential=credential, byok=byok, proxy=proxy)
    first = decide(task, c)
    assert all(decide(task, c) == first for _ in range(3))
    if first.mode is RoutingMode.LOCAL:
        assert kind.has_local_path or not proxy


def _router(
    ledger: FakeLedger,
    *,
    tier: SubscriptionTier = SubscriptionTier.PROFESSIONAL,
    flags: FakeFlags | None = None,
    credential: bool = False,
) -> BackendRouter:
    return BackendRouter(
        ledger,
        flags or FakeFlags(FLAG_CLOUD_PROXY),
        FakeNetwork(),
        FakeSubscription(tier),
        FakeCredentials(credential),
        UnifiedSettings.for_testing(),
    )


async def test_top_tier_route_consumes_once() -> None:
    ledger = FakeLedger(remaining=1)
    decision = await _router(ledger).route(TaskDescriptor(TaskKind.SEARCH, 20))
    assert decision.mode is RoutingMode.REMOTE
    assert ledger.consumed == [1]


async def test_local_route_does_not_consume() -> None:
    ledger = FakeLedger(remaining=5)
    decision = await _router(ledger, tier=SubscriptionTier.FREE).route(TaskDescriptor(TaskKind.SEARCH, 1))
    assert decision.mode is RoutingMode.LOCAL
    assert ledger.consumed == []


async def test_byok_route_is_not_charged() -> None:
    ledger = FakeLedger(remaining=0)
    router = _router(ledger, flags=FakeFlags(FLAG_CLOUD_PROXY, FLAG_BYOK), credential=True)
    decision = await router.route(TaskDescriptor(TaskKind.SEARCH, 1))
    assert decision.mode is RoutingMode.REMOTE
    assert decision.uses_user_credential
    assert ledger.consumed == []


async def test_refused_charge_raises_insufficient_credits() -> None:
    ledger = FakeLedger(remaining=3, allow=False)
    with pytest.raises(InsufficientCredits) as info:
        await _router(ledger).route(TaskDescriptor(TaskKind.SEARCH, 1))
    assert info.value.mode is RoutingMode.REMOTE
    assert "mode=remote" in str(info.value)


async def test_slow_ledger_is_a_remote_timeout() -> None:
    ledger = FakeLedger(remaining=3, delay=5.0)
    with pytest.raises(RemoteTimeout):
        await _router(ledger).route(TaskDescriptor(TaskKind.SEARCH, 1))


async def test_build_context_reads_collaborators() -> None:
    router = _router(FakeLedger(remaining=7), flags=FakeFlags(FLAG_BYOK), credential=True)
    c = await router.build_context()
    assert c.remaining_quota == 7
    assert c.byok_enabled
    assert not c.cloud_proxy_enabled
    assert c.has_user_credential
    assert c.subscription_tier is SubscriptionTier.PROFESSIONAL


async def test_router_without_remote_never_charges() -> None:
    ledger = FakeLedger(remaining=5)
    router = BackendRouter(
        ledger,
        FakeFlags(FLAG_CLOUD_PROXY),
        FakeNetwork(),
        FakeSubscription(SubscriptionTier.PROFESSIONAL),
        settings=UnifiedSettings.for_testing(),
        remote_available=False,
    )
    decision = await router.route(TaskDescriptor(TaskKind.SEARCH, 20))
    assert decision.mode is RoutingMode.LOCAL
    assert ledger.consumed == []
