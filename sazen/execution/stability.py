"""Post-action stability wait budgets."""

from typing import TYPE_CHECKING

import structlog

from ..config import StabilityProfile

if TYPE_CHECKING:
    from ..browser.provider import BrowserProvider

logger = structlog.get_logger()

# Action types that usually trigger page loads get a larger idle budget
LOAD_HEAVY_ACTIONS = frozenset({"navigate", "waitFor"})

NETWORK_IDLE_FLOOR_MS = 300
NETWORK_IDLE_CAPS_MS = {
    StabilityProfile.FAST: 1_200,
    StabilityProfile.BALANCED: 2_500,
    StabilityProfile.CHATTY: 4_000,
}


def compute_quiet_window_ms(profile: StabilityProfile | str, base_quiet_window_ms: int) -> int:
    """Fixed wait applied after every action before checking network quiescence."""
    profile = StabilityProfile(profile)
    if profile == StabilityProfile.FAST:
        return max(40, int(base_quiet_window_ms * 0.6))
    if profile == StabilityProfile.CHATTY:
        return max(base_quiet_window_ms, 220)
    return max(base_quiet_window_ms, 120)


def compute_network_idle_budget_ms(
    profile: StabilityProfile | str,
    action_timeout_ms: int,
    quiet_window_ms: int,
    action_type: str,
) -> int:
    """Upper bound on the network-idle wait: min(cap, max(floor, base * multiplier))."""
    profile = StabilityProfile(profile)
    divisor = 2 if action_type in LOAD_HEAVY_ACTIONS else 4
    base = action_timeout_ms // divisor
    floor = max(quiet_window_ms, NETWORK_IDLE_FLOOR_MS)
    cap = NETWORK_IDLE_CAPS_MS[profile]

    if profile == StabilityProfile.FAST:
        return min(cap, max(floor, int(base * 0.6)))
    if profile == StabilityProfile.CHATTY:
        return min(cap, max(floor, int(base * 1.4)))
    return min(cap, max(floor, base))


async def wait_for_stability(
    provider: "BrowserProvider",
    action_type: str,
    profile: StabilityProfile | str,
    base_quiet_window_ms: int,
    action_timeout_ms: int,
) -> None:
    """Quiet window, then a bounded network-idle wait whose timeout is tolerated."""
    quiet_ms = compute_quiet_window_ms(profile, base_quiet_window_ms)
    budget_ms = compute_network_idle_budget_ms(profile, action_timeout_ms, quiet_ms, action_type)

    await provider.wait_for_timeout(quiet_ms)
    try:
        await provider.wait_for_load_state("networkidle", budget_ms)
    except Exception as e:
        logger.debug(
            "Network did not go idle within budget",
            action_type=action_type,
            budget_ms=budget_ms,
            error=str(e).split("\n", 1)[0],
        )
