"""Deterministic page environment.

Replay compares content hashes across runs, so pages must not observe wall
clock time, randomness or animation timing. Both scripts are registered as
context init scripts and guard themselves with a window flag, so they apply
once per document no matter how often they are injected.
"""

import json
from dataclasses import dataclass
from typing import TYPE_CHECKING

from ..config import DETERMINISTIC_FIXED_TIME_MS, DETERMINISTIC_SEED

if TYPE_CHECKING:
    from .provider import BrowserProvider


@dataclass(frozen=True)
class DeterministicOptions:
    seed: int = DETERMINISTIC_SEED
    fixed_time_ms: int = DETERMINISTIC_FIXED_TIME_MS
    disable_animations: bool = True


_DETERMINISTIC_TEMPLATE = """
((config) => {
  if (window.__agentDeterministicApplied) {
    return;
  }
  window.__agentDeterministicApplied = true;

  window.__agentRandomState = { seed: config.seed };
  Math.random = () => {
    const state = window.__agentRandomState;
    state.seed = (1664525 * state.seed + 1013904223) >>> 0;
    return state.seed / 4294967296;
  };

  const OriginalDate = Date;
  class FixedDate extends OriginalDate {
    constructor(...args) {
      if (args.length === 0) {
        super(config.fixedTimeMs);
      } else {
        super(...args);
      }
    }

    static now() {
      return config.fixedTimeMs;
    }
  }
  Object.defineProperty(FixedDate, "parse", { value: OriginalDate.parse });
  Object.defineProperty(FixedDate, "UTC", { value: OriginalDate.UTC });
  window.Date = FixedDate;

  if (!config.disableAnimations) {
    return;
  }

  const injectNoMotion = () => {
    if (document.getElementById("__agent_no_motion")) {
      return;
    }
    const style = document.createElement("style");
    style.id = "__agent_no_motion";
    style.textContent =
      "*, *::before, *::after {" +
      "animation-duration: 0s !important;" +
      "animation-delay: 0s !important;" +
      "transition-duration: 0s !important;" +
      "transition-delay: 0s !important;" +
      "scroll-behavior: auto !important;" +
      "}";
    (document.head || document.documentElement).appendChild(style);
  };

  if (document.readyState === "loading") {
    document.addEventListener("DOMContentLoaded", injectNoMotion, { once: true });
  } else {
    injectNoMotion();
  }
})(%s);
"""

LAYOUT_SHIFT_SCRIPT = """
(() => {
  if (window.__agentLayoutShiftInstalled) {
    return;
  }
  window.__agentLayoutShiftInstalled = true;
  window.__agentLayoutShifts = [];

  if (!("PerformanceObserver" in window)) {
    return;
  }

  try {
    const observer = new PerformanceObserver((list) => {
      for (const entry of list.getEntries()) {
        if (entry.hadRecentInput) {
          continue;
        }
        window.__agentLayoutShifts.push({
          value: typeof entry.value === "number" ? entry.value : 0,
          startTime: entry.startTime
        });
      }
    });
    observer.observe({ type: "layout-shift", buffered: true });
  } catch (error) {
    // layout-shift entries are unsupported in this browser
  }
})();
"""


def deterministic_init_script(options: DeterministicOptions = DeterministicOptions()) -> str:
    config = {
        "seed": options.seed,
        "fixedTimeMs": options.fixed_time_ms,
        "disableAnimations": options.disable_animations,
    }
    return _DETERMINISTIC_TEMPLATE % json.dumps(config)


async def apply_deterministic_settings(
    provider: "BrowserProvider",
    options: DeterministicOptions = DeterministicOptions(),
) -> None:
    """Freeze clock and RNG and disable motion for every document in the context."""
    await provider.emulate_reduced_motion()
    await provider.add_init_script(deterministic_init_script(options))


async def install_layout_shift_capture(provider: "BrowserProvider") -> None:
    await provider.add_init_script(LAYOUT_SHIFT_SCRIPT)
