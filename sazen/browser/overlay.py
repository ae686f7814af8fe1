"""In-page pause/resume control panel.

The panel talks to the session through an exposed binding and is marked
with the overlay root attribute, so snapshots never include it.
"""

from typing import TYPE_CHECKING, Any, Callable

import structlog

from ..snapshot.capture import OVERLAY_ROOT_ATTRIBUTE

if TYPE_CHECKING:
    from .provider import BrowserProvider

logger = structlog.get_logger()

OVERLAY_BINDING = "__agentBrowserControl"
OVERLAY_SOURCE = "overlay"

OVERLAY_SCRIPT = """
(() => {
  const rootAttr = "%(attr)s";
  const binding = "%(binding)s";

  const install = () => {
    if (document.querySelector(`[${rootAttr}='root']`)) {
      return;
    }

    const root = document.createElement("div");
    root.setAttribute(rootAttr, "root");
    Object.assign(root.style, {
      position: "fixed", top: "12px", right: "12px",
      zIndex: "2147483647", pointerEvents: "none"
    });

    const panel = document.createElement("div");
    Object.assign(panel.style, {
      pointerEvents: "auto", display: "flex", gap: "8px", alignItems: "center",
      padding: "8px 10px", borderRadius: "10px",
      background: "rgba(15, 23, 42, 0.9)", color: "#f8fafc",
      fontFamily: "ui-monospace, Menlo, Consolas, monospace", fontSize: "12px"
    });

    const status = document.createElement("span");
    status.textContent = "running";
    status.style.minWidth = "88px";

    const makeButton = (label, background, color) => {
      const button = document.createElement("button");
      button.type = "button";
      button.textContent = label;
      Object.assign(button.style, {
        border: "0", borderRadius: "6px", padding: "4px 8px", cursor: "pointer",
        fontFamily: "inherit", fontSize: "12px", background, color
      });
      return button;
    };
    const pauseButton = makeButton("Pause", "#e2e8f0", "#0f172a");
    const resumeButton = makeButton("Resume", "#22c55e", "#052e16");

    const render = (paused, pausedMs) => {
      status.textContent = paused ? `paused (${Math.floor(Math.max(0, pausedMs) / 1000)}s)` : "running";
      pauseButton.disabled = paused;
      resumeButton.disabled = !paused;
      pauseButton.style.opacity = paused ? "0.5" : "1";
      resumeButton.style.opacity = paused ? "1" : "0.5";
    };

    const send = async (type) => {
      if (!window[binding]) {
        return;
      }
      try {
        const state = await window[binding]({ type });
        render(Boolean(state && state.paused), Number((state && state.pausedMs) || 0));
      } catch (error) {
        // page may be navigating away
      }
    };

    pauseButton.addEventListener("click", () => { void send("pause"); });
    resumeButton.addEventListener("click", () => { void send("resume"); });

    panel.append(status, pauseButton, resumeButton);
    root.append(panel);
    document.documentElement.append(root);

    void send("state");
    window.setInterval(() => { void send("state"); }, 1000);
  };

  if (document.readyState === "loading") {
    document.addEventListener("DOMContentLoaded", install, { once: true });
  } else {
    install();
  }
})();
""" % {"attr": OVERLAY_ROOT_ATTRIBUTE, "binding": OVERLAY_BINDING}


class OverlayCommandError(ValueError):
    """The overlay sent a command the session does not understand."""
    pass


def make_overlay_handler(
    pause: Callable[[str], dict],
    resume: Callable[[str], dict],
    state: Callable[[], dict],
) -> Callable[[Any, Any], dict]:
    """Map overlay button commands onto the session's pause controls."""

    def handle(_source: Any, request: Any) -> dict:
        command = "state"
        if isinstance(request, dict) and "type" in request:
            command = str(request["type"])

        match command:
            case "pause":
                return pause(OVERLAY_SOURCE)
            case "resume":
                return resume(OVERLAY_SOURCE)
            case "state":
                return state()

        raise OverlayCommandError(f"Unsupported overlay control command '{command}'")

    return handle


async def install_browser_overlay(
    provider: "BrowserProvider",
    pause: Callable[[str], dict],
    resume: Callable[[str], dict],
    state: Callable[[], dict],
) -> None:
    await provider.expose_binding(OVERLAY_BINDING, make_overlay_handler(pause, resume, state))
    await provider.add_init_script(OVERLAY_SCRIPT)
    logger.debug("Browser overlay installed", binding=OVERLAY_BINDING)
