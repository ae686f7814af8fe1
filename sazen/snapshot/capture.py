"""Snapshot capture: walks the live page and builds an immutable Snapshot.

The walk runs inside the page. Element identity is kept in a page-side
``WeakMap`` so the same element keeps its synthetic id across captures
without the registry ever keeping the element alive.
"""

from dataclasses import dataclass
from typing import TYPE_CHECKING

from .models import Node, Snapshot, Viewport

if TYPE_CHECKING:
    from ..browser.provider import BrowserProvider

OVERLAY_ROOT_ATTRIBUTE = "data-agent-browser-overlay"
TEXT_LIMIT = 120
SIGNATURE_LIMIT = 40


@dataclass
class SnapshotOptions:
    interactive_only: bool = False
    visible_only: bool = False
    max_nodes: int = 10_000

    def to_script_args(self) -> dict:
        return {
            "interactiveOnly": self.interactive_only,
            "visibleOnly": self.visible_only,
            "maxNodes": self.max_nodes,
            "overlayAttribute": OVERLAY_ROOT_ATTRIBUTE,
            "textLimit": TEXT_LIMIT,
            "signatureLimit": SIGNATURE_LIMIT,
        }


SNAPSHOT_SCRIPT = r"""
(opts) => {
  if (!window.__agentNodeRuntime) {
    window.__agentNodeRuntime = { nextId: 1, nodeIds: new WeakMap() };
  }
  const runtime = window.__agentNodeRuntime;

  const interactiveTags = new Set(["A", "BUTTON", "INPUT", "SELECT", "TEXTAREA", "SUMMARY", "OPTION", "LABEL"]);
  const interactiveRoles = new Set([
    "button", "link", "textbox", "checkbox", "radio", "switch",
    "combobox", "listbox", "menuitem", "option", "tab"
  ]);

  const clean = (input) => (input == null ? "" : String(input)).replace(/\s+/g, " ").trim();
  const isFormControl = (el) =>
    el instanceof HTMLInputElement || el instanceof HTMLTextAreaElement || el instanceof HTMLSelectElement;

  const roleOf = (el) => {
    const explicit = clean(el.getAttribute("role"));
    if (explicit) return explicit;
    const tag = el.tagName.toLowerCase();
    if (tag === "a" && el.href) return "link";
    if (tag === "button") return "button";
    if (tag === "input") {
      const type = el.type;
      if (type === "checkbox") return "checkbox";
      if (type === "radio") return "radio";
      if (type === "submit" || type === "button") return "button";
      return "textbox";
    }
    if (tag === "select") return "combobox";
    if (tag === "textarea") return "textbox";
    return "generic";
  };

  const nameOf = (el) => {
    const ariaLabel = clean(el.getAttribute("aria-label"));
    if (ariaLabel) return ariaLabel;
    const labelledBy = clean(el.getAttribute("aria-labelledby"));
    if (labelledBy) {
      const label = document.getElementById(labelledBy);
      const text = label ? clean(label.textContent) : "";
      if (text) return text;
    }
    if (isFormControl(el)) {
      if (el.labels && el.labels.length > 0) {
        const text = clean(el.labels[0].textContent);
        if (text) return text;
      }
      const placeholder = clean(el.placeholder);
      if (placeholder) return placeholder;
    }
    const title = clean(el.getAttribute("title"));
    if (title) return title;
    return clean(el.textContent).slice(0, opts.textLimit);
  };

  const textOf = (el) => {
    if (el instanceof HTMLInputElement || el instanceof HTMLTextAreaElement) {
      return clean(el.value).slice(0, opts.textLimit);
    }
    return clean(el.textContent).slice(0, opts.textLimit);
  };

  const valueOf = (el) => (isFormControl(el) ? clean(el.value).slice(0, opts.textLimit) : "");

  const segment = (node) => {
    const tag = node.tagName.toLowerCase();
    const id = clean(node.getAttribute("id"));
    if (id) return `${tag}#${CSS.escape(id)}`;
    const parent = node.parentElement;
    if (!parent) return tag;
    const siblings = Array.from(parent.children).filter((child) => child.tagName === node.tagName);
    if (siblings.length === 1) return tag;
    return `${tag}:nth-of-type(${siblings.indexOf(node) + 1})`;
  };

  const pathOf = (el) => {
    const parts = [];
    let current = el;
    while (current && current !== document.body) {
      parts.unshift(segment(current));
      if (clean(current.getAttribute("id"))) break;
      current = current.parentElement;
    }
    return parts.length === 0 ? "body" : `body > ${parts.join(" > ")}`;
  };

  const visibleOf = (el) => {
    const style = window.getComputedStyle(el);
    if (style.display === "none" || style.visibility === "hidden" || Number(style.opacity) === 0) {
      return false;
    }
    const rect = el.getBoundingClientRect();
    return rect.width > 0 && rect.height > 0;
  };

  const enabledOf = (el) => {
    if (el instanceof HTMLButtonElement || isFormControl(el)) return !el.disabled;
    if (el.hasAttribute("aria-disabled")) return clean(el.getAttribute("aria-disabled")) !== "true";
    return true;
  };

  const stableRefOf = (el, role, name, path) => {
    const testId = clean(el.getAttribute("data-testid"));
    if (testId) return `testid:${testId}`;
    const id = clean(el.getAttribute("id"));
    if (id) return `id:${id}`;
    const ariaLabel = clean(el.getAttribute("aria-label"));
    if (ariaLabel) return `aria:${ariaLabel}`;
    const nameAttr = clean(el.getAttribute("name"));
    if (nameAttr) return `name:${nameAttr}`;
    const href = el instanceof HTMLAnchorElement ? clean(el.href) : "";
    if (href) return `href:${href}`;
    const text = textOf(el);
    if (role !== "generic" || name || text) {
      return `semantic:${role}|${name.slice(0, opts.signatureLimit)}|${text.slice(0, opts.signatureLimit)}`;
    }
    return `path:${path}`;
  };

  const attributesOf = (el) => {
    const attrs = {};
    for (const key of ["id", "name", "type", "placeholder", "href", "aria-label", "data-testid"]) {
      const value = clean(el.getAttribute(key));
      if (value) attrs[key] = value;
    }
    if (isFormControl(el)) {
      const value = clean(el.value);
      if (value) attrs.value = value.slice(0, opts.textLimit);
    }
    return attrs;
  };

  const overlaySelector = `[${opts.overlayAttribute}='root']`;
  const nodes = [];
  for (const el of Array.from(document.querySelectorAll("*"))) {
    if (el.closest(overlaySelector)) continue;

    const role = roleOf(el);
    const visible = visibleOf(el);
    const interactive =
      interactiveTags.has(el.tagName) ||
      interactiveRoles.has(role) ||
      (el instanceof HTMLElement && el.tabIndex >= 0) ||
      el.hasAttribute("onclick");

    let nodeId = runtime.nodeIds.get(el);
    if (!nodeId) {
      nodeId = `node_${runtime.nextId++}`;
      runtime.nodeIds.set(el, nodeId);
    }

    if (opts.visibleOnly && !visible) continue;
    if (opts.interactiveOnly && !interactive) continue;

    const name = nameOf(el);
    const path = pathOf(el);
    const rect = el.getBoundingClientRect();
    nodes.push({
      id: nodeId,
      stableRef: stableRefOf(el, role, name, path),
      tag: el.tagName.toLowerCase(),
      role,
      name,
      text: textOf(el),
      value: valueOf(el),
      visible,
      enabled: enabledOf(el),
      editable: isFormControl(el),
      interactive,
      boundingBox: { x: rect.x, y: rect.y, width: rect.width, height: rect.height },
      path,
      attributes: attributesOf(el)
    });

    if (nodes.length >= opts.maxNodes) break;
  }

  return {
    url: location.href,
    title: document.title,
    viewport: { width: window.innerWidth, height: window.innerHeight },
    nodes
  };
}
"""


def snapshot_from_raw(raw: dict) -> Snapshot:
    """Build a Snapshot from the in-page walk's raw result."""
    viewport = raw.get("viewport") or {}
    return Snapshot.build(
        url=str(raw.get("url", "")),
        title=str(raw.get("title", "")),
        viewport=Viewport(
            width=int(viewport.get("width", 0)),
            height=int(viewport.get("height", 0)),
        ),
        nodes=[Node.from_dict(node) for node in raw.get("nodes") or []],
    )


async def take_snapshot(
    provider: "BrowserProvider",
    options: SnapshotOptions | None = None,
) -> Snapshot:
    """Capture the live page through the provider's read-only evaluate hook."""
    effective = options or SnapshotOptions()
    raw = await provider.evaluate(SNAPSHOT_SCRIPT, effective.to_script_args())
    return snapshot_from_raw(raw)
