"""Browser runtime, generated from a mako template.

The script expects the socket.io client (global ``io``) on the page and uses
Idiomorph for morphing when it is present. Live nodes are found by their
``data-live-*`` attributes on load and through a MutationObserver afterwards.

Markup conventions handled by the runtime:

- ``data-live-action="name"`` on a button or form runs an action of the
  enclosing live node; ``data-live-param-<name>`` attributes and form fields
  become its params, ``data-live-redirect`` navigates after success.
- ``data-live-set-state='{"key": value}'`` updates the enclosing node's
  transient state; with ``data-live-exclusive`` the keys are cleared on
  sibling live nodes.
"""

from __future__ import annotations

import json
from functools import lru_cache

from mako.template import Template

from livecomp.env import env

RUNTIME_TEMPLATE = """\
/* livecomp browser runtime */
(function (global) {
  "use strict";

  const CONFIG = ${config | n};
  const log = (...args) => { if (CONFIG.debug) console.log("[livecomp]", ...args); };
  const renderFns = new Map();

  function parseJSON(text, fallback) {
    if (!text) return fallback;
    try { return JSON.parse(text); } catch (e) { return fallback; }
  }

  function compileBody(body) {
    if (renderFns.has(body)) return renderFns.get(body);
    const fn = new Function("data", body);
    renderFns.set(body, fn);
    return fn;
  }

  async function decode(message) {
    if (message && typeof message.z === "string" && Object.keys(message).length === 1) {
      const bytes = Uint8Array.from(atob(message.z), (c) => c.charCodeAt(0));
      const stream = new Blob([bytes]).stream().pipeThrough(new DecompressionStream("gzip"));
      return await new Response(stream).json();
    }
    return message;
  }

  function merge(serverData, clientState) {
    return Object.assign({}, serverData || {}, clientState || {});
  }

  function morph(element, html) {
    const doc = new DOMParser().parseFromString("<div>" + html + "</div>", "text/html");
    const content = doc.body.firstChild;
    if (typeof global.Idiomorph !== "undefined") {
      global.Idiomorph.morph(element, content, { morphStyle: "innerHTML", ignoreActiveValue: true });
    } else {
      element.innerHTML = content.innerHTML;
    }
  }

  class Debouncer {
    constructor(delayMs, fn) {
      this.delayMs = delayMs;
      this.fn = fn;
      this.timer = null;
    }
    signal() {
      if (this.timer !== null) clearTimeout(this.timer);
      this.timer = setTimeout(() => { this.timer = null; this.fn(); }, this.delayMs);
    }
    cancel() {
      if (this.timer !== null) clearTimeout(this.timer);
      this.timer = null;
    }
  }

  class SubscriptionHub {
    constructor(socket) {
      this.socket = socket;
      this.streams = new Map();
      this.queues = new Map();
      socket.on("message", (payload) => this.receive(payload));
      socket.on("rejected", (payload) => log("stream rejected", payload && payload.stream));
      socket.on("connect", () => {
        for (const identity of this.streams.keys()) socket.emit("subscribe", { stream: identity });
      });
    }
    join(identity, node) {
      let handlers = this.streams.get(identity);
      if (!handlers) {
        handlers = new Set();
        this.streams.set(identity, handlers);
        this.socket.emit("subscribe", { stream: identity });
      }
      handlers.add(node);
    }
    leave(identity, node) {
      const handlers = this.streams.get(identity);
      if (!handlers) return;
      handlers.delete(node);
      if (handlers.size === 0) {
        this.streams.delete(identity);
        this.socket.emit("unsubscribe", { stream: identity });
      }
    }
    receive(payload) {
      if (!payload || !this.streams.has(payload.stream)) return;
      // Decodes overlap; messages apply in arrival order per stream.
      const identity = payload.stream;
      const decoded = decode(payload.message);
      const previous = this.queues.get(identity) || Promise.resolve();
      const next = previous
        .then(() => decoded)
        .then((message) => this.dispatch(identity, message))
        .catch((err) => console.error("[livecomp] message failed:", err));
      this.queues.set(identity, next);
      next.then(() => {
        if (this.queues.get(identity) === next) this.queues.delete(identity);
      });
      return next;
    }
    dispatch(identity, message) {
      const handlers = this.streams.get(identity);
      if (!handlers) return;
      let matched = false;
      for (const node of Array.from(handlers)) {
        if (message.dom_id === node.element.id) {
          matched = true;
          node.handle(message);
        }
      }
      if (!matched && message.action === "create" && message.target && message.html) {
        const target = document.getElementById(message.target);
        if (target) target.insertAdjacentHTML("afterbegin", message.html);
      }
    }
  }

  class LiveNode {
    constructor(element, runtime) {
      this.element = element;
      this.runtime = runtime;
      this.status = "connecting";
      this.renderFn = null;
      this.debouncer = null;
    }

    mount() {
      const ds = this.element.dataset;
      this.clientState = parseJSON(ds.liveState, {});
      this.serverData = parseJSON(ds.liveData, null);
      this.strategy = ds.liveStrategy || "push";
      this.stream = ds.liveStream || null;
      this.renderFn = this.resolveRenderFn();
      if (this.strategy === "notify") {
        this.debouncer = new Debouncer(CONFIG.debounceMs, () => this.pull());
      }
      if (this.stream) {
        this.runtime.hub.join(this.stream, this);
        this.status = "subscribed";
      }
      this.status = "idle";
    }

    unmount() {
      if (this.status === "destroyed") return;
      if (this.debouncer) this.debouncer.cancel();
      if (this.stream) this.runtime.hub.leave(this.stream, this);
      this.status = "destroyed";
    }

    resolveRenderFn() {
      const ds = this.element.dataset;
      let body = ds.liveTemplate || null;
      if (!body && ds.liveTemplateId) {
        const el = document.getElementById(ds.liveTemplateId);
        if (el) body = el.textContent;
        else console.error("[livecomp] template element not found:", ds.liveTemplateId);
      }
      if (!body) return null;
      try {
        return compileBody(body);
      } catch (e) {
        console.error("[livecomp] cannot compile render function for", this.element.id, e);
        return null;
      }
    }

    handle(message) {
      if (this.status === "destroyed") return;
      const action = message.action;
      if (action === "update" || action === "create") {
        this.serverData = Object.assign({}, this.serverData || {}, message.data || {});
        this.render();
      } else if (action === "render") {
        if (this.debouncer) this.debouncer.signal();
        else this.pull();
      } else if (action === "destroy" || action === "remove") {
        this.destroy();
      }
    }

    render() {
      if (!this.renderFn || this.serverData === null) return;
      this.status = "updating";
      try {
        morph(this.element, this.renderFn(merge(this.serverData, this.clientState)));
      } catch (e) {
        console.error("[livecomp] render failed for", this.element.id, e);
      } finally {
        if (this.status === "updating") this.status = "idle";
      }
    }

    async pull() {
      const ds = this.element.dataset;
      if (!ds.livePullUrl || !ds.liveActionToken) return;
      const response = await fetch(ds.livePullUrl, {
        method: "POST",
        headers: { "Content-Type": "application/json" },
        body: JSON.stringify({ token: ds.liveActionToken }),
      });
      if (!response.ok) return;
      const payload = await response.json();
      this.serverData = payload.data;
      this.render();
    }

    setState(updates, exclusive) {
      if (exclusive && this.element.parentElement) {
        for (const el of this.element.parentElement.children) {
          const other = this.runtime.nodes.get(el);
          if (!other || other === this) continue;
          let changed = false;
          for (const key of Object.keys(updates)) {
            if (other.clientState[key]) {
              other.clientState[key] = false;
              changed = true;
            }
          }
          if (changed) other.render();
        }
      }
      Object.assign(this.clientState, updates);
      this.render();
    }

    async performAction(name, params, redirect) {
      const ds = this.element.dataset;
      if (!ds.liveActionUrl || !ds.liveActionToken) return;
      const response = await fetch(ds.liveActionUrl, {
        method: "POST",
        headers: { "Content-Type": "application/json" },
        body: JSON.stringify({ token: ds.liveActionToken, action_name: name, params: params }),
      });
      if (!response.ok) return;
      if (redirect) {
        global.location.assign(redirect);
        return;
      }
      const type = response.headers.get("content-type") || "";
      if (type.includes("text/html")) {
        morph(this.element, await response.text());
      } else if (type.includes("application/json")) {
        const payload = await response.json();
        if (payload.redirect) global.location.assign(payload.redirect);
        else if (payload.data) {
          this.serverData = Object.assign({}, this.serverData || {}, payload.data);
          this.render();
        }
      }
    }

    destroy() {
      this.unmount();
      this.element.remove();
    }
  }

  class Runtime {
    constructor() {
      this.nodes = new Map();
      this.hub = new SubscriptionHub(global.io(CONFIG.socketUrl || undefined, { path: CONFIG.socketPath }));
    }

    scan(root) {
      const selector = "[data-live-component], [data-live-stream]";
      if (root.matches && root.matches(selector)) this.mount(root);
      if (root.querySelectorAll) root.querySelectorAll(selector).forEach((el) => this.mount(el));
    }

    mount(element) {
      if (this.nodes.has(element)) return;
      const node = new LiveNode(element, this);
      this.nodes.set(element, node);
      node.mount();
    }

    release(root) {
      for (const [element, node] of Array.from(this.nodes)) {
        if (element === root || (root.contains && root.contains(element))) {
          node.unmount();
          this.nodes.delete(element);
        }
      }
    }

    nodeFor(element) {
      let el = element;
      while (el && !this.nodes.has(el)) el = el.parentElement;
      return el ? this.nodes.get(el) : null;
    }

    params(el) {
      const params = {};
      for (const [key, value] of Object.entries(el.dataset)) {
        if (key.startsWith("liveParam")) {
          const name = key.slice("liveParam".length).replace(/^[A-Z]/, (c) => c.toLowerCase())
            .replace(/[A-Z]/g, (c) => "_" + c.toLowerCase());
          params[name] = value;
        }
      }
      return params;
    }

    onEvent(event) {
      const el = event.target.closest ? event.target.closest("[data-live-action], [data-live-set-state]") : null;
      if (!el) return;
      if (event.type === "click" && el.tagName === "FORM") return;
      if (event.type === "submit" && el.tagName !== "FORM") return;
      const node = this.nodeFor(el);
      if (!node) return;
      event.preventDefault();
      if (el.dataset.liveSetState) {
        node.setState(parseJSON(el.dataset.liveSetState, {}), "liveExclusive" in el.dataset);
      }
      if (el.dataset.liveAction) {
        const params = this.params(el);
        if (el.tagName === "FORM") {
          for (const [key, value] of new FormData(el).entries()) params[key] = value;
        }
        node.performAction(el.dataset.liveAction, params, el.dataset.liveRedirect);
      }
    }

    start() {
      this.scan(document.body);
      document.addEventListener("click", (e) => this.onEvent(e));
      document.addEventListener("submit", (e) => this.onEvent(e));
      new MutationObserver((records) => {
        for (const record of records) {
          record.removedNodes.forEach((n) => { if (n.nodeType === 1) this.release(n); });
          record.addedNodes.forEach((n) => { if (n.nodeType === 1) this.scan(n); });
        }
      }).observe(document.body, { childList: true, subtree: true });
    }
  }

  const runtime = new Runtime();
  global.LiveComp = { runtime: runtime, merge: merge, Debouncer: Debouncer };
  if (document.readyState === "loading") {
    document.addEventListener("DOMContentLoaded", () => runtime.start());
  } else {
    runtime.start();
  }
})(window);
"""


@lru_cache(maxsize=1)
def _template() -> Template:
	return Template(RUNTIME_TEMPLATE, strict_undefined=True)


def runtime_config(
	*,
	api_prefix: str | None = None,
	debounce_ms: int | None = None,
	socket_path: str = "/socket.io",
	socket_url: str | None = None,
	debug: bool = False,
) -> dict[str, object]:
	return {
		"apiPrefix": api_prefix if api_prefix is not None else env.api_prefix,
		"debounceMs": debounce_ms if debounce_ms is not None else env.debounce_ms,
		"socketPath": socket_path,
		"socketUrl": socket_url,
		"debug": debug,
	}


def runtime_js(**options: object) -> str:
	"""Render the browser runtime with its configuration inlined."""
	config = runtime_config(**options)  # pyright: ignore[reportArgumentType]
	# "</" would close an inline <script>
	config_json = json.dumps(config).replace("</", "<\\/")
	return _template().render(config=config_json)


__all__ = ["RUNTIME_TEMPLATE", "runtime_config", "runtime_js"]
