"""Live-reload client script, HTML injection and server-sent event framing."""

from __future__ import annotations

import json
import re

from ..models import BuildState

EVENTS_PATH = "/__docserve__/events"
SCRIPT_PATH = "/__docserve__/livereload.js"
STATUS_PATH = "/__docserve__/status"

_BODY_CLOSE = re.compile(r"</body\s*>", re.IGNORECASE)

CLIENT_SCRIPT = """\
(function () {
  "use strict";
  var current = document.currentScript;
  var servedAt = parseInt((current && current.getAttribute("data-generation")) || "0", 10);
  var bannerId = "docserve-banner";

  function banner() {
    var el = document.getElementById(bannerId);
    if (!el) {
      el = document.createElement("div");
      el.id = bannerId;
      el.style.cssText = "position:fixed;left:0;right:0;bottom:0;z-index:2147483647;" +
        "max-height:40vh;overflow:auto;margin:0;padding:8px 12px;font:12px/1.4 monospace;" +
        "white-space:pre-wrap;color:#fff;box-shadow:0 -2px 6px rgba(0,0,0,.3)";
      document.body.appendChild(el);
    }
    return el;
  }

  function hide() {
    var el = document.getElementById(bannerId);
    if (el) { el.parentNode.removeChild(el); }
  }

  function show(state) {
    var el = banner();
    if (state.status === "failed") {
      el.style.background = "#b00020";
      el.textContent = "Documentation build " + state.generation + " failed: " +
        state.summary + (state.output ? "\\n\\n" + state.output : "");
    } else {
      el.style.background = "#333";
      el.textContent = "Rebuilding documentation\\u2026";
    }
  }

  var source = new EventSource("%(events_path)s");
  source.addEventListener("build", function (message) {
    var state = JSON.parse(message.data);
    if (state.status === "succeeded") {
      if (state.generation > servedAt) {
        window.location.reload();
        return;
      }
      hide();
    } else if (state.status === "failed" || state.status === "building") {
      show(state);
    } else {
      hide();
    }
  });
})();
""" % {"events_path": EVENTS_PATH}


def script_tag(generation: int) -> str:
    return f'<script src="{SCRIPT_PATH}" data-generation="{int(generation)}"></script>'


def inject_script(html: str, generation: int) -> str:
    """Insert the live-reload script before ``</body>`` (or append it)."""
    tag = script_tag(generation)
    matches = list(_BODY_CLOSE.finditer(html))
    if not matches:
        return html + tag
    position = matches[-1].start()
    return html[:position] + tag + html[position:]


def format_event(state: BuildState) -> str:
    """Frame ``state`` as one server-sent event."""
    payload = json.dumps(state.to_dict(), separators=(",", ":"))
    lines = ["event: build", f"id: {state.generation}"]
    lines.extend(f"data: {chunk}" for chunk in payload.splitlines() or [""])
    return "\n".join(lines) + "\n\n"


KEEPALIVE = ": keepalive\n\n"

__all__ = [
    "CLIENT_SCRIPT",
    "EVENTS_PATH",
    "KEEPALIVE",
    "SCRIPT_PATH",
    "STATUS_PATH",
    "format_event",
    "inject_script",
    "script_tag",
]
