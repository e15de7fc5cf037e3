"""Generated edge entrypoint (ES module worker) serving a packaged app."""

from __future__ import annotations

import json
import re
from collections.abc import Mapping, Sequence

API_PREFIX = "/api/"
ROOT_DOCUMENT = "index.html"

_MARKER = re.compile(r"__[A-Z_]+__")

PUBLIC_ENV_KEYS = ("APP_ID", "ENVIRONMENT", "SUPABASE_URL", "SUPABASE_ANON_KEY")
PUBLIC_ENV_PREFIXES = ("PUBLIC_", "VITE_")

_TEMPLATE = """// Generated by edgeship. Do not edit.
const FILES = __FILES__;
const BASE64_FILES = new Set(__BASE64_FILES__);
const ASSET_URLS = __ASSET_URLS__;
const CONTENT_TYPES = __CONTENT_TYPES__;
const CACHE_CONTROL = __CACHE_CONTROL__;
const PUBLIC_ENV_KEYS = __PUBLIC_ENV_KEYS__;
const PUBLIC_ENV_PREFIXES = __PUBLIC_ENV_PREFIXES__;
const API_PREFIX = __API_PREFIX__;
const ROOT_DOCUMENT = __ROOT_DOCUMENT__;
const SAFE_METHODS = new Set(["GET", "HEAD", "OPTIONS"]);

function decodeBase64(value) {
  const binary = atob(value);
  const bytes = new Uint8Array(binary.length);
  for (let i = 0; i < binary.length; i++) bytes[i] = binary.charCodeAt(i);
  return bytes;
}

function publicEnv(env) {
  const result = {};
  for (const [key, value] of Object.entries(env || {})) {
    if (typeof value !== "string") continue;
    if (PUBLIC_ENV_KEYS.includes(key) || PUBLIC_ENV_PREFIXES.some((p) => key.startsWith(p))) {
      result[key] = value;
    }
  }
  return result;
}

function injectEnv(html, env) {
  const script = `<script>window.ENV = ${JSON.stringify(publicEnv(env))};</script>`;
  if (!html.includes("</head>")) return script + html;
  return html.replace("</head>", `${script}</head>`);
}

function jsonResponse(status, payload) {
  return new Response(JSON.stringify(payload), {
    status,
    headers: { "Content-Type": "application/json; charset=utf-8" },
  });
}

async function proxyBackend(request, env, url) {
  if (!env.SUPABASE_URL) return jsonResponse(503, { error: "backend not configured" });
  const rest = url.pathname.slice(API_PREFIX.length);
  let upstream;
  let key;
  if (rest.startsWith("auth/")) {
    upstream = `${env.SUPABASE_URL}/auth/v1/${rest.slice("auth/".length)}`;
    key = env.SUPABASE_ANON_KEY;
  } else if (rest.startsWith("db/")) {
    upstream = `${env.SUPABASE_URL}/rest/v1/${rest.slice("db/".length)}`;
    key = SAFE_METHODS.has(request.method)
      ? env.SUPABASE_ANON_KEY
      : env.SUPABASE_SERVICE_KEY || env.SUPABASE_ANON_KEY;
  } else {
    return jsonResponse(404, { error: "unknown api route" });
  }
  const headers = new Headers(request.headers);
  headers.set("apikey", key || "");
  if (!headers.has("Authorization")) headers.set("Authorization", `Bearer ${key || ""}`);
  headers.delete("Host");
  const init = { method: request.method, headers, redirect: "manual" };
  if (!["GET", "HEAD"].includes(request.method)) init.body = request.body;
  return fetch(upstream + url.search, init);
}

function serveInline(path, env) {
  const type = CONTENT_TYPES[path] || "application/octet-stream";
  let body = FILES[path];
  if (BASE64_FILES.has(path)) body = decodeBase64(body);
  else if (path === ROOT_DOCUMENT) body = injectEnv(body, env);
  return new Response(body, {
    headers: {
      "Content-Type": type,
      "Cache-Control": CACHE_CONTROL[path] || "public, max-age=3600",
    },
  });
}

export default {
  async fetch(request, env) {
    const url = new URL(request.url);
    if (url.pathname.startsWith(API_PREFIX)) {
      try {
        return await proxyBackend(request, env, url);
      } catch (err) {
        return jsonResponse(502, { error: String(err && err.message ? err.message : err) });
      }
    }
    let path = decodeURIComponent(url.pathname).replace(/^\\/+/, "");
    if (path === "" || path.endsWith("/")) path += ROOT_DOCUMENT;
    if (Object.prototype.hasOwnProperty.call(FILES, path)) return serveInline(path, env);
    if (Object.prototype.hasOwnProperty.call(ASSET_URLS, path)) {
      return Response.redirect(ASSET_URLS[path], 302);
    }
    if (Object.prototype.hasOwnProperty.call(FILES, ROOT_DOCUMENT)) {
      return serveInline(ROOT_DOCUMENT, env);
    }
    return new Response("Not Found", { status: 404 });
  },
};
"""


def _js(value: object) -> str:
    # JSON is valid JS; escape "</" and U+2028/9 so the literal survives any embedding.
    text = json.dumps(value, sort_keys=True, ensure_ascii=False, separators=(",", ":"))
    return (
        text.replace("</", "<\\/").replace("\u2028", "\\u2028").replace("\u2029", "\\u2029")
    )


def render_entrypoint(
    *,
    inline_files: Mapping[str, str],
    inline_base64: Sequence[str] = (),
    asset_urls: Mapping[str, str] | None = None,
    content_types: Mapping[str, str] | None = None,
    cache_control: Mapping[str, str] | None = None,
    public_env_keys: Sequence[str] = (),
) -> str:
    """Render the worker source. Output depends only on the inputs' contents."""
    replacements = {
        "__FILES__": _js(dict(inline_files)),
        "__BASE64_FILES__": _js(sorted(inline_base64)),
        "__ASSET_URLS__": _js(dict(asset_urls or {})),
        "__CONTENT_TYPES__": _js(dict(content_types or {})),
        "__CACHE_CONTROL__": _js(dict(cache_control or {})),
        "__PUBLIC_ENV_KEYS__": _js(sorted({*PUBLIC_ENV_KEYS, *public_env_keys})),
        "__PUBLIC_ENV_PREFIXES__": _js(list(PUBLIC_ENV_PREFIXES)),
        "__API_PREFIX__": _js(API_PREFIX),
        "__ROOT_DOCUMENT__": _js(ROOT_DOCUMENT),
    }
    return _MARKER.sub(lambda match: replacements.get(match.group(0), match.group(0)), _TEMPLATE)


def validate_entrypoint(source: str, max_bytes: int) -> list[str]:
    """Problems that would make the hosting provider reject the script."""
    problems: list[str] = []
    if not source.strip():
        problems.append("worker script is empty")
        return problems
    size = len(source.encode("utf-8"))
    if size > max_bytes:
        problems.append(f"worker script is {size} bytes, limit is {max_bytes}")
    if "export default" not in source:
        problems.append("worker script has no ES module default export")
    return problems
