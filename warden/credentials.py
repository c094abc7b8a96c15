"""Per-service vault tokens.

Resolution order for every service name:
  1) ``<NAME>_VAULT_TOKEN`` environment override (``noona-sage`` ->
     ``NOONA_SAGE_VAULT_TOKEN``)
  2) the provisioner cache (stable for the whole run)
  3) a freshly generated ``<prefix>-<hex>`` token, cached immediately

The resulting map is handed to the vault as ``VAULT_TOKEN_MAP`` in the
``name:token,name:token`` form its auth parser reads back.
"""
from __future__ import annotations

import os
import re
import secrets
from threading import Lock
from typing import Any, Callable, Iterable, Mapping, MutableMapping

from .events import log_event

TOKEN_ENTROPY_BYTES = 18
TOKEN_PREFIX_MAX = 24
DEFAULT_PREFIX = "noona"

_NON_ALNUM_RE = re.compile(r"[^a-z0-9]", re.IGNORECASE)


def sanitize_token(token: Any) -> str:
    if not isinstance(token, str):
        return ""
    return token.strip()


def env_key_for(name: str) -> str:
    return f"{name.replace('-', '_').upper()}_VAULT_TOKEN"


def generate_token(name: Any, random_bytes: Callable[[int], bytes] = secrets.token_bytes) -> str:
    safe_name = name if isinstance(name, str) else DEFAULT_PREFIX
    prefix = _NON_ALNUM_RE.sub("", safe_name).lower() or DEFAULT_PREFIX
    return f"{prefix[:TOKEN_PREFIX_MAX]}-{random_bytes(TOKEN_ENTROPY_BYTES).hex()}"


def build_registry(
    names: Iterable[Any],
    env: Mapping[str, str] | None = None,
    cache: MutableMapping[str, str] | None = None,
    generator: Callable[[str], str] | None = None,
) -> dict[str, str]:
    """Resolve a token for every name. Unresolvable names get no entry."""
    env = os.environ if env is None else env
    generator = generator or generate_token
    tokens: dict[str, str] = {}

    for raw_name in names:
        if not isinstance(raw_name, str):
            continue
        name = raw_name.strip()
        if not name:
            continue

        env_token = sanitize_token(env.get(env_key_for(name)))
        if env_token:
            tokens[name] = env_token
            if cache is not None:
                cache[name] = env_token
            continue

        cached = sanitize_token(cache.get(name)) if cache is not None else ""
        if cached:
            tokens[name] = cached
            continue

        generated = sanitize_token(generator(name))
        if generated:
            if cache is not None:
                cache[name] = generated
            tokens[name] = generated

    return tokens


def stringify_token_map(tokens: Mapping[str, Any]) -> str:
    pairs = [
        (service, sanitize_token(token))
        for service, token in tokens.items()
        if service and sanitize_token(token)
    ]
    return ",".join(f"{service}:{token}" for service, token in sorted(pairs))


def parse_token_map(raw: str) -> dict[str, str]:
    """Parse ``VAULT_TOKEN_MAP`` the way the vault does."""
    tokens: dict[str, str] = {}
    for pair in (raw or "").split(","):
        pair = pair.strip()
        if not pair:
            continue
        service, _, token = pair.partition(":")
        service, token = service.strip(), token.split(":", 1)[0].strip()
        if service and token:
            tokens[service] = token
    return tokens


class CredentialProvisioner:
    """Owns the per-run token cache."""

    def __init__(
        self,
        env: Mapping[str, str] | None = None,
        generator: Callable[[str], str] | None = None,
    ):
        self.env = os.environ if env is None else env
        self.generator = generator
        self._cache: dict[str, str] = {}
        self._lock = Lock()
        self.tokens: dict[str, str] = {}

    def build_all(self, names: Iterable[Any]) -> dict[str, str]:
        with self._lock:
            resolved = build_registry(names, env=self.env, cache=self._cache, generator=self.generator)
            self.tokens.update(resolved)
        log_event("INFO", f"Resolved vault tokens for {len(resolved)} services", services=sorted(resolved))
        return resolved

    def serialize(self) -> str:
        with self._lock:
            return stringify_token_map(self.tokens)
