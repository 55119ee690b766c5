from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from functools import lru_cache
from typing import Dict, FrozenSet, Iterable, Optional, Tuple

from forwardauth.auth.config import split_csv
from forwardauth.auth.domains import strip_port
from forwardauth.auth.models import Identity

logger = logging.getLogger(__name__)

ACTION_AUTH = "auth"
ACTION_ALLOW = "allow"

_RULE_FIELDS = ("_ALLOWED_ROLES", "_PATH_PREFIX", "_WHITELIST", "_DOMAINS", "_ACTION", "_HOST")


@dataclass(frozen=True)
class AuthorizationRule:
    whitelist: FrozenSet[str] = field(default_factory=frozenset)  # exact emails
    domains: FrozenSet[str] = field(default_factory=frozenset)  # email domains
    allowed_roles: FrozenSet[str] = field(default_factory=frozenset)

    @property
    def unrestricted(self) -> bool:
        return not self.whitelist and not self.domains and not self.allowed_roles


@dataclass(frozen=True)
class RuleConfig:
    """A named rule: where it applies (host/path) and how it overrides the global rule."""

    name: str
    action: str = ACTION_AUTH
    host: Optional[str] = None
    path_prefix: Optional[str] = None
    rule: AuthorizationRule = field(default_factory=AuthorizationRule)

    def matches(self, host: str, path: str) -> bool:
        if self.host and strip_port(host) != self.host:
            return False
        if self.path_prefix and not (path or "/").startswith(self.path_prefix):
            return False
        return True


@dataclass(frozen=True)
class AuthzPolicy:
    default: AuthorizationRule = field(default_factory=AuthorizationRule)
    rules: Tuple[RuleConfig, ...] = ()

    def get(self, name: Optional[str]) -> Optional[RuleConfig]:
        for r in self.rules:
            if r.name == name:
                return r
        return None


def _lower_set(items: Iterable[str]) -> FrozenSet[str]:
    return frozenset(x.lower() for x in items)


def load_authz_policy_from(environ: Dict[str, str]) -> AuthzPolicy:
    """
    Build the authorization policy from an env mapping.

    Global rule:
    - WHITELIST=alice@example.com,bob@example.com
    - DOMAIN=example.com
    - ALLOWED_ROLES=admin,ops

    Named rules (NAME is case-insensitive):
    - RULE_<NAME>_ACTION=auth|allow
    - RULE_<NAME>_HOST=grafana.example.com
    - RULE_<NAME>_PATH_PREFIX=/admin
    - RULE_<NAME>_WHITELIST / RULE_<NAME>_DOMAINS / RULE_<NAME>_ALLOWED_ROLES
    """
    default = AuthorizationRule(
        whitelist=_lower_set(split_csv(environ.get("WHITELIST", ""))),
        domains=_lower_set(split_csv(environ.get("DOMAIN", ""))),
        allowed_roles=frozenset(split_csv(environ.get("ALLOWED_ROLES", ""))),
    )

    raw: Dict[str, Dict[str, str]] = {}
    for key, value in environ.items():
        if not key.startswith("RULE_"):
            continue
        rest = key[len("RULE_") :]
        for suffix in _RULE_FIELDS:
            if rest.endswith(suffix) and len(rest) > len(suffix):
                name = rest[: -len(suffix)].lower()
                raw.setdefault(name, {})[suffix[1:].lower()] = value
                break

    rules = []
    for name in sorted(raw):
        fields = raw[name]
        action = (fields.get("action") or ACTION_AUTH).strip().lower()
        if action not in (ACTION_AUTH, ACTION_ALLOW):
            raise ValueError(f"Invalid action for rule {name!r}: {action!r}")
        host = (fields.get("host") or "").strip().lower() or None
        prefix = (fields.get("path_prefix") or "").strip() or None
        rules.append(
            RuleConfig(
                name=name,
                action=action,
                host=host,
                path_prefix=prefix,
                rule=AuthorizationRule(
                    whitelist=_lower_set(split_csv(fields.get("whitelist", ""))),
                    domains=_lower_set(split_csv(fields.get("domains", ""))),
                    allowed_roles=frozenset(split_csv(fields.get("allowed_roles", ""))),
                ),
            )
        )

    return AuthzPolicy(default=default, rules=tuple(rules))


@lru_cache(maxsize=1)
def load_authz_policy() -> AuthzPolicy:
    policy = load_authz_policy_from(dict(os.environ))
    logger.info("Authorization policy loaded: %d named rule(s)", len(policy.rules))
    return policy


def select_rule(policy: AuthzPolicy, host: str, path: str) -> Optional[RuleConfig]:
    """First rule (in name order) whose host/path conditions match; None means the global rule."""
    for r in policy.rules:
        if r.matches(host, path):
            return r
    return None


def effective_rule(policy: AuthzPolicy, rule_name: Optional[str]) -> AuthorizationRule:
    """
    Resolve the rule that applies to `rule_name`.

    A named rule replaces whitelist+domains together (if it sets either) and
    allowed roles separately (if it sets any); everything else comes from the
    global rule.
    """
    whitelist = policy.default.whitelist
    domains = policy.default.domains
    allowed_roles = policy.default.allowed_roles

    named = policy.get(rule_name)
    if named is not None:
        if named.rule.whitelist or named.rule.domains:
            whitelist = named.rule.whitelist
            domains = named.rule.domains
        if named.rule.allowed_roles:
            allowed_roles = named.rule.allowed_roles

    return AuthorizationRule(whitelist=whitelist, domains=domains, allowed_roles=allowed_roles)


def validate_whitelist(email: str, whitelist: FrozenSet[str]) -> bool:
    return (email or "").lower() in whitelist


def validate_domains(email: str, domains: FrozenSet[str]) -> bool:
    _, at, domain = (email or "").partition("@")
    if not at:
        return False
    return domain.lower() in domains


def validate_roles(identity: Identity, allowed_roles: FrozenSet[str]) -> bool:
    logger.debug("User %s has roles: %s", identity.name or identity.email, sorted(identity.roles))
    return bool(allowed_roles & set(identity.roles))


def authorize(policy: AuthzPolicy, identity: Identity, rule_name: Optional[str] = None) -> bool:
    """
    Is `identity` allowed under `rule_name` (or the global rule)?

    No whitelist, domains or roles configured means no restriction: everyone
    who authenticated is allowed.
    """
    rule = effective_rule(policy, rule_name)

    if rule.unrestricted:
        return True

    if rule.whitelist and validate_whitelist(identity.email, rule.whitelist):
        return True

    if rule.domains and validate_domains(identity.email, rule.domains):
        return True

    if rule.allowed_roles and validate_roles(identity, rule.allowed_roles):
        return True

    return False
