"""KeyBuilder: tenant-scoped cache key construction."""

from __future__ import annotations


class KeyBuilder:
    """Builds ``<prefix>:tenant:<id>:<part>...`` style cache keys.

    Empty parts are skipped so optional segments never produce ``::``.
    """

    def __init__(
        self, prefix: str = "", *, separator: str = ":", default_ttl: float = 3600.0
    ) -> None:
        self.prefix = prefix
        self.separator = separator
        self.default_ttl = default_ttl

    def build_key(self, *parts: str) -> str:
        if not parts:
            return self.prefix
        segments = [self.prefix] if self.prefix else []
        segments.extend(part for part in parts if part)
        return self.separator.join(segments)

    def build_key_with_tenant(self, tenant_id: str, *parts: str) -> str:
        if not tenant_id:
            return self.build_key(*parts)
        return self.build_key("tenant", tenant_id, *parts)

    def build_key_with_expiration(
        self, ttl: float | None, *parts: str
    ) -> tuple[str, float]:
        """Return the key and *ttl*, falling back to ``default_ttl`` when unset."""
        key = self.build_key(*parts)
        if ttl is None or ttl <= 0:
            ttl = self.default_ttl
        return key, ttl

    def user_key(self, tenant_id: str, user_id: str, *suffix: str) -> str:
        return self.build_key_with_tenant(tenant_id, "user", user_id, *suffix)

    def role_key(self, tenant_id: str, role_id: str, *suffix: str) -> str:
        return self.build_key_with_tenant(tenant_id, "role", role_id, *suffix)

    def permission_key(self, tenant_id: str, permission_id: str, *suffix: str) -> str:
        return self.build_key_with_tenant(
            tenant_id, "permission", permission_id, *suffix
        )

    def event_key(self, tenant_id: str, event_id: str, *suffix: str) -> str:
        return self.build_key_with_tenant(tenant_id, "event", event_id, *suffix)

    def employee_key(self, tenant_id: str, employee_id: str, *suffix: str) -> str:
        return self.build_key_with_tenant(tenant_id, "employee", employee_id, *suffix)

    def partner_key(self, tenant_id: str, partner_id: str, *suffix: str) -> str:
        return self.build_key_with_tenant(tenant_id, "partner", partner_id, *suffix)

    def checkin_key(self, tenant_id: str, checkin_id: str, *suffix: str) -> str:
        return self.build_key_with_tenant(tenant_id, "checkin", checkin_id, *suffix)

    def checkout_key(self, tenant_id: str, checkout_id: str, *suffix: str) -> str:
        return self.build_key_with_tenant(tenant_id, "checkout", checkout_id, *suffix)

    def session_key(self, session_id: str, *suffix: str) -> str:
        return self.build_key("session", session_id, *suffix)

    def token_key(self, token_type: str, token_id: str, *suffix: str) -> str:
        return self.build_key("token", token_type, token_id, *suffix)

    def stats_key(self, tenant_id: str, stats_type: str, *suffix: str) -> str:
        return self.build_key_with_tenant(tenant_id, "stats", stats_type, *suffix)

    def list_key(
        self,
        tenant_id: str,
        entity_type: str,
        page: int,
        page_size: int,
        *filters: str,
    ) -> str:
        parts = ["list", entity_type, f"page:{page}", f"size:{page_size}"]
        if filters:
            parts.append(f"filters:{','.join(filters)}")
        return self.build_key_with_tenant(tenant_id, *parts)

    def search_key(
        self, tenant_id: str, entity_type: str, query: str, *suffix: str
    ) -> str:
        return self.build_key_with_tenant(
            tenant_id, "search", entity_type, f"q:{query}", *suffix
        )
