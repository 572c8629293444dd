"""Repository for tenants."""

from __future__ import annotations

from sqlalchemy.orm import Session

from app.db.models import Tenant


class TenantRepository:
    def __init__(self, session: Session) -> None:
        self._session = session

    def get_by_id(self, tenant_id: str) -> Tenant | None:
        return self._session.get(Tenant, tenant_id)

    def get_or_create(self, tenant_id: str, *, name: str | None = None) -> Tenant:
        tenant = self.get_by_id(tenant_id)
        if tenant is None:
            tenant = Tenant(id=tenant_id, name=name or tenant_id, settings={})
            self._session.add(tenant)
            self._session.flush()
        return tenant
