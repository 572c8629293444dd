"""Repository for tenant sites."""

from __future__ import annotations

import uuid
from collections.abc import Mapping
from typing import Any

from sqlalchemy import select
from sqlalchemy.orm import Session

from app.db.models import Site


class SiteRepository:
    def __init__(self, session: Session) -> None:
        self._session = session

    def get_by_id(self, site_id: uuid.UUID) -> Site | None:
        return self._session.get(Site, site_id)

    def upsert_selection(
        self,
        *,
        tenant_id: str,
        domain: str,
        name: str,
        ga4_property_id: str,
        gsc_property_url: str,
        settings: Mapping[str, Any] | None = None,
    ) -> Site:
        statement = select(Site).where(
            Site.tenant_id == tenant_id,
            Site.ga4_property_id == ga4_property_id,
        )
        site = self._session.execute(statement).scalar_one_or_none()
        if site is None:
            site = Site(
                tenant_id=tenant_id,
                domain=domain,
                name=name,
                ga4_property_id=ga4_property_id,
                gsc_property_url=gsc_property_url,
                settings=dict(settings or {}),
            )
            self._session.add(site)
        else:
            site.domain = domain
            site.name = name
            site.gsc_property_url = gsc_property_url
            site.settings = dict(settings or {})

        self._session.flush()
        return site
