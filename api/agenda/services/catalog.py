"""Tenant-scoped lookups for services, staff, resources and clients."""

from __future__ import annotations

from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from agenda.core.errors import ConfigurationError, NotFoundError, ValidationError
from agenda.models import Client, Professional, Resource, ScheduleSettings, Service, Tenant


class ServiceCatalog:
    """Every lookup is filtered by the tenant the catalog was opened for."""

    def __init__(self, db: Session, tenant_id: UUID) -> None:
        self.db = db
        self.tenant_id = tenant_id

    def tenant(self) -> Tenant:
        tenant = self.db.get(Tenant, self.tenant_id)
        if not tenant or not tenant.is_active:
            raise NotFoundError("Tenant not found", tenant_id=self.tenant_id)
        return tenant

    def settings(self) -> ScheduleSettings | None:
        return self.db.execute(
            select(ScheduleSettings).where(ScheduleSettings.tenant_id == self.tenant_id)
        ).scalar_one_or_none()

    def _scoped(self, model, entity_id: UUID, label: str):
        entity = self.db.execute(
            select(model).where(model.id == entity_id, model.tenant_id == self.tenant_id)
        ).scalar_one_or_none()
        if entity is None:
            raise NotFoundError(f"{label} not found", id=entity_id)
        return entity

    def service(self, service_id: UUID, *, public_only: bool = False) -> Service:
        service = self._scoped(Service, service_id, "Service")
        if not service.is_active or (public_only and not service.is_public):
            raise NotFoundError("Service not found", id=service_id)
        return service

    def services(self, *, public_only: bool = False) -> list[Service]:
        stmt = select(Service).where(
            Service.tenant_id == self.tenant_id, Service.is_active.is_(True)
        )
        if public_only:
            stmt = stmt.where(Service.is_public.is_(True))
        return list(self.db.execute(stmt.order_by(Service.name)).scalars())

    def client(self, client_id: UUID) -> Client:
        return self._scoped(Client, client_id, "Client")

    def professional_for(self, service: Service, professional_id: UUID) -> Professional:
        professional = self._scoped(Professional, professional_id, "Professional")
        if not professional.is_active:
            raise ValidationError("Professional is inactive", id=professional_id)
        if professional not in service.professionals:
            raise ValidationError(
                "Professional cannot perform this service",
                professional_id=professional_id,
                service_id=service.id,
            )
        return professional

    def resource_for(self, service: Service, resource_id: UUID) -> Resource:
        resource = self._scoped(Resource, resource_id, "Resource")
        if not resource.is_active:
            raise ValidationError("Resource is inactive", id=resource_id)
        if resource not in service.resources:
            raise ValidationError(
                "Resource is not linked to this service",
                resource_id=resource_id,
                service_id=service.id,
            )
        return resource

    def eligible_resources(self, service: Service) -> list[Resource]:
        """Active resources linked to ``service``, ordered by name."""

        resources = sorted(
            (
                resource
                for resource in service.resources
                if resource.is_active and resource.tenant_id == self.tenant_id
            ),
            key=lambda resource: resource.name,
        )
        if service.requires_resource and not resources:
            raise ConfigurationError(
                "Service requires a resource but none is linked and active",
                service_id=service.id,
            )
        return resources
