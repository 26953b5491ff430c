"""Relational schema management for the commerce domain.

Stock items, the reference index and the webhook receipt log are stored in
the configured relational database. Orders and payments are event-sourced;
their streams live in the event store and have no tables here.
"""

from protean.domain import Domain
from sqlalchemy import create_engine

RELATIONAL_PROVIDERS = ("sqlite", "postgresql")


def _stored_in_tables(cls, provider_name: str) -> bool:
    if cls.meta_.provider != provider_name:
        return False
    owner = getattr(cls.meta_, "part_of", None) or cls
    return not getattr(owner.meta_, "is_event_sourced", False)


def _register_tables(domain: Domain, provider_name: str) -> list[str]:
    """Touch each repository's DAO so its SQLAlchemy model joins the provider metadata."""
    registered = []
    records = (
        list(domain.registry.aggregates.values())
        + list(domain.registry.entities.values())
        + list(domain.registry.projections.values())
    )
    for record in records:
        if _stored_in_tables(record.cls, provider_name):
            domain.repository_for(record.cls)._dao  # noqa: B018
            registered.append(record.cls.__name__)
    return registered


def setup_db(domain: Domain) -> list[str]:
    """Create tables for every relationally stored aggregate. Returns the class names covered."""
    created = []
    with domain.domain_context():
        for _, provider in domain.providers.items():
            if provider.conn_info["provider"] in RELATIONAL_PROVIDERS:
                engine = create_engine(provider.conn_info["database_uri"])
                created.extend(_register_tables(domain, provider.name))
                provider._metadata.create_all(engine)
    return created


def drop_db(domain: Domain) -> None:
    """Drop the tables created by ``setup_db``."""
    with domain.domain_context():
        for _, provider in domain.providers.items():
            if provider.conn_info["provider"] in RELATIONAL_PROVIDERS:
                engine = create_engine(provider.conn_info["database_uri"])
                _register_tables(domain, provider.name)
                provider._metadata.drop_all(engine)
