from pytest_archon import archrule


def test_core_independence() -> None:
    """
    Core must not import from any adapter package.
    Redis and SQLAlchemy implementations plug in through the ports.
    """
    (
        archrule("core_is_independent")
        .match("storesync_core*")
        .should_not_import("storesync_redis*")
        .should_not_import("storesync_sqlalchemy*")
        .check("storesync_core", only_direct_imports=True)
    )


def test_adapter_packages_are_independent() -> None:
    """Redis and SQLAlchemy adapters depend on core only, never on each other."""
    (
        archrule("redis_independence")
        .match("storesync_redis*")
        .should_not_import("storesync_sqlalchemy*")
        .check("storesync_redis")
    )
    (
        archrule("sqlalchemy_independence")
        .match("storesync_sqlalchemy*")
        .should_not_import("storesync_redis*")
        .check("storesync_sqlalchemy")
    )


def test_domain_isolation() -> None:
    """
    Domain layer should be self-contained.
    It must not import from adapters, ports, or the services built on them.
    """
    (
        archrule("domain_isolation")
        .match("storesync_core.domain*")
        .should_not_import("storesync_core.adapters*")
        .should_not_import("storesync_core.ports*")
        .should_not_import("storesync_core.sync*")
        .should_not_import("storesync_core.jobs*")
        .check("storesync_core", only_direct_imports=True)
    )


def test_primitives_isolation() -> None:
    """
    Primitives layer is the lowest level.
    It must not import from domain, adapters or ports.
    """
    (
        archrule("primitives_isolation")
        .match("storesync_core.primitives*")
        .should_not_import("storesync_core.domain*")
        .should_not_import("storesync_core.adapters*")
        .should_not_import("storesync_core.ports*")
        .check("storesync_core", only_direct_imports=True)
    )


def test_ports_layering() -> None:
    """
    Ports (interfaces) should not depend on Adapters (implementations).
    """
    (
        archrule("ports_layering")
        .match("storesync_core.ports*")
        .should_not_import("storesync_core.adapters*")
        .should_not_import("storesync_core.sync*")
        .check("storesync_core", only_direct_imports=True)
    )


def test_services_do_not_use_memory_adapters() -> None:
    """The coordinator and its collaborators only talk to ports."""
    for package in (
        "storesync_core.sync.coordinator",
        "storesync_core.jobs*",
        "storesync_core.locking*",
        "storesync_core.resilience*",
        "storesync_core.consistency*",
    ):
        (
            archrule(f"{package}_uses_ports")
            .match(package)
            .should_not_import("storesync_core.adapters*")
            .check("storesync_core", only_direct_imports=True)
        )
