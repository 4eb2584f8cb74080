"""Registry of per-type dump and load overrides.

A dump-spec replaces the generic traversal for records of one type; a
load-spec replaces the natural-key lookup of an existing local record.

Usage:
    from db_replicator.replication.specs import SpecRegistry

    specs = SpecRegistry()

    @specs.dump_spec("Repository")
    async def dump_repository(dumper, repository):
        await dumper.dump_record(repository)
        await dumper.dump_association(repository, "issues")

    @specs.load_spec("User")
    async def load_user(loader, attributes):
        return await loader.find_first("User", login=attributes["login"])

    dumper = Dumper(adapter, registry, dump_specs=specs.dump_specs)
    loader = Loader(adapter, registry, load_specs=specs.load_specs)
"""

from collections.abc import Awaitable, Callable
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from db_replicator.replication.dumper import Dumper
    from db_replicator.replication.loader import Loader
    from db_replicator.replication.values import Record

DumpSpec = Callable[["Dumper", "Record"], Awaitable[None]]
LoadSpec = Callable[["Loader", dict[str, Any]], Awaitable["Record | None"]]


class SpecRegistry:
    """Explicit type-name -> override mapping for dumps and loads."""

    def __init__(self) -> None:
        self.dump_specs: dict[str, DumpSpec] = {}
        self.load_specs: dict[str, LoadSpec] = {}

    def dump_spec(self, type_name: str) -> Callable[[DumpSpec], DumpSpec]:
        """Decorator registering a custom traversal for ``type_name`` roots."""

        def register(func: DumpSpec) -> DumpSpec:
            self.dump_specs[type_name] = func
            return func

        return register

    def load_spec(self, type_name: str) -> Callable[[LoadSpec], LoadSpec]:
        """Decorator registering a custom existing-record lookup for ``type_name``."""

        def register(func: LoadSpec) -> LoadSpec:
            self.load_specs[type_name] = func
            return func

        return register
