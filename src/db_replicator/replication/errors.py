"""Exceptions raised by the dump/load engine.

Anomalies that only affect one association or one field are logged and
skipped; the exceptions below are the ones that stop a dump or abort a
load transaction.
"""


class ReplicationError(Exception):
    """Base class for replication errors."""

    pass


class SchemaError(ReplicationError, ValueError):
    """Raised when type declarations cannot be resolved into a registry."""

    pass


class UnknownTypeError(ReplicationError, LookupError):
    """Raised when a tuple or lookup names a type the registry does not know."""

    def __init__(self, type_name: str) -> None:
        super().__init__(f"Unknown record type: {type_name!r}")
        self.type_name = type_name


class UnknownAssociationError(ReplicationError, LookupError):
    """Raised when an association is requested by a name the type never declared."""

    def __init__(self, type_name: str, name: str) -> None:
        super().__init__(f"{type_name}#{name} is not a declared association")
        self.type_name = type_name
        self.name = name


class AssociationShapeError(ReplicationError):
    """Raised when storage returns something other than rows for an association."""

    pass


class StreamFormatError(ReplicationError, ValueError):
    """Raised when a tuple stream line cannot be decoded."""

    pass
