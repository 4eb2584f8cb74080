"""JSON Lines encoding of replicant tuple streams.

A stream is a header line, one line per tuple, and a trailer line that
marks the end of the stream:

    {"format": "db-replicator", "version": "1.0", "created_at": "..."}
    {"type": "Author", "id": 1, "attributes": {"id": 1, "name": "Ada"}}
    {"type": "Post", "id": 10, "attributes": {"author_id": {"$ref": ["Author", 1]}}}
    {"end": true, "count": 2}

Tagged values are encoded as ``{"$ref": [type, id]}`` and
``{"$refs": [type, [id, ...]]}``. Column values JSON has no type for are
tagged too, so they load back as the same Python type:

    {"$datetime": "2024-05-01T12:00:00+00:00"}   datetime
    {"$date": "2024-05-01"}                      date
    {"$time": "12:00:00"}                        time
    {"$interval": [days, seconds, microseconds]} timedelta
    {"$decimal": "19.90"}                        Decimal
    {"$uuid": "..."}                             UUID
    {"$bytes": "<base64>"}                       bytes

A stream that ends without a trailer is still read to the end without
error.

Usage:
    from db_replicator.replication.codec import TupleWriter, read_tuples

    with open("dump.jsonl", "w") as f, TupleWriter(f) as writer:
        writer("Author", 1, {"id": 1, "name": "Ada"})

    with open("dump.jsonl") as f:
        for replicant in read_tuples(f):
            ...
"""

import base64
import json
from collections.abc import Callable, Iterable, Iterator
from datetime import date, datetime, time, timedelta
from decimal import Decimal, InvalidOperation
from typing import Any, TextIO
from uuid import UUID

from db_replicator.replication.errors import StreamFormatError
from db_replicator.replication.values import Reference, ReferenceList, ReplicantTuple

FORMAT_NAME = "db-replicator"
FORMAT_VERSION = "1.0"

# Checked in order: datetime is a subclass of date.
_SCALAR_ENCODERS: list[tuple[type | tuple[type, ...], str, Callable[[Any], Any]]] = [
    (datetime, "$datetime", lambda v: v.isoformat()),
    (date, "$date", lambda v: v.isoformat()),
    (time, "$time", lambda v: v.isoformat()),
    (timedelta, "$interval", lambda v: [v.days, v.seconds, v.microseconds]),
    (Decimal, "$decimal", str),
    (UUID, "$uuid", str),
    ((bytes, bytearray, memoryview), "$bytes", lambda v: base64.b64encode(bytes(v)).decode("ascii")),
]

_SCALAR_DECODERS: dict[str, Callable[[Any], Any]] = {
    "$datetime": datetime.fromisoformat,
    "$date": date.fromisoformat,
    "$time": time.fromisoformat,
    "$interval": lambda parts: timedelta(*parts),
    "$decimal": Decimal,
    "$uuid": UUID,
    "$bytes": lambda text: base64.b64decode(text, validate=True),
}


def encode_value(value: Any) -> Any:
    """Encode one attribute value as a JSON-compatible object."""
    if isinstance(value, Reference):
        return {"$ref": [value.type, _encode_scalar(value.id)]}
    if isinstance(value, ReferenceList):
        return {"$refs": [value.type, [_encode_scalar(i) for i in value.ids]]}
    return _encode_scalar(value)


def decode_value(value: Any) -> Any:
    """Decode one attribute value, restoring tagged references and scalars."""
    if isinstance(value, dict) and len(value) == 1:
        if "$ref" in value:
            type_name, record_id = _pair(value["$ref"], "$ref")
            return Reference(type=type_name, id=_decode_scalar(record_id))
        if "$refs" in value:
            type_name, ids = _pair(value["$refs"], "$refs")
            if not isinstance(ids, list):
                raise StreamFormatError(f"'$refs' ids must be a list, got {ids!r}")
            return ReferenceList(type=type_name, ids=[_decode_scalar(i) for i in ids])
    return _decode_scalar(value)


def _encode_scalar(value: Any) -> Any:
    for types, tag, encode in _SCALAR_ENCODERS:
        if isinstance(value, types):
            return {tag: encode(value)}
    return value


def _decode_scalar(value: Any) -> Any:
    if not isinstance(value, dict) or len(value) != 1:
        return value
    tag, raw = next(iter(value.items()))
    decode = _SCALAR_DECODERS.get(tag)
    if decode is None:
        return value
    try:
        return decode(raw)
    except (TypeError, ValueError, InvalidOperation) as e:
        raise StreamFormatError(f"Malformed '{tag}' value: {raw!r}") from e


def _pair(raw: Any, tag: str) -> tuple[str, Any]:
    if not isinstance(raw, list) or len(raw) != 2 or not isinstance(raw[0], str):
        raise StreamFormatError(f"Malformed '{tag}' marker: {raw!r}")
    return raw[0], raw[1]


class TupleWriter:
    """Callable sink writing tuples to a text stream as JSON Lines.

    The header is written on construction; ``close()`` writes the
    trailer. Usable as a ``Dumper`` write function and as a context
    manager.

    Args:
        io: Writable text stream.
        metadata: Optional extra fields merged into the header line.
    """

    def __init__(self, io: TextIO, metadata: dict[str, Any] | None = None) -> None:
        self._io = io
        self.count = 0
        self.closed = False
        header = {
            "format": FORMAT_NAME,
            "version": FORMAT_VERSION,
            "created_at": datetime.now().isoformat(),
        }
        if metadata:
            header.update(metadata)
        self._write_line(header)

    def __call__(self, type_name: str, record_id: Any, attributes: dict[str, Any]) -> None:
        if self.closed:
            raise ValueError("TupleWriter is closed")
        self._write_line({
            "type": type_name,
            "id": _encode_scalar(record_id),
            "attributes": {key: encode_value(value) for key, value in attributes.items()},
        })
        self.count += 1

    def close(self) -> None:
        """Write the end-of-stream trailer."""
        if not self.closed:
            self._write_line({"end": True, "count": self.count})
            self.closed = True

    def __enter__(self) -> "TupleWriter":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        # No trailer on error: the stream is visibly incomplete.
        if exc_type is None:
            self.close()

    def _write_line(self, obj: dict[str, Any]) -> None:
        self._io.write(json.dumps(obj, default=str))
        self._io.write("\n")


def read_tuples(io: Iterable[str]) -> Iterator[ReplicantTuple]:
    """Decode tuples from a JSON Lines stream until the trailer or EOF.

    Raises:
        StreamFormatError: On invalid JSON, an unsupported header version,
            a line missing ``type``/``id``/``attributes``, or a trailer
            whose count disagrees with the tuples read.
    """
    count = 0
    for lineno, line in enumerate(io, 1):
        line = line.strip()
        if not line:
            continue
        try:
            obj = json.loads(line)
        except json.JSONDecodeError as e:
            raise StreamFormatError(f"Line {lineno}: invalid JSON: {e}") from e
        if not isinstance(obj, dict):
            raise StreamFormatError(f"Line {lineno}: expected an object")

        if "format" in obj:
            if obj.get("version") != FORMAT_VERSION:
                raise StreamFormatError(
                    f"Unsupported stream version '{obj.get('version')}' "
                    f"(expected '{FORMAT_VERSION}')"
                )
            continue
        if obj.get("end") is True:
            expected = obj.get("count")
            if expected is not None and expected != count:
                raise StreamFormatError(
                    f"Stream trailer expects {expected} tuples, read {count}"
                )
            return

        try:
            type_name, record_id, attributes = obj["type"], obj["id"], obj["attributes"]
        except KeyError as e:
            raise StreamFormatError(f"Line {lineno}: missing {e.args[0]!r}") from None
        if not isinstance(attributes, dict):
            raise StreamFormatError(f"Line {lineno}: 'attributes' must be an object")

        count += 1
        yield ReplicantTuple(
            type_name,
            _decode_scalar(record_id),
            {key: decode_value(value) for key, value in attributes.items()},
        )


def validate_stream(stream_path: str) -> dict:
    """Check a dump file without touching a database.

    Errors are reported for unreadable files, malformed lines and
    duplicate identities. A reference to an identity that does not appear
    earlier in the stream is a warning (the loader tolerates it).

    References are matched against the concrete type each tuple was
    written under. The stream carries no type hierarchy, so a reference
    typed at a supertype (``Vehicle`` for a ``Car`` tuple) is reported as
    a warning even though the loader resolves it through the registry.

    Returns:
        Dict with ``valid`` (bool), ``errors`` (list[str]), ``warnings``
        (list[str]) and ``count`` (int).
    """
    errors: list[str] = []
    warnings: list[str] = []
    seen: set[tuple[str, Any]] = set()
    count = 0

    try:
        with open(stream_path, "r") as f:
            for type_name, record_id, attributes in read_tuples(f):
                count += 1
                identity = (type_name, _hashable(record_id))
                if identity in seen:
                    errors.append(f"Duplicate tuple: {type_name}[{record_id}]")
                for key, value in attributes.items():
                    for ref_type, ref_id in _references(value):
                        if (ref_type, _hashable(ref_id)) not in seen:
                            warnings.append(
                                f"{type_name}[{record_id}].{key} references "
                                f"{ref_type}[{ref_id}] not dumped earlier"
                            )
                seen.add(identity)
    except FileNotFoundError:
        errors.append(f"Stream file not found: {stream_path}")
    except StreamFormatError as e:
        errors.append(str(e))

    return {"valid": not errors, "errors": errors, "warnings": warnings, "count": count}


def _references(value: Any) -> Iterator[tuple[str, Any]]:
    if isinstance(value, Reference):
        yield value.type, value.id
    elif isinstance(value, ReferenceList):
        for ref_id in value.ids:
            yield value.type, ref_id


def _hashable(value: Any) -> Any:
    return json.dumps(value, sort_keys=True, default=str) if isinstance(value, (dict, list)) else value
