"""Engine-neutral resource graph for the connector stack.

Resources are registered explicitly with ``add_resource`` and ordered with
``add_dependency``; cross-stack values come from ``get_parameter``.  Attribute
values may be plain strings or one of the typed values below, which are only
combined into text when the graph is resolved or rendered:

* ``ImportRef``: a value exported by another stack.
* ``Selection``: one element of a delimited, list-valued import.
* ``SecretPlaceholder``: a ``${secret}`` token substituted by the connector
  runtime, always emitted verbatim.
* ``Interpolation``: concatenation of strings and other values.
* ``Arn``: an ARN built from naming convention rather than read from a
  resource attribute.
"""
import logging
from typing import Any, Dict, Iterator, List, Optional, Tuple, Union

from .errors import ConfigurationError, GraphError, OrderingViolationError

logger = logging.getLogger(__name__)


class ImportRef:
    """Reference to a cross-stack export, looked up by name."""

    def __init__(self, export_name: str):
        self.export_name = export_name

    def select(self, index: int, delimiter: str = ",") -> "Selection":
        return Selection(self, index, delimiter)

    def resolve(self, resolver) -> str:
        return resolver.lookup(self.export_name)

    def describe(self) -> Dict[str, Any]:
        return {"import": self.export_name}

    def __eq__(self, other):
        return isinstance(other, ImportRef) and other.export_name == self.export_name

    def __hash__(self):
        return hash(("import", self.export_name))

    def __repr__(self):
        return f"ImportRef({self.export_name!r})"


class Selection:
    """Single element of a list-valued import split on ``delimiter``."""

    def __init__(self, source: ImportRef, index: int, delimiter: str = ","):
        if index < 0:
            raise IndexError(f"Index {index} for {source.export_name} must not be negative")
        self.source = source
        self.index = index
        self.delimiter = delimiter

    def resolve(self, resolver) -> str:
        items = self.source.resolve(resolver).split(self.delimiter)
        if not 0 <= self.index < len(items):
            raise IndexError(
                f"Index {self.index} out of range for {self.source.export_name} "
                f"({len(items)} item(s))"
            )
        if not items[self.index]:
            raise IndexError(f"Item {self.index} of {self.source.export_name} is empty")
        return items[self.index]

    def describe(self) -> Dict[str, Any]:
        return {
            "select": self.index,
            "delimiter": self.delimiter,
            "from": self.source.describe(),
        }

    def __repr__(self):
        return f"Selection({self.source!r}, {self.index}, {self.delimiter!r})"


class SecretPlaceholder:
    """``${name}`` token resolved by the connector at invocation time."""

    def __init__(self, secret_name: str):
        if not secret_name or "}" in secret_name:
            raise ConfigurationError(f"Invalid secret name {secret_name!r}")
        self.secret_name = secret_name

    def resolve(self, resolver=None) -> str:
        return str(self)

    def describe(self) -> Dict[str, Any]:
        return {"secret": self.secret_name}

    def __str__(self):
        return "${" + self.secret_name + "}"

    def __repr__(self):
        return f"SecretPlaceholder({self.secret_name!r})"


class Interpolation:
    """Concatenation of literal strings and typed values."""

    def __init__(self, *parts):
        self.parts: Tuple[Any, ...] = parts

    def resolve(self, resolver) -> str:
        return "".join(str(resolve_value(part, resolver)) for part in self.parts)

    def describe(self) -> Dict[str, Any]:
        return {"join": [describe_value(part) for part in self.parts]}

    def __repr__(self):
        return f"Interpolation{self.parts!r}"


class Arn:
    """ARN in ``arn:<partition>:<service>:<region>:<account>:<type>:<name>`` form."""

    def __init__(
        self,
        service: str,
        resource_type: str,
        resource_name: str,
        region: Optional[str] = None,
        account: Optional[str] = None,
        partition: str = "aws",
    ):
        self.service = service
        self.resource_type = resource_type
        self.resource_name = resource_name
        self.region = region
        self.account = account
        self.partition = partition

    @property
    def is_concrete(self) -> bool:
        return bool(self.region and self.account)

    def resolve(self, resolver=None) -> str:
        if not self.is_concrete:
            raise ConfigurationError(
                f"Region and account are required to build the {self.service} ARN "
                f"for {self.resource_name}"
            )
        return ":".join([
            "arn",
            self.partition,
            self.service,
            self.region,
            self.account,
            self.resource_type,
            self.resource_name,
        ])

    def describe(self) -> Union[str, Dict[str, Any]]:
        if self.is_concrete:
            return self.resolve()
        return {
            "arn": {
                "service": self.service,
                "resourceType": self.resource_type,
                "resourceName": self.resource_name,
            }
        }

    def __repr__(self):
        return f"Arn({self.service!r}, {self.resource_type!r}, {self.resource_name!r})"


TypedValue = (ImportRef, Selection, SecretPlaceholder, Interpolation, Arn)


def resolve_value(value: Any, resolver) -> Any:
    """Replace every typed value inside ``value`` by its concrete text.

    ARNs without region and account stay in their described form.
    """
    if isinstance(value, Arn) and not value.is_concrete:
        return value.describe()
    if isinstance(value, TypedValue):
        return value.resolve(resolver)
    if isinstance(value, dict):
        return {key: resolve_value(item, resolver) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [resolve_value(item, resolver) for item in value]
    return value


def describe_value(value: Any) -> Any:
    if isinstance(value, TypedValue):
        return value.describe()
    if isinstance(value, dict):
        return {key: describe_value(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [describe_value(item) for item in value]
    return value


class Resource:
    """A declared resource: logical id, kind and attributes."""

    def __init__(self, logical_id: str, kind: str, attributes: Dict[str, Any]):
        self.logical_id = logical_id
        self.kind = kind
        self.attributes = attributes

    def __getitem__(self, key: str) -> Any:
        return self.attributes[key]

    def get(self, key: str, default: Any = None) -> Any:
        return self.attributes.get(key, default)

    def __repr__(self):
        return f"Resource({self.logical_id!r}, {self.kind!r})"


class ResourceGraph:
    """Declared resources, explicit dependency edges and required orderings."""

    def __init__(self, name: str):
        self.name = name
        self._resources: Dict[str, Resource] = {}
        self._edges: Dict[str, List[str]] = {}
        self._required: List[Tuple[str, str]] = []
        self._imports: Dict[str, ImportRef] = {}

    def add_resource(self, logical_id: str, kind: str, **attributes) -> Resource:
        if logical_id in self._resources:
            raise GraphError(f"Resource {logical_id} is already declared in {self.name}")
        resource = Resource(logical_id, kind, attributes)
        self._resources[logical_id] = resource
        self._edges[logical_id] = []
        logger.debug("Declared %s (%s)", logical_id, kind)
        return resource

    def get_parameter(self, export_name: str) -> ImportRef:
        """Return the import reference for ``export_name``, registering it."""
        if export_name not in self._imports:
            self._imports[export_name] = ImportRef(export_name)
        return self._imports[export_name]

    @property
    def imports(self) -> List[str]:
        return list(self._imports)

    def add_dependency(self, dependent, dependency) -> None:
        dependent_id = self._known_id(dependent)
        dependency_id = self._known_id(dependency)
        if dependent_id == dependency_id:
            raise GraphError(f"{dependent_id} cannot depend on itself")
        if dependency_id not in self._edges[dependent_id]:
            self._edges[dependent_id].append(dependency_id)

    def remove_dependency(self, dependent, dependency) -> None:
        dependent_id = self._known_id(dependent)
        dependency_id = self._known_id(dependency)
        if dependency_id in self._edges[dependent_id]:
            self._edges[dependent_id].remove(dependency_id)

    def require_order(self, dependent, dependency) -> None:
        """Record that ``dependent`` must be created after ``dependency``.

        The requirement is only satisfied by an explicit edge; ``validate``
        does not look at attribute references.
        """
        pair = (self._known_id(dependent), self._known_id(dependency))
        if pair not in self._required:
            self._required.append(pair)

    def dependencies_of(self, logical_id) -> List[str]:
        return list(self._edges[self._known_id(logical_id)])

    def validate(self) -> None:
        for dependent, dependency in self._required:
            if dependency not in self._edges[dependent]:
                raise OrderingViolationError(dependent, dependency)
        self.creation_order()

    def creation_order(self) -> List[str]:
        """Topological order of logical ids, declaration order among peers."""
        remaining = {key: set(deps) for key, deps in self._edges.items()}
        order: List[str] = []
        while remaining:
            ready = [key for key in self._resources if key in remaining and not remaining[key]]
            if not ready:
                raise GraphError(f"Dependency cycle between {sorted(remaining)}")
            for key in ready:
                order.append(key)
                del remaining[key]
            for deps in remaining.values():
                deps.difference_update(ready)
        return order

    def resolve_imports(self, resolver) -> Dict[str, str]:
        """Look up every registered import; raises ``UnresolvedImportError``."""
        resolved = {name: ref.resolve(resolver) for name, ref in self._imports.items()}
        logger.info("Resolved %d import(s) for %s: %s", len(resolved), self.name, ", ".join(resolved))
        return resolved

    def to_dict(self, resolver=None) -> Dict[str, Any]:
        """Serializable description; values are concrete when ``resolver`` is given."""
        render = (lambda value: resolve_value(value, resolver)) if resolver is not None else describe_value
        return {
            "name": self.name,
            "imports": self.imports,
            "resources": {
                logical_id: {
                    "kind": resource.kind,
                    "attributes": render(resource.attributes),
                    "dependsOn": list(self._edges[logical_id]),
                }
                for logical_id, resource in self._resources.items()
            },
        }

    def _known_id(self, item) -> str:
        logical_id = item.logical_id if isinstance(item, Resource) else item
        if logical_id not in self._resources:
            raise GraphError(f"Unknown resource {logical_id} in {self.name}")
        return logical_id

    def __getitem__(self, logical_id: str) -> Resource:
        return self._resources[logical_id]

    def __contains__(self, logical_id) -> bool:
        return logical_id in self._resources

    def __iter__(self) -> Iterator[Resource]:
        return iter(self._resources.values())

    def __len__(self) -> int:
        return len(self._resources)
