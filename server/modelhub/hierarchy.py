"""ModelHub - Resource Hierarchy

Immutable references to permission-bearing resources and their parent links:
Element -> Project -> Organization. A reference is built once and never
re-parented.
"""

from dataclasses import dataclass
from typing import Optional

from .errors import ValidationFailed
from .roles import ResourceKind

DEFAULT_DELIMITER = ":"


def create_id(*parts: str, delimiter: str = DEFAULT_DELIMITER) -> str:
    """Join ancestor ids into a qualified id: create_id('org', 'proj') -> 'org:proj'."""
    for part in parts:
        if not part:
            raise ValidationFailed("ID components must be non-empty")
        if delimiter in part:
            raise ValidationFailed(f"ID '{part}' must not contain '{delimiter}'")
    return delimiter.join(parts)


def parse_id(qualified_id: str, delimiter: str = DEFAULT_DELIMITER) -> list[str]:
    """Inverse of create_id."""
    return qualified_id.split(delimiter)


@dataclass(frozen=True)
class ResourceRef:
    """Handle to one resource. `parent` is None only for organizations."""
    kind: ResourceKind
    ident: str                            # human-assigned id, unique within the parent
    parent: Optional["ResourceRef"] = None
    delimiter: str = DEFAULT_DELIMITER

    def __post_init__(self):
        create_id(self.ident, delimiter=self.delimiter)
        expected_parent = {
            ResourceKind.ORGANIZATION: None,
            ResourceKind.PROJECT: ResourceKind.ORGANIZATION,
            ResourceKind.ELEMENT: ResourceKind.PROJECT,
        }[ResourceKind(self.kind)]
        actual_parent = self.parent.kind if self.parent else None
        if actual_parent != expected_parent:
            raise ValueError(
                f"{ResourceKind(self.kind).value} must have parent "
                f"{expected_parent.value if expected_parent else 'none'}"
            )

    @property
    def qualified_id(self) -> str:
        parts = [ref.ident for ref in reversed(self.lineage())]
        return create_id(*parts, delimiter=self.delimiter)

    @property
    def lock_key(self) -> str:
        return f"{ResourceKind(self.kind).value}:{self.qualified_id}"

    def lineage(self) -> list["ResourceRef"]:
        """This resource followed by every ancestor, child first."""
        chain = []
        ref = self
        while ref is not None:
            chain.append(ref)
            ref = ref.parent
        return chain

    def ancestors(self) -> list["ResourceRef"]:
        return self.lineage()[1:]

    @property
    def org_id(self) -> str:
        return self.lineage()[-1].ident

    def __str__(self) -> str:
        return f"{ResourceKind(self.kind).value} '{self.qualified_id}'"


def parent_of(ref: ResourceRef) -> Optional[ResourceRef]:
    """Parent resource, or None for an organization."""
    return ref.parent


def org_ref(org_id: str, delimiter: str = DEFAULT_DELIMITER) -> ResourceRef:
    return ResourceRef(ResourceKind.ORGANIZATION, org_id, delimiter=delimiter)


def project_ref(org_id: str, project_id: str, delimiter: str = DEFAULT_DELIMITER) -> ResourceRef:
    return ResourceRef(
        ResourceKind.PROJECT, project_id, org_ref(org_id, delimiter), delimiter=delimiter,
    )


def element_ref(
    org_id: str, project_id: str, element_id: str, delimiter: str = DEFAULT_DELIMITER,
) -> ResourceRef:
    return ResourceRef(
        ResourceKind.ELEMENT, element_id, project_ref(org_id, project_id, delimiter),
        delimiter=delimiter,
    )


def ref_from_id(kind: ResourceKind, qualified_id: str, delimiter: str = DEFAULT_DELIMITER) -> ResourceRef:
    """Rebuild a reference from a stored qualified id."""
    parts = parse_id(qualified_id, delimiter)
    builders = {
        ResourceKind.ORGANIZATION: org_ref,
        ResourceKind.PROJECT: project_ref,
        ResourceKind.ELEMENT: element_ref,
    }
    try:
        return builders[ResourceKind(kind)](*parts, delimiter=delimiter)
    except TypeError:
        raise ValidationFailed(
            f"'{qualified_id}' is not a valid {ResourceKind(kind).value} id"
        ) from None
