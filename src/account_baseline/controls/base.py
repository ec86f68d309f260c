"""Base class and shared types for control handlers.

A handler owns the AWS calls for one kind of control. ``read`` is strictly
read-only and returns a normalized snapshot (or None when the resource is
absent). ``create``, ``update`` and ``delete`` perform the mutations, and
``create`` must leave the resource carrying the ownership marker.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Sequence

from ..baseline.models import Control, PropertyDiff
from ..core.aws_client import AWSClientManager


logger = logging.getLogger(__name__)


class ControlHandlerError(Exception):
    """Raised when a handler is asked to do something it cannot do."""
    pass


class InspectionError(Exception):
    """Raised when a live resource cannot be interpreted."""
    pass


@dataclass(frozen=True)
class OwnershipMarker:
    """Tag proving a resource was created by this tool."""

    key: str
    value: str

    def as_tag_list(self, key_name: str = "Key", value_name: str = "Value") -> List[Dict[str, str]]:
        """Marker in the ``[{"Key": ..., "Value": ...}]`` shape most APIs use."""
        return [{key_name: self.key, value_name: self.value}]

    def as_dict(self) -> Dict[str, str]:
        """Marker in the ``{key: value}`` shape (Security Hub)."""
        return {self.key: self.value}

    def is_present(self, tags: Optional[Mapping[str, str]]) -> bool:
        """Check whether a tag mapping carries the marker."""
        return bool(tags) and tags.get(self.key) == self.value


@dataclass(frozen=True)
class ResourceSnapshot:
    """Normalized properties of a live resource plus its ownership."""

    properties: Dict[str, Any] = field(default_factory=dict)
    owned: bool = False


def tags_to_dict(
    tags: Optional[Iterable[Mapping[str, str]]], key_name: str = "Key", value_name: str = "Value"
) -> Dict[str, str]:
    """Convert an AWS tag list into a plain dictionary."""
    return {tag[key_name]: tag[value_name] for tag in tags or []}


class ControlHandler(ABC):
    """Base class for all control handlers."""

    kind: str = ""

    def __init__(self, aws_client: AWSClientManager, marker: OwnershipMarker) -> None:
        """Initialize handler.

        Args:
            aws_client: Configured AWS client manager
            marker: Ownership marker stamped on created resources
        """
        self.aws_client = aws_client
        self.marker = marker

    @abstractmethod
    def read(self, control: Control) -> Optional[ResourceSnapshot]:
        """Read the live resource behind a control without mutating it.

        Returns:
            Normalized snapshot, or None when the resource does not exist
        """
        pass

    @abstractmethod
    def create(self, control: Control) -> None:
        """Create the resource with the ownership marker attached."""
        pass

    @abstractmethod
    def update(self, control: Control, diff: Sequence[PropertyDiff]) -> None:
        """Converge only the properties named in ``diff``."""
        pass

    @abstractmethod
    def delete(self, control: Control) -> None:
        """Remove the resource."""
        pass

    def desired_properties(self, control: Control) -> Dict[str, Any]:
        """Subset of the desired state compared against the snapshot.

        Identifying names are excluded by default; handlers override this
        when their desired state holds more than comparable properties.
        """
        return {
            key: value for key, value in control.desired.items() if not key.endswith("_name")
        }

    def _dispatch_updates(
        self,
        control: Control,
        diff: Sequence[PropertyDiff],
        setters: Mapping[str, Callable[[Control], None]],
    ) -> None:
        """Call the setter for each changed top-level property, in diff order.

        Properties sharing a setter cause a single call.

        Raises:
            ControlHandlerError: When a changed property has no setter
        """
        names = []
        for change in diff:
            name = change.property_name
            if name not in setters:
                raise ControlHandlerError(
                    f"{self.kind} cannot update property '{name}' of {control.identifier}"
                )
            if name not in names:
                names.append(name)

        called = []
        for name in names:
            setter = setters[name]
            if setter in called:
                continue
            logger.info(f"Updating {control.identifier}: {name}")
            setter(control)
            called.append(setter)
