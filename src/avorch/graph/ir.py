"""Filter graph intermediate representation.

A graph is a tuple of filter nodes connected through labelled pads. Engine
inputs are referenced by ``<index>:v`` / ``<index>:a`` pads; every other
pad is produced by exactly one node. All types are frozen so a built graph
can be compared and hashed.
"""

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path


class StreamKind(str, Enum):
    """Media type carried by a pad."""

    VIDEO = "v"
    AUDIO = "a"


@dataclass(frozen=True)
class Pad:
    """A labelled edge endpoint."""

    label: str
    kind: StreamKind

    @classmethod
    def source(cls, input_index: int, kind: StreamKind) -> "Pad":
        """Pad reading stream *kind* of engine input *input_index*."""
        return cls(f"{input_index}:{kind.value}", kind)

    @property
    def is_source(self) -> bool:
        return ":" in self.label


@dataclass(frozen=True)
class FilterNode:
    """One filter primitive with its option list."""

    name: str
    inputs: tuple[Pad, ...]
    outputs: tuple[Pad, ...]
    options: tuple[tuple[str, str], ...] = field(default=())

    def option(self, key: str) -> str | None:
        for name, value in self.options:
            if name == key:
                return value
        return None


@dataclass(frozen=True)
class FilterGraph:
    """Complete graph over an ordered list of engine inputs."""

    inputs: tuple[Path, ...]
    nodes: tuple[FilterNode, ...]
    outputs: tuple[Pad, ...]

    def nodes_named(self, name: str) -> list[FilterNode]:
        return [n for n in self.nodes if n.name == name]

    def output(self, kind: StreamKind) -> Pad | None:
        """The mapped output pad of the given kind, if any."""
        for pad in self.outputs:
            if pad.kind is kind:
                return pad
        return None

    def producer(self, pad: Pad) -> FilterNode | None:
        """The node that outputs *pad*."""
        for node in self.nodes:
            if pad in node.outputs:
                return node
        return None
