"""Filter graph construction."""

from avorch.graph.builder import FilterGraphBuilder
from avorch.graph.ir import FilterGraph, FilterNode, Pad, StreamKind
from avorch.graph.serializer import serialize

__all__ = [
    "FilterGraph",
    "FilterGraphBuilder",
    "FilterNode",
    "Pad",
    "StreamKind",
    "serialize",
]
