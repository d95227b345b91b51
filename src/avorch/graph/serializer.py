"""Serialize a FilterGraph into ffmpeg's -filter_complex syntax."""

from avorch.graph.ir import FilterGraph, FilterNode


def serialize(graph: FilterGraph) -> str:
    """Return the filter_complex text for *graph*.

    Nodes are emitted in graph order and joined with ';'.
    """
    return ";".join(serialize_node(node) for node in graph.nodes)


def serialize_node(node: FilterNode) -> str:
    inputs = "".join(f"[{pad.label}]" for pad in node.inputs)
    outputs = "".join(f"[{pad.label}]" for pad in node.outputs)
    body = node.name
    if node.options:
        body += "=" + ":".join(f"{key}={value}" for key, value in node.options)
    return f"{inputs}{body}{outputs}"
