"""
Network manipulation utility functions.

Stateless helpers shared by the optimizer passes for indexing blob
consumers and rewriting layer inputs.
"""

import collections
from typing import Dict, List, Iterable


def build_consumer_index(layers) -> Dict[str, List[int]]:
    """
    Build consumer index from a layer sequence.

    Args:
        layers: Ordered layers of the network

    Returns:
        Dict mapping blob names to the ascending positions of the layers that
        read them. A layer reading the same blob twice is listed once.
    """
    consumers = collections.defaultdict(list)
    for index, layer in enumerate(layers):
        for input_name in dict.fromkeys(layer.inputs):
            consumers[input_name].append(index)
    return consumers


def later_consumers(consumer_index: Dict[str, List[int]], blob: str, index: int) -> List[int]:
    """Positions of consumers of `blob` strictly after position `index`."""
    return [i for i in consumer_index.get(blob, []) if i > index]


def replace_layer_input(layer, old_name: str, new_name: str) -> int:
    """
    Replace every occurrence of `old_name` in the layer's inputs.

    Returns:
        Number of replaced entries.
    """
    replaced = 0
    for i, input_name in enumerate(layer.inputs):
        if input_name == old_name:
            layer.inputs[i] = new_name
            replaced += 1
    return replaced


def collect_blobs(layers, graph_inputs: Iterable[str] = ()) -> set:
    """All blob names referenced by graph inputs or any layer."""
    blobs = set(graph_inputs)
    for layer in layers:
        blobs.update(layer.inputs)
        blobs.update(layer.outputs)
    return blobs
