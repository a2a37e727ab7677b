from typing import Set, Optional


def export_to_dot(structure, highlight_layers: Optional[Set[str]] = None) -> str:
    """
    Exports a NetStructure to GraphViz DOT format.

    Int8 layers are filled gray, Reformat layers orange; edges are labelled
    with the blob they carry.

    Args:
        structure: The NetStructure to export.
        highlight_layers: Optional set of layer names to highlight in the diagram.

    Returns:
        A string containing the DOT representation of the network.
    """
    highlight_layers = highlight_layers or set()
    dot = ["digraph G {"]
    dot.append('  node [shape=box, style=filled, fillcolor=white, fontname="Courier"];')
    dot.append('  edge [fontname="Courier"];')

    producers = {}
    for name in structure.inputs_shape_map:
        producers[name] = name
        dot.append(f'  "{name}" [label="{name}\\n(Input)", shape=ellipse];')

    for layer in structure.layers:
        if layer.name in highlight_layers:
            color = "lightblue"
        elif layer.is_reformat:
            color = "orange"
        elif layer.quantized:
            color = "lightgray"
        else:
            color = "white"
        label = f"{layer.name}\\n({layer.type_str})"
        dot.append(f'  "{layer.name}" [label="{label}", fillcolor="{color}"];')

        for input_name in layer.inputs:
            src = producers.get(input_name, input_name)
            dot.append(f'  "{src}" -> "{layer.name}" [label="{input_name}"];')
        for output_name in layer.outputs:
            producers[output_name] = layer.name

    dot.append("}")
    return "\n".join(dot)


def save_dot(structure, path: str, highlight_layers: Optional[Set[str]] = None):
    """Saves the DOT representation of a network to a file."""
    dot_content = export_to_dot(structure, highlight_layers)
    with open(path, "w") as f:
        f.write(dot_content)
