import os

import numpy as np
import tensorflow.compat.v1 as tf
from google.protobuf import text_format
from tensorflow.core.framework import attr_value_pb2
from tensorflow.core.framework import node_def_pb2
from tensorflow.core.framework import tensor_shape_pb2
from tensorflow.core.framework import types_pb2

from ..core import (
    BlobScale,
    DataFormat,
    DataType,
    Layer,
    LayerParam,
    LayerType,
    NetResource,
    NetStructure,
    ReformatLayerParam,
)
from .logger import logger

INPUT_OP = "Placeholder"
OUTPUTS_NODE = "_net_outputs"
OUTPUTS_ATTR = "_outputs"
SCALE_BIAS_SUFFIX = "#bias"

_DATA_TYPE_TO_TF = {
    DataType.FLOAT: types_pb2.DT_FLOAT,
    DataType.HALF: types_pb2.DT_HALF,
    DataType.INT8: types_pb2.DT_INT8,
    DataType.INT32: types_pb2.DT_INT32,
    DataType.BFP16: types_pb2.DT_BFLOAT16,
}
_TF_TO_DATA_TYPE = {v: k for k, v in _DATA_TYPE_TO_TF.items()}


def create_node(op, name, inputs=None, attr=None):
    """Creates a NodeDef proto."""
    node = node_def_pb2.NodeDef()
    node.op = op
    node.name = name
    if inputs:
        node.input.extend(inputs)
    if attr:
        for k, v in attr.items():
            node.attr[k].CopyFrom(v)
    return node


def _list_attr(values):
    return attr_value_pb2.AttrValue(
        list=attr_value_pb2.AttrValue.ListValue(s=[v.encode() for v in values])
    )


def _shape_attr(dims):
    shape = tensor_shape_pb2.TensorShapeProto(
        dim=[tensor_shape_pb2.TensorShapeProto.Dim(size=int(d)) for d in dims]
    )
    return attr_value_pb2.AttrValue(shape=shape)


def layer_to_node(layer: Layer) -> node_def_pb2.NodeDef:
    attr = {
        OUTPUTS_ATTR: _list_attr(layer.outputs),
        "quantized": attr_value_pb2.AttrValue(b=layer.quantized),
    }
    param = layer.param
    if isinstance(param, ReformatLayerParam):
        attr["src_type"] = attr_value_pb2.AttrValue(type=_DATA_TYPE_TO_TF[param.src_type])
        attr["dst_type"] = attr_value_pb2.AttrValue(type=_DATA_TYPE_TO_TF[param.dst_type])
        attr["src_format"] = attr_value_pb2.AttrValue(s=param.src_format.value.encode())
        attr["dst_format"] = attr_value_pb2.AttrValue(s=param.dst_format.value.encode())
    return create_node(layer.type_str, layer.name, inputs=layer.inputs, attr=attr)


def node_to_layer(node: node_def_pb2.NodeDef) -> Layer:
    outputs = [s.decode() for s in node.attr[OUTPUTS_ATTR].list.s]
    quantized = node.attr["quantized"].b if "quantized" in node.attr else False
    if LayerType.from_type_str(node.op) == LayerType.REFORMAT:
        for key in ("src_type", "dst_type"):
            if key not in node.attr or node.attr[key].type not in _TF_TO_DATA_TYPE:
                raise ValueError(f"Reformat layer {node.name} has no valid {key}")
        param = ReformatLayerParam(
            name=node.name,
            src_type=_TF_TO_DATA_TYPE[node.attr["src_type"].type],
            dst_type=_TF_TO_DATA_TYPE[node.attr["dst_type"].type],
        )
        if "src_format" in node.attr:
            param.src_format = DataFormat(node.attr["src_format"].s.decode())
            param.dst_format = DataFormat(node.attr["dst_format"].s.decode())
    else:
        param = LayerParam(name=node.name, type=node.op, quantized=quantized)
    return Layer(node.name, node.op, inputs=list(node.input), outputs=outputs, param=param)


def structure_to_graph_def(structure: NetStructure) -> tf.GraphDef:
    """Encodes a NetStructure as a GraphDef; model inputs become Placeholders."""
    graph_def = tf.GraphDef()
    for name, shape in structure.inputs_shape_map.items():
        attr = {"shape": _shape_attr(shape)}
        data_type = structure.input_data_type_map.get(name)
        if data_type is not None:
            attr["dtype"] = attr_value_pb2.AttrValue(type=_DATA_TYPE_TO_TF[data_type])
        graph_def.node.append(create_node(INPUT_OP, name, attr=attr))
    for layer in structure.layers:
        graph_def.node.append(layer_to_node(layer))
    if structure.outputs:
        graph_def.node.append(
            create_node("NoOp", OUTPUTS_NODE, attr={OUTPUTS_ATTR: _list_attr(sorted(structure.outputs))})
        )
    return graph_def


def graph_def_to_structure(graph_def: tf.GraphDef) -> NetStructure:
    inputs_shape_map = {}
    input_data_type_map = {}
    layers = []
    outputs = []
    for node in graph_def.node:
        if node.op == INPUT_OP:
            inputs_shape_map[node.name] = [d.size for d in node.attr["shape"].shape.dim]
            if "dtype" in node.attr:
                dtype = node.attr["dtype"].type
                if dtype not in _TF_TO_DATA_TYPE:
                    raise ValueError(
                        f"Unsupported dtype {types_pb2.DataType.Name(dtype)} for input {node.name}"
                    )
                input_data_type_map[node.name] = _TF_TO_DATA_TYPE[dtype]
        elif node.name == OUTPUTS_NODE:
            outputs = [s.decode() for s in node.attr[OUTPUTS_ATTR].list.s]
        else:
            layers.append(node_to_layer(node))
    return NetStructure(
        layers=layers,
        inputs_shape_map=inputs_shape_map,
        input_data_type_map=input_data_type_map,
        outputs=outputs,
    )


def save_graph(structure: NetStructure, path):
    """Saves a NetStructure as a GraphDef proto (binary or pbtxt)."""
    graph_def = structure_to_graph_def(structure)
    # Ensure output directory exists
    output_dir = os.path.dirname(path)
    if output_dir and not os.path.exists(output_dir):
        os.makedirs(output_dir, exist_ok=True)

    if path.endswith(".pbtxt"):
        with open(path, "w") as f:
            f.write(text_format.MessageToString(graph_def))
    else:
        with open(path, "wb") as f:
            f.write(graph_def.SerializeToString())


def load_graph(path) -> NetStructure:
    """Loads a NetStructure from a GraphDef proto file."""
    if not os.path.exists(path):
        raise FileNotFoundError(f"Graph file not found: {path}")

    graph_def = tf.GraphDef()
    if path.endswith(".pbtxt"):
        with open(path, "r") as f:
            text_format.Merge(f.read(), graph_def)
    else:
        with open(path, "rb") as f:
            graph_def.ParseFromString(f.read())
    return graph_def_to_structure(graph_def)


def save_scales(resource: NetResource, path):
    """Saves every BlobScale of `resource` into a numpy .npz archive."""
    arrays = {}
    for key, value in resource.resource_map.items():
        if not isinstance(value, BlobScale):
            logger.debug(f"Skipping non-scale resource {key}")
            continue
        arrays[key] = value.scales
        if value.bias is not None:
            arrays[key + SCALE_BIAS_SUFFIX] = value.bias
    output_dir = os.path.dirname(path)
    if output_dir and not os.path.exists(output_dir):
        os.makedirs(output_dir, exist_ok=True)
    with open(path, "wb") as f:
        np.savez(f, **arrays)


def load_scales(path) -> NetResource:
    if not os.path.exists(path):
        raise FileNotFoundError(f"Scale file not found: {path}")
    resource = NetResource()
    with np.load(path) as data:
        for key in data.files:
            if key.endswith(SCALE_BIAS_SUFFIX):
                continue
            bias_key = key + SCALE_BIAS_SUFFIX
            bias = data[bias_key] if bias_key in data.files else None
            resource.resource_map[key] = BlobScale(data[key], bias)
    return resource
