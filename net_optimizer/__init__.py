from .core import (
    BLOB_SCALE_SUFFIX,
    BasePass,
    BlobScale,
    DataFormat,
    DataType,
    Device,
    DeviceType,
    Layer,
    LayerParam,
    LayerType,
    MissingScale,
    NetOptimizerError,
    NetResource,
    NetStructure,
    NetworkConfig,
    OptPriority,
    PassRegistry,
    PipelineError,
    ReformatLayerParam,
    Status,
    StructuralError,
    UnsupportedInputType,
    get_device,
)
from .utils.graph_io import load_graph, save_graph, load_scales, save_scales
from .optimizers import InsertInt8ReformatPass, ReformatLayerFactory, default_passes
from .runner import OptimizationPipeline
from .utils.logger import set_log_level, DEBUG, INFO, WARNING, ERROR

__all__ = [
    "BLOB_SCALE_SUFFIX",
    "BasePass",
    "BlobScale",
    "DataFormat",
    "DataType",
    "Device",
    "DeviceType",
    "Layer",
    "LayerParam",
    "LayerType",
    "MissingScale",
    "NetOptimizerError",
    "NetResource",
    "NetStructure",
    "NetworkConfig",
    "OptPriority",
    "PassRegistry",
    "PipelineError",
    "ReformatLayerParam",
    "Status",
    "StructuralError",
    "UnsupportedInputType",
    "get_device",
    "load_graph",
    "save_graph",
    "load_scales",
    "save_scales",
    "InsertInt8ReformatPass",
    "ReformatLayerFactory",
    "default_passes",
    "OptimizationPipeline",
    "set_log_level",
    "DEBUG",
    "INFO",
    "WARNING",
    "ERROR",
]
