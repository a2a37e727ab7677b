import collections
from enum import Enum
from typing import Dict, List, Set, Optional, Any as AnyType, Iterable

import numpy as np

from .utils.logger import logger as logging
from .utils.graph_utils import collect_blobs

BLOB_SCALE_SUFFIX = ".scale"


class DataType(Enum):
    FLOAT = "float"
    HALF = "half"
    INT8 = "int8"
    INT32 = "int32"
    BFP16 = "bfp16"


class DataFormat(Enum):
    AUTO = "auto"
    NCHW = "NCHW"
    NHWC = "NHWC"
    NC4HW4 = "NC4HW4"
    NHWC4 = "NHWC4"


class DeviceType(Enum):
    NAIVE = "NAIVE"
    X86 = "X86"
    ARM = "ARM"
    CUDA = "CUDA"
    OPENCL = "OPENCL"
    METAL = "METAL"


class LayerType(Enum):
    REFORMAT = "Reformat"
    OTHER = "Other"

    @classmethod
    def from_type_str(cls, type_str: str) -> "LayerType":
        for member in cls:
            if member.value == type_str:
                return member
        return cls.OTHER


class OptPriority:
    """Pipeline slots. Lower runs first; fusion passes live in P0/P1."""

    P0 = 0
    P1 = 1
    P2 = 2


# =======================
# Errors
# =======================


class NetOptimizerError(Exception):
    """Base class for failures raised while rewriting a network."""


class StructuralError(NetOptimizerError):
    """The network structure is missing or malformed."""


class UnsupportedInputType(NetOptimizerError):
    """A declared graph input uses an element type outside {int8, float}."""

    def __init__(self, input_name: str, data_type):
        super().__init__(
            f"invalid data type {data_type} for model input '{input_name}'"
        )
        self.input_name = input_name
        self.data_type = data_type


class MissingScale(NetOptimizerError):
    """No blob scale is registered for a float tensor entering int8 layers."""

    def __init__(self, scale_name: str):
        super().__init__(f"can not get {scale_name} blob scale")
        self.scale_name = scale_name


class PipelineError(NetOptimizerError):
    """A pass returned a failing status; remaining passes were not run."""

    def __init__(self, strategy: str, status):
        super().__init__(f"Pass '{strategy}' failed: {status.message}")
        self.strategy = strategy
        self.status = status


# =======================
# Status
# =======================


class Status:
    """Result of a pass: success, no-op success or failure."""

    OK = 0
    NET_ERR = 0x3000
    UNSUPPORT_NET = 0x3001

    def __init__(self, code=OK, message="", changed=False):
        self.code = code
        self.message = message
        self.changed = changed

    @classmethod
    def ok(cls, changed=True):
        return cls(cls.OK, changed=changed)

    def __bool__(self):
        return self.code == self.OK

    def __repr__(self):
        if self:
            return f"Status(OK, changed={self.changed})"
        return f"Status(code=0x{self.code:x}, message={self.message!r})"


# =======================
# Network description
# =======================


class LayerParam:
    def __init__(self, name="", type="", quantized=False, extra=None):
        self.name = name
        self.type = type
        self.quantized = quantized
        self.extra: Dict[str, AnyType] = dict(extra or {})

    def __repr__(self):
        return f"{self.__class__.__name__}(name={self.name!r}, quantized={self.quantized})"


class ReformatLayerParam(LayerParam):
    def __init__(
        self,
        name="",
        src_type: DataType = DataType.FLOAT,
        dst_type: DataType = DataType.FLOAT,
        src_format: DataFormat = DataFormat.AUTO,
        dst_format: DataFormat = DataFormat.AUTO,
    ):
        super().__init__(name=name, type=LayerType.REFORMAT.value, quantized=False)
        self.src_type = src_type
        self.dst_type = dst_type
        self.src_format = src_format
        self.dst_format = dst_format


class Layer:
    """A node of the network: named, typed, with ordered input/output blobs."""

    def __init__(
        self,
        name: str,
        type_str: str,
        inputs: Optional[Iterable[str]] = None,
        outputs: Optional[Iterable[str]] = None,
        param: Optional[LayerParam] = None,
    ):
        self.name = name
        self.type_str = type_str
        self.type = LayerType.from_type_str(type_str)
        self.inputs: List[str] = list(inputs or [])
        self.outputs: List[str] = list(outputs or [])
        self.param = param if param is not None else LayerParam(name, type_str)

    @property
    def quantized(self) -> bool:
        return self.param.quantized

    @property
    def is_reformat(self) -> bool:
        return self.type == LayerType.REFORMAT

    def __repr__(self):
        return (
            f"Layer({self.name!r}, {self.type_str!r}, inputs={self.inputs}, "
            f"outputs={self.outputs}, quantized={self.quantized})"
        )


class NetStructure:
    """Ordered layer list (producers before consumers) plus graph inputs."""

    def __init__(
        self,
        layers: Optional[Iterable[Layer]] = None,
        inputs_shape_map: Optional[Dict[str, List[int]]] = None,
        input_data_type_map: Optional[Dict[str, DataType]] = None,
        outputs: Optional[Iterable[str]] = None,
        blobs: Optional[Iterable[str]] = None,
    ):
        self.layers: List[Layer] = list(layers or [])
        self.inputs_shape_map: Dict[str, List[int]] = collections.OrderedDict(
            inputs_shape_map or {}
        )
        self.input_data_type_map: Dict[str, DataType] = dict(input_data_type_map or {})
        self.outputs: Set[str] = set(outputs or [])
        if blobs is None:
            blobs = collect_blobs(self.layers, self.inputs_shape_map)
        self.blobs: Set[str] = set(blobs)

    def get_layer(self, name: str) -> Optional[Layer]:
        for layer in self.layers:
            if layer.name == name:
                return layer
        return None

    def is_quantized(self) -> bool:
        """True when at least one layer runs on int8 data."""
        return any(layer.quantized for layer in self.layers)


class BlobScale:
    """Per-channel int8 scale handle. Shared, never mutated after creation."""

    def __init__(self, scales, bias=None):
        self.scales = np.asarray(scales, dtype=np.float32).reshape(-1)
        self.bias = None if bias is None else np.asarray(bias, dtype=np.int8).reshape(-1)

    def __repr__(self):
        return f"BlobScale(channels={self.scales.size})"


class NetResource:
    """Keyed store of layer resources; blob scales live under `<blob>.scale`."""

    def __init__(self, resource_map: Optional[Dict[str, AnyType]] = None):
        self.resource_map: Dict[str, AnyType] = dict(resource_map or {})

    def get_blob_scale(self, blob_name: str):
        return self.resource_map.get(blob_name + BLOB_SCALE_SUFFIX)

    def alias_blob_scale(self, src_blob: str, dst_blob: str):
        """Registers the scale of `src_blob` under `dst_blob` as the same object."""
        src_key = src_blob + BLOB_SCALE_SUFFIX
        if src_key not in self.resource_map:
            raise MissingScale(src_key)
        self.resource_map[dst_blob + BLOB_SCALE_SUFFIX] = self.resource_map[src_key]


# =======================
# Devices & config
# =======================


class Device:
    """Capability descriptor of a backend."""

    def __init__(self, device_type: DeviceType, int8_layout_pair=None):
        self.device_type = device_type
        # (int8 layout, float layout) when the backend needs an explicit change
        self.int8_layout_pair = int8_layout_pair


_DEVICES = {
    DeviceType.ARM: Device(DeviceType.ARM, (DataFormat.NHWC4, DataFormat.NC4HW4)),
}


def get_device(device_type: DeviceType) -> Device:
    return _DEVICES.get(device_type) or Device(device_type)


class NetworkConfig:
    def __init__(self, device_type: DeviceType = DeviceType.NAIVE, **extra):
        if isinstance(device_type, str):
            device_type = DeviceType(device_type.upper())
        self.device_type = device_type
        self.extra = extra


# =======================
# Passes
# =======================


class BasePass:
    """Base class for all network optimizer passes."""

    priority = OptPriority.P1

    def __init__(self, name=None):
        self.name = name or self.__class__.__name__

    def strategy(self) -> str:
        """Stable identity used for lookup, ordering and logging."""
        raise NotImplementedError()

    def is_supported(self, net_config: NetworkConfig) -> bool:
        return True

    def optimize(self, structure: NetStructure, resource: NetResource) -> Status:
        """
        Rewrites `structure` (and `resource`) in place.

        Args:
            structure: The network to rewrite
            resource: Resources keyed by name (blob scales, weights)

        Returns:
            A Status; a failing status aborts the pipeline.
        """
        raise NotImplementedError()


class PassRegistry:
    """Lookup of the passes a pipeline was constructed with."""

    def __init__(self, passes: Optional[Iterable[BasePass]] = None):
        self._passes: Dict[str, BasePass] = collections.OrderedDict()
        for opt_pass in passes or []:
            self.register(opt_pass)

    def register(self, opt_pass: BasePass):
        name = opt_pass.strategy()
        if name in self._passes:
            logging.warning(f"Pass '{name}' registered twice, keeping the latest")
        self._passes[name] = opt_pass
        return opt_pass

    def get_pass(self, name: str) -> BasePass:
        if name not in self._passes:
            raise ValueError(f"Unknown pass: {name}")
        return self._passes[name]

    def list_available_passes(self) -> List[str]:
        return list(self._passes.keys())

    def get_ordered_passes(self) -> List[BasePass]:
        """Returns all passes sorted by priority (asc), then strategy name."""
        return sorted(self._passes.values(), key=lambda p: (p.priority, p.strategy()))

    def __contains__(self, name):
        return name in self._passes
