from typing import Dict, List, Optional, Tuple

from ..core import (
    BLOB_SCALE_SUFFIX,
    BasePass,
    DataType,
    Device,
    Layer,
    LayerType,
    MissingScale,
    NetResource,
    NetStructure,
    NetworkConfig,
    DeviceType,
    OptPriority,
    ReformatLayerParam,
    Status,
    StructuralError,
    UnsupportedInputType,
    get_device,
)
from ..utils.graph_utils import build_consumer_index, later_consumers, replace_layer_input
from ..utils.logger import logger as logging, log_optimization

kNetOptimizerInsertInt8Reformat = "net_optimizer_insert_int8_reformat"

REFORMAT_NAME_SUFFIX = ".reformat"
MODEL_INPUT_SUFFIX = REFORMAT_NAME_SUFFIX + ".from_input"

SUPPORTED_DEVICES = (DeviceType.ARM, DeviceType.NAIVE, DeviceType.X86)


class ReformatLayerFactory:
    """Builds Reformat layers converting between int8 and float blobs."""

    @staticmethod
    def create_adapter(name: str, src_quantized: bool, device: Optional[Device] = None) -> Layer:
        param = ReformatLayerParam(name=name)
        # only quant/dequant is decided here, layout is left to layer init
        param.src_type = DataType.INT8 if src_quantized else DataType.FLOAT
        param.dst_type = DataType.FLOAT if src_quantized else DataType.INT8
        if device is not None and device.int8_layout_pair is not None:
            int8_format, float_format = device.int8_layout_pair
            param.src_format = int8_format if src_quantized else float_format
            param.dst_format = float_format if src_quantized else int8_format
        return Layer(name, LayerType.REFORMAT.value, param=param)


class BoundaryDetector:
    """
    Finds blobs whose producer and consumers disagree on quantization.

    Reformat layers are never treated as producers or consumers of a boundary.
    """

    def __init__(self, layers: List[Layer]):
        self.layers = layers
        self.consumer_index = build_consumer_index(layers)

    def differing_consumers(self, blob: str, index: int, src_quantized: bool) -> List[int]:
        """Positions after `index` of non-Reformat layers reading `blob` with the other flag."""
        result = []
        for i in later_consumers(self.consumer_index, blob, index):
            layer = self.layers[i]
            if layer.is_reformat or blob not in layer.inputs:
                continue
            if layer.quantized != src_quantized:
                result.append(i)
        return result

    def count_input_consumers(self, input_name: str) -> Tuple[int, int]:
        """Returns (layers needing int8, layers needing float) for a model input."""
        need_int8 = 0
        need_fp32 = 0
        for i in later_consumers(self.consumer_index, input_name, -1):
            if self.layers[i].is_reformat:
                continue
            if self.layers[i].quantized:
                need_int8 += 1
            else:
                need_fp32 += 1
        return need_int8, need_fp32

    def find_marked_outputs(self, index: int) -> List[str]:
        layer = self.layers[index]
        if layer.is_reformat:
            return []
        return [
            out
            for out in layer.outputs
            if self.differing_consumers(out, index, layer.quantized)
        ]


class GraphRewriter:
    """Applies a detected boundary: wires a Reformat layer and copies scales."""

    def __init__(
        self,
        structure: NetStructure,
        resource: NetResource,
        detector: BoundaryDetector,
    ):
        self.structure = structure
        self.resource = resource
        self.detector = detector
        self.missing_scales: List[str] = []

    def adjust_layer(
        self,
        src_quantized: bool,
        new_layer: Layer,
        blobs: List[str],
        index: int,
        suffix: str = REFORMAT_NAME_SUFFIX,
    ):
        """
        Makes `new_layer` convert `blobs` and redirects differing consumers.

        Args:
            src_quantized: Quantization status of the blobs' producer
            new_layer: Reformat layer to wire
            blobs: Blobs converted by `new_layer`
            index: Position of the producer; -1 for model inputs
            suffix: Appended to each blob to name the converted blob
        """
        new_layer.inputs = list(blobs)
        for blob in blobs:
            new_out = blob + suffix
            new_layer.outputs.append(new_out)
            self.structure.blobs.add(new_out)
            # only use the reformat output where the quantized flag differs
            for i in self.detector.differing_consumers(blob, index, src_quantized):
                replace_layer_input(self.detector.layers[i], blob, new_out)
            if not src_quantized:
                self._copy_blob_scale(blob, new_out)

    def _copy_blob_scale(self, blob: str, new_out: str):
        try:
            self.resource.alias_blob_scale(blob, new_out)
        except MissingScale as e:
            logging.error(f"[{kNetOptimizerInsertInt8Reformat}] {e}")
            self.missing_scales.append(e.scale_name)


class InsertInt8ReformatPass(BasePass):
    """
    Inserts Reformat layers on every int8/float boundary of a network.

    Runs late (after fusion) so layer boundaries are final. Not idempotent:
    running it twice on the same network inserts redundant Reformat layers.
    """

    priority = OptPriority.P2

    def __init__(self, strict_scales: bool = False):
        super().__init__(name="InsertInt8Reformat")
        self.strict_scales = strict_scales
        self.device: Optional[Device] = None
        self.factory = ReformatLayerFactory()

    def strategy(self) -> str:
        return kNetOptimizerInsertInt8Reformat

    def is_supported(self, net_config: NetworkConfig) -> bool:
        device = net_config.device_type
        self.device = get_device(device)
        return device in SUPPORTED_DEVICES

    @log_optimization
    def optimize(self, structure: Optional[NetStructure], resource: Optional[NetResource]) -> Status:
        try:
            return self._optimize(structure, resource if resource is not None else NetResource())
        except StructuralError as e:
            logging.error(f"Error: {e}")
            return Status(Status.NET_ERR, str(e))
        except UnsupportedInputType as e:
            logging.error(f"[{self.strategy()}] get {e}")
            return Status(Status.UNSUPPORT_NET, str(e))
        except MissingScale as e:
            logging.error(f"[{self.strategy()}] {e}")
            return Status(Status.NET_ERR, str(e))

    def _optimize(self, structure: NetStructure, resource: NetResource) -> Status:
        if structure is None:
            raise StructuralError("empty NetStructure")

        layers_orig = list(structure.layers)
        count = len(layers_orig)
        if count <= 1:
            return Status.ok(changed=False)

        # only insert reformat for quantized networks
        if not structure.is_quantized():
            return Status.ok(changed=False)

        detector = BoundaryDetector(layers_orig)
        input_plan = self._plan_model_inputs(structure, detector)
        if self.strict_scales:
            self._check_blob_scales(input_plan, detector, resource)
        rewriter = GraphRewriter(structure, resource, detector)
        layers_fused: List[Layer] = []

        # model inputs read by both int8 and float layers get a reformat
        # layer ahead of every original layer
        for model_input, src_quantized in input_plan.items():
            new_layer = self.factory.create_adapter(
                model_input + MODEL_INPUT_SUFFIX, src_quantized, self.device
            )
            rewriter.adjust_layer(src_quantized, new_layer, [model_input], -1, MODEL_INPUT_SUFFIX)
            logging.debug(
                f"Insert int8 reformat layer: src {new_layer.inputs[0]} dst {new_layer.outputs[0]}"
            )
            layers_fused.append(new_layer)

        for index, cur_layer in enumerate(layers_orig):
            layers_fused.append(cur_layer)
            reformat_outs = detector.find_marked_outputs(index)
            if not reformat_outs:
                continue

            new_layer = self.factory.create_adapter(
                cur_layer.name + REFORMAT_NAME_SUFFIX, cur_layer.quantized, self.device
            )
            rewriter.adjust_layer(cur_layer.quantized, new_layer, reformat_outs, index)
            logging.debug(
                f"Insert int8 reformat layer: src {new_layer.inputs} dst {new_layer.outputs}"
            )
            layers_fused.append(new_layer)

        structure.layers = layers_fused
        if rewriter.missing_scales:
            logging.warning(
                f"[{self.strategy()}] {len(rewriter.missing_scales)} reformatted blob(s) "
                f"without scale: {', '.join(rewriter.missing_scales)}"
            )
        return Status.ok(changed=len(layers_fused) != count)

    def _plan_model_inputs(self, structure: NetStructure, detector: BoundaryDetector) -> Dict[str, bool]:
        """Model inputs needing a reformat, mapped to their quantized status.

        Every input type is validated before the network is touched.
        """
        plan = {}
        for model_input in structure.inputs_shape_map:
            logging.debug(f"[{self.strategy()}] process model input: {model_input}")
            need_int8, need_fp32 = detector.count_input_consumers(model_input)
            if need_int8 == 0 or need_fp32 == 0:
                continue
            data_type = structure.input_data_type_map.get(model_input)
            if data_type == DataType.FLOAT:
                plan[model_input] = False
            elif data_type == DataType.INT8:
                plan[model_input] = True
            else:
                raise UnsupportedInputType(model_input, data_type)
        return plan

    def _check_blob_scales(
        self, input_plan: Dict[str, bool], detector: BoundaryDetector, resource: NetResource
    ):
        """Raises MissingScale before any rewrite if a float blob entering int8 has no scale."""
        float_blobs = [name for name, src_quantized in input_plan.items() if not src_quantized]
        for index, layer in enumerate(detector.layers):
            if not layer.quantized:
                float_blobs.extend(detector.find_marked_outputs(index))
        for blob in float_blobs:
            scale_name = blob + BLOB_SCALE_SUFFIX
            if scale_name not in resource.resource_map:
                raise MissingScale(scale_name)
