import unittest

from net_optimizer.core import (
    BlobScale,
    DataFormat,
    DataType,
    DeviceType,
    Layer,
    LayerParam,
    NetResource,
    NetStructure,
    NetworkConfig,
    ReformatLayerParam,
    Status,
    get_device,
)
from net_optimizer.optimizers.insert_int8_reformat import (
    InsertInt8ReformatPass,
    ReformatLayerFactory,
    BoundaryDetector,
    kNetOptimizerInsertInt8Reformat,
)


def make_layer(name, inputs, outputs, quantized=False, type_str="Convolution"):
    param = LayerParam(name=name, type=type_str, quantized=quantized)
    return Layer(name, type_str, inputs=inputs, outputs=outputs, param=param)


def make_reformat(name, inputs, outputs):
    param = ReformatLayerParam(name=name, src_type=DataType.INT8, dst_type=DataType.FLOAT)
    return Layer(name, "Reformat", inputs=inputs, outputs=outputs, param=param)


def run_pass(structure, resource=None, device=DeviceType.NAIVE, **kwargs):
    opt_pass = InsertInt8ReformatPass(**kwargs)
    opt_pass.is_supported(NetworkConfig(device))
    return opt_pass.optimize(structure, resource if resource is not None else NetResource())


class TestPassContract(unittest.TestCase):
    def test_strategy(self):
        self.assertEqual(InsertInt8ReformatPass().strategy(), kNetOptimizerInsertInt8Reformat)

    def test_supported_devices(self):
        opt_pass = InsertInt8ReformatPass()
        for device in (DeviceType.ARM, DeviceType.NAIVE, DeviceType.X86):
            self.assertTrue(opt_pass.is_supported(NetworkConfig(device)))
        for device in (DeviceType.CUDA, DeviceType.OPENCL, DeviceType.METAL):
            self.assertFalse(opt_pass.is_supported(NetworkConfig(device)))

    def test_is_supported_binds_device(self):
        opt_pass = InsertInt8ReformatPass()
        opt_pass.is_supported(NetworkConfig("arm"))
        self.assertIs(opt_pass.device, get_device(DeviceType.ARM))

    def test_unknown_device_lookup_is_pure(self):
        from net_optimizer import core

        known = dict(core._DEVICES)
        device = get_device(DeviceType.METAL)
        self.assertEqual(device.device_type, DeviceType.METAL)
        self.assertIsNone(device.int8_layout_pair)
        self.assertEqual(core._DEVICES, known)

    def test_none_structure_fails(self):
        status = InsertInt8ReformatPass().optimize(None, NetResource())
        self.assertFalse(status)
        self.assertEqual(status.code, Status.NET_ERR)


class TestNoOp(unittest.TestCase):
    def test_empty_network(self):
        structure = NetStructure()
        status = run_pass(structure)
        self.assertTrue(status)
        self.assertFalse(status.changed)
        self.assertEqual(structure.layers, [])

    def test_single_layer(self):
        layer = make_layer("conv", ["data"], ["x"], quantized=True)
        structure = NetStructure(
            layers=[layer],
            inputs_shape_map={"data": [1, 3, 8, 8]},
            input_data_type_map={"data": DataType.FLOAT},
        )
        status = run_pass(structure)
        self.assertTrue(status)
        self.assertFalse(status.changed)
        self.assertEqual(structure.layers, [layer])
        self.assertEqual(layer.inputs, ["data"])

    def test_float_network(self):
        layers = [
            make_layer("a", ["data"], ["x"]),
            make_layer("b", ["x"], ["y"]),
            make_layer("c", ["x", "y"], ["z"]),
        ]
        structure = NetStructure(layers=list(layers), inputs_shape_map={"data": [1]})
        blobs = set(structure.blobs)
        status = run_pass(structure)
        self.assertTrue(status)
        self.assertFalse(status.changed)
        self.assertEqual(structure.layers, layers)
        self.assertEqual(structure.blobs, blobs)

    def test_all_quantized_chain(self):
        a = make_layer("a", ["data"], ["x"], quantized=True)
        b = make_layer("b", ["x"], ["y"], quantized=True)
        structure = NetStructure(
            layers=[a, b],
            inputs_shape_map={"data": [1]},
            input_data_type_map={"data": DataType.INT8},
        )
        status = run_pass(structure)
        self.assertTrue(status)
        self.assertEqual(structure.layers, [a, b])
        self.assertEqual(b.inputs, ["x"])


class TestModelInputReformat(unittest.TestCase):
    def test_float_input_feeds_mixed_layers(self):
        a = make_layer("A", ["data"], ["a_out"], quantized=False)
        b = make_layer("B", ["data"], ["b_out"], quantized=True)
        structure = NetStructure(
            layers=[a, b],
            inputs_shape_map={"data": [1, 3, 8, 8]},
            input_data_type_map={"data": DataType.FLOAT},
        )
        scale = BlobScale([0.5, 0.25, 0.125])
        resource = NetResource({"data.scale": scale})

        status = run_pass(structure, resource)
        self.assertTrue(status)
        self.assertTrue(status.changed)

        self.assertEqual(len(structure.layers), 3)
        reformat = structure.layers[0]
        self.assertTrue(reformat.is_reformat)
        self.assertEqual(reformat.name, "data.reformat.from_input")
        self.assertEqual(reformat.inputs, ["data"])
        self.assertEqual(reformat.outputs, ["data.reformat.from_input"])
        self.assertEqual(reformat.param.src_type, DataType.FLOAT)
        self.assertEqual(reformat.param.dst_type, DataType.INT8)

        self.assertEqual(a.inputs, ["data"])
        self.assertEqual(b.inputs, ["data.reformat.from_input"])
        self.assertIn("data.reformat.from_input", structure.blobs)
        self.assertIs(resource.resource_map["data.reformat.from_input.scale"], scale)

    def test_int8_input_feeds_mixed_layers(self):
        a = make_layer("A", ["data"], ["a_out"], quantized=False)
        b = make_layer("B", ["data"], ["b_out"], quantized=True)
        structure = NetStructure(
            layers=[a, b],
            inputs_shape_map={"data": [1, 3, 8, 8]},
            input_data_type_map={"data": DataType.INT8},
        )
        resource = NetResource()
        status = run_pass(structure, resource)
        self.assertTrue(status)

        reformat = structure.layers[0]
        self.assertEqual(reformat.param.src_type, DataType.INT8)
        self.assertEqual(reformat.param.dst_type, DataType.FLOAT)
        self.assertEqual(a.inputs, ["data.reformat.from_input"])
        self.assertEqual(b.inputs, ["data"])
        # int8 -> float never copies scales
        self.assertEqual(resource.resource_map, {})

    def test_input_with_single_consumer_kind_is_untouched(self):
        a = make_layer("A", ["data"], ["x"], quantized=True)
        b = make_layer("B", ["data", "x"], ["y"], quantized=True)
        structure = NetStructure(
            layers=[a, b],
            inputs_shape_map={"data": [1]},
            input_data_type_map={"data": DataType.FLOAT},
        )
        status = run_pass(structure)
        self.assertTrue(status)
        self.assertEqual(structure.layers, [a, b])
        self.assertEqual(a.inputs, ["data"])

    def test_unsupported_input_type_aborts(self):
        a = make_layer("A", ["data"], ["a_out"], quantized=False)
        b = make_layer("B", ["data"], ["b_out"], quantized=True)
        c = make_layer("C", ["a_out"], ["c_out"], quantized=True)
        structure = NetStructure(
            layers=[a, b, c],
            inputs_shape_map={"data": [1]},
            input_data_type_map={"data": DataType.HALF},
        )
        resource = NetResource({"a_out.scale": BlobScale([1.0])})
        status = run_pass(structure, resource)

        self.assertFalse(status)
        self.assertEqual(status.code, Status.UNSUPPORT_NET)
        self.assertEqual(structure.layers, [a, b, c])
        self.assertEqual(b.inputs, ["data"])
        self.assertEqual(c.inputs, ["a_out"])

    def test_float_input_without_scale(self):
        a = make_layer("A", ["data"], ["a_out"], quantized=False)
        b = make_layer("B", ["data"], ["b_out"], quantized=True)
        structure = NetStructure(
            layers=[a, b],
            inputs_shape_map={"data": [1, 3, 8, 8]},
            input_data_type_map={"data": DataType.FLOAT},
        )
        resource = NetResource()

        with self.assertLogs("NetOptimizer", level="ERROR") as logs:
            status = run_pass(structure, resource)

        self.assertTrue(status)
        self.assertEqual(structure.layers[0].name, "data.reformat.from_input")
        self.assertEqual(a.inputs, ["data"])
        self.assertEqual(b.inputs, ["data.reformat.from_input"])
        self.assertNotIn("data.reformat.from_input.scale", resource.resource_map)
        self.assertTrue(any("data.scale" in line for line in logs.output))

    def test_float_input_without_scale_strict(self):
        a = make_layer("A", ["data"], ["a_out"], quantized=False)
        b = make_layer("B", ["data"], ["b_out"], quantized=True)
        structure = NetStructure(
            layers=[a, b],
            inputs_shape_map={"data": [1]},
            input_data_type_map={"data": DataType.FLOAT},
        )
        status = run_pass(structure, NetResource(), strict_scales=True)
        self.assertEqual(status.code, Status.NET_ERR)
        self.assertEqual(structure.layers, [a, b])
        self.assertEqual(b.inputs, ["data"])
        self.assertNotIn("data.reformat.from_input", structure.blobs)

    def test_missing_input_type_aborts(self):
        a = make_layer("A", ["data"], ["a_out"], quantized=False)
        b = make_layer("B", ["data"], ["b_out"], quantized=True)
        structure = NetStructure(layers=[a, b], inputs_shape_map={"data": [1]})
        status = run_pass(structure)
        self.assertEqual(status.code, Status.UNSUPPORT_NET)


class TestInteriorReformat(unittest.TestCase):
    def test_mixed_consumers(self):
        p = make_layer("P", ["data"], ["x"], quantized=False)
        q = make_layer("Q", ["x"], ["q_out"], quantized=True)
        r = make_layer("R", ["x"], ["r_out"], quantized=False)
        structure = NetStructure(
            layers=[p, q, r],
            inputs_shape_map={"data": [1]},
            input_data_type_map={"data": DataType.FLOAT},
        )
        scale = BlobScale([0.1])
        resource = NetResource({"x.scale": scale})

        status = run_pass(structure, resource)
        self.assertTrue(status)

        self.assertEqual([layer.name for layer in structure.layers], ["P", "P.reformat", "Q", "R"])
        reformat = structure.layers[1]
        self.assertEqual(reformat.inputs, ["x"])
        self.assertEqual(reformat.outputs, ["x.reformat"])
        self.assertEqual(q.inputs, ["x.reformat"])
        self.assertEqual(r.inputs, ["x"])
        self.assertIn("x.reformat", structure.blobs)
        self.assertIs(resource.resource_map["x.reformat.scale"], scale)

    def test_missing_scale_keeps_rewiring(self):
        p = make_layer("P", ["data"], ["x"], quantized=False)
        q = make_layer("Q", ["x"], ["q_out"], quantized=True)
        structure = NetStructure(
            layers=[p, q],
            inputs_shape_map={"data": [1]},
            input_data_type_map={"data": DataType.FLOAT},
        )
        resource = NetResource()

        with self.assertLogs("NetOptimizer", level="ERROR") as logs:
            status = run_pass(structure, resource)

        self.assertTrue(status)
        self.assertEqual([layer.name for layer in structure.layers], ["P", "P.reformat", "Q"])
        self.assertEqual(q.inputs, ["x.reformat"])
        self.assertNotIn("x.reformat.scale", resource.resource_map)
        self.assertTrue(any("x.scale" in line for line in logs.output))

    def test_missing_scale_strict_fails(self):
        p = make_layer("P", ["data"], ["x"], quantized=False)
        q = make_layer("Q", ["x"], ["q_out"], quantized=True)
        structure = NetStructure(layers=[p, q], inputs_shape_map={"data": [1]})
        status = run_pass(structure, NetResource(), strict_scales=True)
        self.assertFalse(status)
        self.assertEqual(status.code, Status.NET_ERR)
        self.assertEqual(q.inputs, ["x"])
        self.assertEqual(structure.layers, [p, q])
        self.assertNotIn("x.reformat", structure.blobs)

    def test_missing_scale_strict_checks_later_producers(self):
        a = make_layer("A", ["data"], ["x"], quantized=False)
        b = make_layer("B", ["x"], ["y"], quantized=True)
        c = make_layer("C", ["y"], ["z"], quantized=False)
        d = make_layer("D", ["z"], ["w"], quantized=True)
        structure = NetStructure(layers=[a, b, c, d], inputs_shape_map={"data": [1]})
        resource = NetResource({"x.scale": BlobScale([1.0])})
        blobs = set(structure.blobs)

        status = run_pass(structure, resource, strict_scales=True)
        self.assertFalse(status)
        self.assertIn("z.scale", status.message)
        self.assertEqual(structure.layers, [a, b, c, d])
        self.assertEqual(b.inputs, ["x"])
        self.assertEqual(d.inputs, ["z"])
        self.assertEqual(structure.blobs, blobs)
        self.assertEqual(set(resource.resource_map), {"x.scale"})

    def test_missing_scale_only_skips_that_blob(self):
        p = make_layer("P", ["data"], ["x", "y"], quantized=False)
        q = make_layer("Q", ["x", "y"], ["q_out"], quantized=True)
        structure = NetStructure(layers=[p, q], inputs_shape_map={"data": [1]})
        scale_y = BlobScale([2.0])
        resource = NetResource({"y.scale": scale_y})

        status = run_pass(structure, resource)
        self.assertTrue(status)
        self.assertEqual(q.inputs, ["x.reformat", "y.reformat"])
        self.assertNotIn("x.reformat.scale", resource.resource_map)
        self.assertIs(resource.resource_map["y.reformat.scale"], scale_y)

    def test_int8_to_float_boundary(self):
        p = make_layer("P", ["data"], ["x"], quantized=True)
        q = make_layer("Q", ["x"], ["y"], quantized=False)
        structure = NetStructure(
            layers=[p, q],
            inputs_shape_map={"data": [1]},
            input_data_type_map={"data": DataType.INT8},
        )
        resource = NetResource()
        status = run_pass(structure, resource)
        self.assertTrue(status)

        reformat = structure.layers[1]
        self.assertEqual(reformat.param.src_type, DataType.INT8)
        self.assertEqual(reformat.param.dst_type, DataType.FLOAT)
        self.assertEqual(q.inputs, ["x.reformat"])
        self.assertEqual(resource.resource_map, {})

    def test_one_reformat_per_producer(self):
        p = make_layer("P", ["data"], ["x", "y", "z"], quantized=True)
        q = make_layer("Q", ["x", "z", "x"], ["q_out"], quantized=False)
        r = make_layer("R", ["y"], ["r_out"], quantized=True)
        structure = NetStructure(layers=[p, q, r], inputs_shape_map={"data": [1]})
        status = run_pass(structure)
        self.assertTrue(status)

        reformats = [layer for layer in structure.layers if layer.is_reformat]
        self.assertEqual(len(reformats), 1)
        self.assertEqual(reformats[0].inputs, ["x", "z"])
        self.assertEqual(reformats[0].outputs, ["x.reformat", "z.reformat"])
        self.assertEqual(q.inputs, ["x.reformat", "z.reformat", "x.reformat"])
        self.assertEqual(r.inputs, ["y"])

    def test_reformat_layers_do_not_chain(self):
        p = make_layer("P", ["data"], ["x"], quantized=True)
        existing = make_reformat("existing", ["x"], ["x_fp32"])
        q = make_layer("Q", ["x_fp32"], ["y"], quantized=True)
        structure = NetStructure(layers=[p, existing, q], inputs_shape_map={"data": [1]})
        status = run_pass(structure)
        self.assertTrue(status)
        self.assertEqual(structure.layers, [p, existing, q])
        self.assertEqual(existing.inputs, ["x"])
        self.assertEqual(q.inputs, ["x_fp32"])

    def test_boundaries_invariant(self):
        layers = [
            make_layer("conv1", ["data"], ["c1"], quantized=True),
            make_layer("conv2", ["c1"], ["c2"], quantized=False),
            make_layer("add", ["c1", "c2"], ["s"], quantized=True),
            make_layer("softmax", ["s"], ["prob"], quantized=False),
        ]
        producers = {"c1": layers[0], "c2": layers[1], "s": layers[2]}
        flags = {layer.name: layer.quantized for layer in layers}
        structure = NetStructure(
            layers=list(layers),
            inputs_shape_map={"data": [1]},
            input_data_type_map={"data": DataType.INT8},
        )
        resource = NetResource({"c2.scale": BlobScale([1.0])})
        status = run_pass(structure, resource)
        self.assertTrue(status)

        names = [layer.name for layer in structure.layers]
        for layer in layers:
            for input_name in layer.inputs:
                base = input_name[: -len(".reformat")] if input_name.endswith(".reformat") else input_name
                producer = producers.get(base)
                if producer is None:
                    continue
                if flags[producer.name] != flags[layer.name]:
                    self.assertEqual(input_name, base + ".reformat")
                    pos = names.index(producer.name)
                    reformat = structure.layers[pos + 1]
                    self.assertTrue(reformat.is_reformat)
                    self.assertIn(input_name, reformat.outputs)
                else:
                    self.assertEqual(input_name, base)

        self.assertEqual(
            names,
            ["conv1", "conv1.reformat", "conv2", "conv2.reformat", "add", "add.reformat", "softmax"],
        )


class TestReformatLayerFactory(unittest.TestCase):
    def test_quantize_adapter_without_layout(self):
        layer = ReformatLayerFactory.create_adapter("r", False, get_device(DeviceType.X86))
        self.assertTrue(layer.is_reformat)
        self.assertEqual(layer.type_str, "Reformat")
        self.assertFalse(layer.quantized)
        self.assertEqual(layer.param.src_type, DataType.FLOAT)
        self.assertEqual(layer.param.dst_type, DataType.INT8)
        self.assertEqual(layer.param.src_format, DataFormat.AUTO)
        self.assertEqual(layer.param.dst_format, DataFormat.AUTO)

    def test_arm_layouts(self):
        arm = get_device(DeviceType.ARM)
        dequant = ReformatLayerFactory.create_adapter("r", True, arm)
        self.assertEqual(dequant.param.src_format, DataFormat.NHWC4)
        self.assertEqual(dequant.param.dst_format, DataFormat.NC4HW4)

        quant = ReformatLayerFactory.create_adapter("r", False, arm)
        self.assertEqual(quant.param.src_format, DataFormat.NC4HW4)
        self.assertEqual(quant.param.dst_format, DataFormat.NHWC4)

    def test_pass_uses_bound_device(self):
        p = make_layer("P", ["data"], ["x"], quantized=True)
        q = make_layer("Q", ["x"], ["y"], quantized=False)
        structure = NetStructure(layers=[p, q], inputs_shape_map={"data": [1]})
        status = run_pass(structure, device=DeviceType.ARM)
        self.assertTrue(status)
        self.assertEqual(structure.layers[1].param.src_format, DataFormat.NHWC4)


class TestBoundaryDetector(unittest.TestCase):
    def test_counts_each_layer_once(self):
        layers = [
            make_layer("a", ["data", "data"], ["x"], quantized=True),
            make_layer("b", ["data"], ["y"], quantized=False),
            make_reformat("r", ["data"], ["data_fp32"]),
        ]
        detector = BoundaryDetector(layers)
        self.assertEqual(detector.count_input_consumers("data"), (1, 1))

    def test_earlier_consumers_ignored(self):
        layers = [
            make_layer("a", ["x"], ["y"], quantized=True),
            make_layer("b", ["data"], ["x"], quantized=False),
        ]
        detector = BoundaryDetector(layers)
        self.assertEqual(detector.find_marked_outputs(1), [])


if __name__ == "__main__":
    unittest.main()
