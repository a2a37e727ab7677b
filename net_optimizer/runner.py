import os
import datetime
import logging
import time
from typing import List, Optional, Dict, Any, Iterable

from .core import BasePass, NetResource, NetworkConfig, PassRegistry, PipelineError
from .utils import logger as custom_logger
from .utils.graph_io import load_graph, save_graph, load_scales, save_scales
from .utils.logger import LOG_FORMAT


class OptimizationPipeline:
    """
    A facade class to configure and run the network optimizer passes.

    Passes are handed in explicitly and run once each, sorted by priority.
    A failing pass aborts the pipeline.
    """

    def __init__(
        self,
        passes: Optional[Iterable[BasePass]] = None,
        network_config: Optional[NetworkConfig] = None,
        structure=None,
        resource: Optional[NetResource] = None,
        input_graph: Optional[str] = None,
        output_graph: Optional[str] = None,
        input_scales: Optional[str] = None,
        output_scales: Optional[str] = None,
        enabled_passes: Optional[List[str]] = None,
        remove_passes: Optional[List[str]] = None,
        debug: bool = False,
        log_file: Optional[str] = None,
        config: Optional[Dict[str, Any]] = None,
    ):
        """
        Initialize the pipeline.

        Args:
            passes (Iterable[BasePass], optional): Pass instances to run.
                Defaults to net_optimizer.optimizers.default_passes().
            network_config (NetworkConfig, optional): Target backend. Default NAIVE.
            structure (NetStructure, optional): Network to optimize (takes priority over input_graph).
            resource (NetResource, optional): Scale store (takes priority over input_scales).
            input_graph (str, optional): Path to input graph (.pb / .pbtxt).
            output_graph (str, optional): Path to save the optimized graph.
            input_scales (str, optional): Path to .npz blob scales.
            output_scales (str, optional): Path to save the updated blob scales.
            enabled_passes (list[str]): Restrict the run to these strategies.
            remove_passes (list[str]): Strategies to skip.
            debug (bool): Dump the network after every pass. Default False.
            log_file (str): Path to log file.
            config (dict): Optional dictionary containing configuration overrides.
        """
        if passes is None:
            from .optimizers import default_passes

            passes = default_passes()
        self.registry = PassRegistry(passes)
        self.network_config = network_config or NetworkConfig()
        self.structure = structure
        self.resource = resource
        self.input_graph = input_graph
        self.output_graph = output_graph
        self.input_scales = input_scales
        self.output_scales = output_scales
        self.enabled_passes = enabled_passes
        self.remove_passes = list(remove_passes or [])
        self.debug = debug
        self.log_file = log_file

        # Apply config overrides if provided
        if config:
            self._apply_config(config)

        self.debug_dir = None
        self.resolved_passes: List[BasePass] = []

    def _apply_config(self, config):
        """Merges configuration dict into instance attributes."""
        for key in ("input_graph", "output_graph", "input_scales", "output_scales"):
            if key in config and not getattr(self, key):
                setattr(self, key, config[key])
        if "device_type" in config:
            self.network_config = NetworkConfig(config["device_type"])
        if "debug" in config:
            self.debug = config["debug"] or self.debug
        if "log_file" in config:
            self.log_file = config["log_file"]
        if "passes" in config:
            self.enabled_passes = config["passes"]
        if "remove_passes" in config:
            self.remove_passes.extend(config["remove_passes"])

    def _setup_logging_and_debug(self):
        """Configures logging and creates debug directory."""
        if self.debug:
            timestamp = datetime.datetime.now().strftime("%Y%m%d_%H%M%S")
            self.debug_dir = f"run_{timestamp}"
            os.makedirs(self.debug_dir, exist_ok=True)
            # Redirect log to debug dir if not explicit
            if not self.log_file:
                self.log_file = os.path.join(self.debug_dir, "optimization.log")

        if self.log_file:
            file_handler = logging.FileHandler(self.log_file)
            file_handler.setFormatter(logging.Formatter(LOG_FORMAT))
            logging.getLogger().addHandler(file_handler)
            custom_logger.info(f"Logging to file: {self.log_file}")

    def _resolve_passes(self):
        """Determines the final, priority-ordered list of passes to execute."""
        final_passes = self.registry.get_ordered_passes()
        if self.enabled_passes is not None:
            for name in self.enabled_passes:
                if name not in self.registry:
                    custom_logger.warning(f"Pass '{name}' not found in registry. Skipping.")
            final_passes = [p for p in final_passes if p.strategy() in self.enabled_passes]

        for name in self.remove_passes:
            if name not in self.registry:
                custom_logger.warning(f"Pass '{name}' in remove_passes was not in the list")
        self.resolved_passes = [p for p in final_passes if p.strategy() not in self.remove_passes]

    def _load_inputs(self):
        # Priority: structure > input_graph
        if self.structure is not None:
            custom_logger.debug("Using provided NetStructure object")
        elif self.input_graph:
            custom_logger.info(f"Loading graph from {self.input_graph}")
            self.structure = load_graph(self.input_graph)
        else:
            raise ValueError("Either structure or input_graph must be provided.")

        if self.resource is None:
            if self.input_scales:
                custom_logger.info(f"Loading blob scales from {self.input_scales}")
                self.resource = load_scales(self.input_scales)
            else:
                self.resource = NetResource()

    def run(self):
        """Executes the pipeline and returns the optimized NetStructure."""
        self._setup_logging_and_debug()
        self._resolve_passes()
        self._load_inputs()

        structure = self.structure
        initial_count = len(structure.layers)
        if self.debug_dir:
            save_graph(structure, os.path.join(self.debug_dir, "00_initial.pbtxt"))

        custom_logger.info(
            f"Applying {len(self.resolved_passes)} passes on {self.network_config.device_type.value}: "
            f"{[p.strategy() for p in self.resolved_passes]}"
        )
        start_time = time.time()
        executed = []
        for step, opt_pass in enumerate(self.resolved_passes, start=1):
            if not opt_pass.is_supported(self.network_config):
                custom_logger.debug(f"Pass '{opt_pass.strategy()}' not supported, skipping")
                continue
            status = opt_pass.optimize(structure, self.resource)
            if not status:
                custom_logger.error(f"Error applying pass '{opt_pass.strategy()}': {status.message}")
                raise PipelineError(opt_pass.strategy(), status)
            executed.append(opt_pass.strategy())
            if self.debug_dir:
                save_graph(
                    structure,
                    os.path.join(self.debug_dir, f"{step:02d}_{opt_pass.strategy()}.pbtxt"),
                )

        if self.output_graph:
            custom_logger.info(f"Saving optimized graph to {self.output_graph}")
            save_graph(structure, self.output_graph)
        if self.output_scales:
            custom_logger.info(f"Saving blob scales to {self.output_scales}")
            save_scales(self.resource, self.output_scales)

        self._log_final_summary(executed, initial_count, len(structure.layers), time.time() - start_time)
        return structure

    def _log_final_summary(self, executed, initial_count, final_count, total_time):
        custom_logger.info("=" * 70)
        custom_logger.info("OPTIMIZATION SUMMARY")
        custom_logger.info("=" * 70)
        custom_logger.info(f"  Passes executed: {executed}")
        custom_logger.info(f"  Total time: {total_time:.3f}s")
        custom_logger.info(
            f"  Layers: {initial_count} -> {final_count} (inserted: {final_count - initial_count})"
        )
        custom_logger.info("=" * 70)
