# graph_io depends on net_optimizer.core and is imported from there directly
from .graph_utils import (
    build_consumer_index,
    later_consumers,
    replace_layer_input,
    collect_blobs,
)
from .logger import logger
from .visualize import export_to_dot, save_dot

__all__ = [
    # graph_utils
    "build_consumer_index",
    "later_consumers",
    "replace_layer_input",
    "collect_blobs",
    # logger
    "logger",
    # visualize
    "export_to_dot",
    "save_dot",
]
