from .insert_int8_reformat import (
    InsertInt8ReformatPass,
    ReformatLayerFactory,
    BoundaryDetector,
    GraphRewriter,
    kNetOptimizerInsertInt8Reformat,
)


def default_passes(strict_scales=False):
    """Builds the built-in pass list handed to OptimizationPipeline."""
    return [
        InsertInt8ReformatPass(strict_scales=strict_scales),
    ]


__all__ = [
    "InsertInt8ReformatPass",
    "ReformatLayerFactory",
    "BoundaryDetector",
    "GraphRewriter",
    "kNetOptimizerInsertInt8Reformat",
    "default_passes",
]
