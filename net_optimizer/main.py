import argparse
import json
import sys

from .core import NetworkConfig, DeviceType
from .optimizers import default_passes
from .runner import OptimizationPipeline
from .utils.logger import logger as custom_logger, set_log_level, DEBUG


def main(argv=None):
    parser = argparse.ArgumentParser(
        description="Network Optimizer CLI",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Insert int8 reformat layers for the ARM backend
  python -m net_optimizer.main --input net.pbtxt --scales scales.npz \\
      --output net_opt.pbtxt --output-scales scales_opt.npz --device ARM

  # Use a config file, command line paths take precedence
  python -m net_optimizer.main --config config.json --output out.pb

Config file format (JSON):
  {
    "input_graph": "path/to/net.pbtxt",
    "output_graph": "path/to/net_opt.pbtxt",
    "input_scales": "path/to/scales.npz",
    "output_scales": "path/to/scales_opt.npz",
    "device_type": "ARM",
    "debug": true,
    "passes": ["net_optimizer_insert_int8_reformat"],
    "remove_passes": [],
    "log_file": "optimization.log"
  }
        """,
    )
    parser.add_argument("--config", help="Path to JSON configuration file")
    parser.add_argument("--input", help="Input graph path (.pb or .pbtxt)")
    parser.add_argument("--output", help="Output graph path")
    parser.add_argument("--scales", help="Input blob scales (.npz)")
    parser.add_argument("--output-scales", help="Output blob scales (.npz)")
    parser.add_argument(
        "--device",
        choices=[d.value for d in DeviceType],
        help="Target backend (default: NAIVE)",
    )
    parser.add_argument(
        "--strict-scales",
        action="store_true",
        help="Fail when a float blob entering int8 layers has no scale",
    )
    parser.add_argument(
        "--debug",
        action="store_true",
        help="Enable debug mode (dump the network after every pass)",
    )
    parser.add_argument("--verbose", action="store_true", help="Log at DEBUG level")
    parser.add_argument("--log-file", help="Path to log file")
    args = parser.parse_args(argv)

    if args.verbose:
        set_log_level(DEBUG)

    # Load config if specified
    config = {}
    if args.config:
        try:
            with open(args.config, "r") as f:
                config = json.load(f)
        except (OSError, ValueError) as e:
            custom_logger.error(f"Failed to load config file: {e}")
            return 1

    try:
        pipeline = OptimizationPipeline(
            passes=default_passes(strict_scales=args.strict_scales),
            input_graph=args.input,            # Override from command line
            output_graph=args.output,
            input_scales=args.scales,
            output_scales=args.output_scales,
            debug=args.debug,
            log_file=args.log_file,
            config=config,                     # Config dict from JSON file
        )
        if args.device:
            # command line device wins over the config file
            pipeline.network_config = NetworkConfig(args.device)
        pipeline.run()
    except Exception as e:
        custom_logger.error(f"Optimization failed: {e}")
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
