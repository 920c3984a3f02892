import sys
import logging
import argparse
import setproctitle
from pathlib import Path
from typing import List, Optional

from localreg.log.setup import setup_logging
from localreg.local import RegistrySwap
from localreg.local.config import effective_settings as config
from localreg.local.options import default_options, load_options_file
from localreg.local.registry_config import detect_backend

log = logging.getLogger("localreg")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="localreg",
        description="Run a local Verdaccio registry and point npm or yarn at it until it stops.",
    )
    parser.add_argument("--port", type=int, help=f"Port for the registry server (default {config.DEFAULT_PORT}).")
    parser.add_argument("--config", help="Path to a Verdaccio config file.")
    parser.add_argument("--storage", help="Override the Verdaccio storage directory.")
    parser.add_argument("--location", help=f"npm config location to write to (default '{config.DEFAULT_LOCATION}').")
    parser.add_argument("--package-manager", choices=["npm", "yarn", "pnpm"], help="Skip lock file detection.")
    parser.add_argument("--root", type=Path, default=Path.cwd(), help="Workspace root used to detect the package manager.")
    parser.add_argument("--options-file", type=Path, help="YAML file with port, config, storage and location.")
    parser.add_argument("--verbose", action="store_true", help="Log debug output to the console.")
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    """The main entry point. Returns the process exit status."""
    args = build_parser().parse_args(argv)
    setup_logging(logging.DEBUG if args.verbose else logging.INFO)
    setproctitle.setproctitle(config.PROCESS_TITLE)

    try:
        options = default_options()
        if args.options_file:
            options = options.merged_with(load_options_file(args.options_file))
        options = options.merged_with({
            "port": args.port,
            "config": args.config,
            "storage": args.storage,
            "location": args.location,
        })
        backend = detect_backend(args.root, args.package_manager)
        swap = RegistrySwap(options, backend)
    except (OSError, ValueError) as e:
        log.error(f"Invalid options: {e}")
        return 1

    log.info(f"Serving a local registry on {options.registry_url} for {backend.value} ({options.location}).")
    result = swap.run()

    interrupted_by = swap.interrupted_by_signal
    if interrupted_by is not None:
        return 128 + int(interrupted_by)
    return 0 if result["success"] else 1


if __name__ == "__main__":
    sys.exit(main())
