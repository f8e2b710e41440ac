"""Argument parsing functionality for esmirror."""

import argparse
from constants import Constants, Stages

def parse_args(argv=None):
    """Parses the arguments passed to the program."""
    parser = argparse.ArgumentParser(
        prog="esmirror",
        description=(
            "esmirror - Build a local, peer-context aware mirror of CDN-served ES modules"
        ),
        add_help=True,
    )

    parser.add_argument("stage",
                        help="Pipeline stage to run (default: all)",
                        nargs="?",
                        default=Stages.ALL.value,
                        choices=Constants.STAGES)

    parser.add_argument("-c", "--config",
                        dest="CONFIG",
                        help="Path to the CDN mapping file (YAML, YML, or JSON)",
                        action="store",
                        type=str,
                        default=Constants.CDN_MAPPINGS_FILE)
    parser.add_argument("-m", "--mirror-dir",
                        dest="MIRROR_DIR",
                        help="Directory receiving the mirrored modules",
                        action="store",
                        type=str,
                        default=Constants.MIRROR_DIR)
    parser.add_argument("-i", "--index",
                        dest="INDEX",
                        help="Path to the lookup index (default: <mirror-dir>/index.lookup.json)",
                        action="store",
                        type=str)
    parser.add_argument("-o", "--output",
                        dest="OUTPUT",
                        help="Export file written by the export stage",
                        action="store",
                        type=str,
                        default=Constants.EXPORTS_FILE)

    parser.add_argument("--registry-url",
                        dest="REGISTRY_URL",
                        help="npm registry base URL",
                        action="store",
                        type=str)
    parser.add_argument("--cdn-origin",
                        dest="CDN_ORIGIN",
                        help="CDN origin whose modules are mirrored",
                        action="store",
                        type=str)
    parser.add_argument("--timeout",
                        dest="TIMEOUT",
                        help="HTTP request timeout in seconds",
                        action="store",
                        type=int)
    parser.add_argument("--retries",
                        dest="RETRIES",
                        help="Attempts per request for transient failures",
                        action="store",
                        type=int)
    parser.add_argument("--concurrency",
                        dest="CONCURRENCY",
                        help="Maximum number of concurrent CDN fetches",
                        action="store",
                        type=int)
    parser.add_argument("--import-prefix",
                        dest="IMPORT_PREFIX",
                        help="Path prefix written into rewritten imports",
                        action="store",
                        type=str)

    parser.add_argument("--loglevel",
                        dest="LOG_LEVEL",
                        help="Set the logging level",
                        action="store",
                        type=str,
                        choices=['DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL'],
                        default='INFO')
    parser.add_argument("--logfile",
                        dest="LOG_FILE",
                        help="Log output file",
                        action="store",
                        type=str)

    return parser.parse_args(argv)
