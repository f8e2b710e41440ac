"""esmirror - build a local mirror of CDN-served ES modules.

Each stage reads the lookup index, does its work and writes the index back;
``all`` chains analyze, download, map-imports and transform.

    Returns:
        int: Exit code
"""
import logging
import os
import sys

from constants import Constants, ExitCodes, Stages
from common.errors import (
    ConfigurationError,
    IndexLockedError,
    MirrorError,
    StructuralError,
)
from common.logging_utils import configure_logging, extra_context, is_debug_enabled, Timer
from args import parse_args
from cli_config import apply_runtime_overrides, load_cdn_mappings
from analysis.analyzer import DependencyAnalyzer
from download.downloader import DependencyDownloader
from lookup.index_store import IndexStore
from lookup.urls import CdnUrls
from postprocess.exporter import export_available_versions
from postprocess.relative_imports import map_relative_imports
from postprocess.rewriter import transform_imports

logger = logging.getLogger(__name__)

PIPELINE = (Stages.ANALYZE, Stages.DOWNLOAD, Stages.MAP_IMPORTS, Stages.TRANSFORM)


def _setup_logging(args) -> None:
    """Configure logging based on CLI arguments."""
    # Honor CLI --loglevel by passing it to centralized logger via env
    if getattr(args, "LOG_LEVEL", None):
        os.environ[Constants.LOG_LEVEL_ENV] = str(args.LOG_LEVEL).upper()
    configure_logging()

    log_file = getattr(args, "LOG_FILE", None)
    if log_file:
        file_handler = logging.FileHandler(log_file)
        formatter = logging.Formatter(
            "%(asctime)s %(levelname)s %(name)s %(message)s"
        )
        file_handler.setFormatter(formatter)
        logging.getLogger().addHandler(file_handler)
        logger.info("Logging to file: %s", log_file)


def exit_code_for(error: MirrorError) -> ExitCodes:
    """Map a pipeline error onto the process exit code."""
    if isinstance(error, StructuralError):
        return ExitCodes.STRUCTURAL_ERROR
    if isinstance(error, (ConfigurationError, IndexLockedError)):
        return ExitCodes.FILE_ERROR
    return ExitCodes.CONNECTION_ERROR


def run_stage(stage, args, store, urls, config=None):
    """Run a single stage.

    Args:
        stage (Stages): Stage to run.
        args: Parsed CLI arguments.
        store (IndexStore): Index persistence.
        urls (CdnUrls): CDN URL helper.
        config (MirrorConfig): CDN mapping config; required by every stage but export.
    """
    with Timer() as timer:
        if stage == Stages.ANALYZE:
            DependencyAnalyzer(config, store).run()
        elif stage == Stages.DOWNLOAD:
            DependencyDownloader(config, store, mirror_dir=args.MIRROR_DIR, urls=urls).run()
        elif stage == Stages.MAP_IMPORTS:
            map_relative_imports(config, store, args.MIRROR_DIR, urls)
        elif stage == Stages.TRANSFORM:
            transform_imports(config, store, args.MIRROR_DIR, urls)
        elif stage == Stages.EXPORT:
            export_available_versions(store, args.OUTPUT)
    if is_debug_enabled(logger):
        logger.debug(
            "Stage finished",
            extra=extra_context(
                event="function_exit",
                component="cli",
                action=stage.value,
                outcome="success",
                duration_ms=timer.duration_ms(),
            ),
        )


def run(args) -> int:
    """Run the requested stage(s) under the index lock; returns the exit code."""
    stage = Stages(args.stage)
    stages = PIPELINE if stage == Stages.ALL else (stage,)
    index_path = args.INDEX or os.path.join(args.MIRROR_DIR, Constants.INDEX_FILE)
    store = IndexStore(index_path)
    try:
        apply_runtime_overrides(args)
        config = None
        if stages != (Stages.EXPORT,):
            config = load_cdn_mappings(args.CONFIG)
        urls = CdnUrls(Constants.CDN_ORIGIN)
        os.makedirs(os.path.dirname(os.path.abspath(index_path)), exist_ok=True)
        with store.lock():
            for current in stages:
                logger.info("=== Stage: %s ===", current.value)
                run_stage(current, args, store, urls, config)
    except MirrorError as error:
        code = exit_code_for(error)
        logger.error(
            "%s failed: %s",
            stage.value, error,
            extra=extra_context(
                event="stage_failed",
                component="cli",
                action=stage.value,
                outcome=type(error).__name__,
            ),
        )
        return code.value
    return ExitCodes.SUCCESS.value


def main(argv=None):
    """Main function of the program."""
    args = parse_args(argv)
    _setup_logging(args)
    if is_debug_enabled(logger):
        logger.debug(
            "CLI start",
            extra=extra_context(event="function_entry", component="cli", action="main")
        )
    sys.exit(run(args))


if __name__ == "__main__":
    main()
