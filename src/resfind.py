"""resfind: find modules and scripts across prioritized repositories."""

import json
import logging
import signal
import sys
from typing import List, Sequence

from args import parse_args
from cli_config import (
    apply_cli_overrides,
    apply_config_overrides,
    apply_env_overrides,
    load_config,
    load_repositories,
)
from constants import ExitCodes, ResourceKind
from common.cancellation import CancellationToken
from common.errors import InvalidRequestError
from common.logging_utils import configure_logging, extra_context, is_debug_enabled
from resolution.models import Diagnostic, DiagnosticKind, ResolutionRequest, ResourceRecord
from resolution.orchestrator import ResolutionOrchestrator

logger = logging.getLogger(__name__)

TABLE_COLUMNS = ("Name", "Version", "Type", "Repository", "Description")
DESCRIPTION_WIDTH = 50


def _setup_logging(args) -> None:
    """Configure logging based on CLI arguments."""
    configure_logging(level=getattr(args, "LOG_LEVEL", None))
    log_file = getattr(args, "LOG_FILE", None)
    if log_file:
        file_handler = logging.FileHandler(log_file)
        file_handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(name)s %(message)s"))
        logging.getLogger().addHandler(file_handler)
        logger.info("Logging to file: %s", log_file)


def build_request(args) -> ResolutionRequest:
    """Translate parsed arguments into a ResolutionRequest."""
    return ResolutionRequest(
        names=list(args.NAMES or []),
        version=args.VERSION,
        include_prerelease=bool(args.PRERELEASE),
        tags=list(args.TAGS or []),
        kind=ResourceKind(args.KIND) if args.KIND else None,
        include_dependencies=bool(args.INCLUDE_DEPENDENCIES),
        repositories=list(args.REPOSITORIES or []),
        commands=list(args.COMMANDS or []),
        dsc_resources=list(args.DSC_RESOURCES or []),
    )


def render_table(records: Sequence[ResourceRecord]) -> str:
    """Aligned plain-text table, one record per line."""
    rows = [TABLE_COLUMNS]
    for r in records:
        description = (r.description or "").replace("\n", " ")
        if len(description) > DESCRIPTION_WIDTH:
            description = description[: DESCRIPTION_WIDTH - 3] + "..."
        rows.append((r.name, str(r.version), r.kind.value, r.repository_name, description))
    widths = [max(len(row[i]) for row in rows) for i in range(len(TABLE_COLUMNS))]
    lines = ["  ".join(cell.ljust(widths[i]) for i, cell in enumerate(row)).rstrip() for row in rows]
    lines.insert(1, "  ".join("-" * w for w in widths))
    return "\n".join(lines)


def render_json(records: Sequence[ResourceRecord]) -> str:
    return json.dumps([r.to_dict() for r in records], ensure_ascii=False, indent=4)


def write_output(text: str, path) -> None:
    """Write to a file, or stdout when no path is given."""
    if not path:
        print(text)
        return
    try:
        with open(path, "w", encoding="utf-8") as fh:
            fh.write(text + "\n")
        logger.info("Results written to: %s", path)
    except OSError as e:
        logger.error("Output file couldn't be written to disk: %s", e)
        sys.exit(ExitCodes.FILE_ERROR.value)


def exit_code_for(records: List[ResourceRecord], diagnostics: List[Diagnostic], error_on_warnings: bool) -> int:
    """Pick the process exit code from what the resolution produced."""
    kinds = {d.kind for d in diagnostics}
    if not records and DiagnosticKind.TRANSPORT in kinds and kinds <= {DiagnosticKind.TRANSPORT, DiagnosticKind.NOT_FOUND}:
        return ExitCodes.CONNECTION_ERROR.value
    if diagnostics and error_on_warnings:
        return ExitCodes.EXIT_WARNINGS.value
    return ExitCodes.SUCCESS.value


def main(argv=None):
    """Main function of the program."""
    args = parse_args(argv)
    _setup_logging(args)

    try:
        cfg = load_config(args.CONFIG)
    except (OSError, ValueError) as e:
        logger.error("Config file couldn't be loaded: %s", e)
        sys.exit(ExitCodes.FILE_ERROR.value)
    apply_config_overrides(cfg)
    apply_env_overrides()
    apply_cli_overrides(args)

    repositories = load_repositories(cfg, args.REPOSITORY_URLS)
    if is_debug_enabled(logger):
        logger.debug(
            "CLI start",
            extra=extra_context(
                event="function_entry", component="cli", action="main", count=len(repositories)
            ),
        )

    cancel = CancellationToken()
    previous_handler = signal.signal(signal.SIGINT, lambda *_: cancel.cancel())
    records: List[ResourceRecord] = []
    try:
        result = ResolutionOrchestrator(repositories).resolve(build_request(args), cancel)
        records.extend(result)
        diagnostics = result.diagnostics
    except InvalidRequestError as e:
        logger.error("%s", e)
        sys.exit(ExitCodes.INVALID_REQUEST.value)
    finally:
        signal.signal(signal.SIGINT, previous_handler)

    if records:
        text = render_json(records) if args.OUTPUT_FORMAT == "json" else render_table(records)
        write_output(text, args.OUTPUT)
    elif args.OUTPUT_FORMAT == "json":
        write_output("[]", args.OUTPUT)
    logger.info("Found %d resource(s) with %d diagnostic(s).", len(records), len(diagnostics))

    sys.exit(exit_code_for(records, diagnostics, args.ERROR_ON_WARNINGS))


if __name__ == "__main__":
    main()
