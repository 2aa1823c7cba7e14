"""Argument parsing functionality for resfind."""

import argparse
from constants import Constants


def parse_args(argv=None):
    """Parses the arguments passed to the program."""
    parser = argparse.ArgumentParser(
        prog="resfind",
        description=(
            "resfind - Find modules and scripts across local, NuGet V2 and NuGet V3 repositories"
        ),
        add_help=True,
    )

    parser.add_argument("-n", "--name",
                        dest="NAMES",
                        help="Resource name or '*' pattern; may be given more than once",
                        action="append", type=str,
                        default=[])
    parser.add_argument("-v", "--version",
                        dest="VERSION",
                        help="Version or range, e.g. 1.2.0, [1.0,2.0), 3.*, '>=1.0 <2.0', or * for all versions",
                        action="store", type=str)
    parser.add_argument("--prerelease",
                        dest="PRERELEASE",
                        help="Include prerelease versions",
                        action="store_true")
    parser.add_argument("--tag",
                        dest="TAGS",
                        help=("With names, keep resources carrying any of these tags; "
                              "without names, find resources carrying all of them"),
                        action="append", type=str,
                        default=[])
    parser.add_argument("--command",
                        dest="COMMANDS",
                        help="Find modules exporting this command; may be given more than once",
                        action="append", type=str,
                        default=[])
    parser.add_argument("--dsc-resource",
                        dest="DSC_RESOURCES",
                        help="Find modules exporting this DSC resource; may be given more than once",
                        action="append", type=str,
                        default=[])
    parser.add_argument("--type",
                        dest="KIND",
                        help="Restrict to modules or scripts",
                        action="store", type=str.lower,
                        choices=Constants.RESOURCE_KINDS)
    parser.add_argument("--include-dependencies",
                        dest="INCLUDE_DEPENDENCIES",
                        help="Also resolve and print dependencies",
                        action="store_true")
    parser.add_argument("-r", "--repository",
                        dest="REPOSITORIES",
                        help="Only search these registered repositories (wildcards allowed)",
                        action="append", type=str,
                        default=[])
    parser.add_argument("--repository-url",
                        dest="REPOSITORY_URLS",
                        help="Search an unregistered repository URL or local path at top priority",
                        action="append", type=str,
                        default=[])

    parser.add_argument("-f", "--format",
                        dest="OUTPUT_FORMAT",
                        help="Output format (json or table, default: table)",
                        action="store",
                        type=str.lower,
                        choices=Constants.OUTPUT_FORMATS,
                        default="table")
    parser.add_argument("-o", "--output",
                        dest="OUTPUT",
                        help="Write results to this file instead of stdout",
                        action="store",
                        type=str)
    parser.add_argument("--timeout",
                        dest="TIMEOUT",
                        help="HTTP timeout in seconds",
                        action="store",
                        type=int)
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
    parser.add_argument("--error-on-warnings",
                        dest="ERROR_ON_WARNINGS",
                        help="Exit with a non-zero status code if diagnostics were reported.",
                        action="store_true")

    # Config file (general)
    parser.add_argument("-c", "--config",
                        dest="CONFIG",
                        help="Path to configuration file (YAML, YML, or JSON)",
                        action="store",
                        type=str)

    return parser.parse_args(argv)
