"""
CLI commands for stackdeploy.
"""

from stackdeploy.cli.main import UpdateRenderer, build_parser, main, run_command

__all__ = ["UpdateRenderer", "build_parser", "main", "run_command"]
