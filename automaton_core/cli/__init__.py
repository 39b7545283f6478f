"""
CLI MODULE
==========

Command-line interface for the automaton.

Usage:
    python -m automaton_core.cli run
    python -m automaton_core.cli status
    python -m automaton_core.cli inbox-add <sender> <content>
"""

from .main import main, build_runtime, cli_run, cli_status, cli_wake, cli_inbox_add

__all__ = [
    'main',
    'build_runtime',
    'cli_run',
    'cli_status',
    'cli_wake',
    'cli_inbox_add',
]
