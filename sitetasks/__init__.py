"""sitetasks build-task runner.

This package wires existing front-end tools into a small task graph:
Sass compilation, Jinja2 templating, ESLint linting, Mocha tests,
JavaScript minification and a live reload development server.

The main entry point is the CLI module, which exposes one command per task
and runs the default pipeline when invoked without a command.

Architecture:
- runner: Task, TaskResult and the series/parallel composition primitives.
- selectors: Include/exclude file selection over the project tree.
- processors: Thin wrappers around the external tools.
- tasks: The task graph itself.
- watcher, server, livereload: Long-running development helpers.
"""

__all__ = ["__version__"]
__version__ = "0.1.0"
