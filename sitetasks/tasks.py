"""The sitetasks task graph.

Seven named tasks plus the ``default`` composite:

    compile-styles    sass/**/*.scss -> public/stylesheets (non-fatal)
    render-templates  views/index.jinja -> public/index.html (non-fatal)
    lint              ESLint over **/*.js (gate)
    test              Mocha over **/*.test.js (gate)
    minify            **/*.js -> build (non-fatal)
    watch             re-run tasks on change (never completes)
    dev-server        live reload server (never completes)
    default           lint -> {compile-styles, render-templates, minify} -> test

Non-fatal tasks log tool errors and always succeed. Gate tasks raise
TaskFailed so the default pipeline stops.
"""

from __future__ import annotations

from pathlib import Path

from .config import selector_from
from .errors import TaskFailed, ToolNotFoundError
from .executable_utils import find_tool
from .processors import (
    ESLintRunner,
    MochaRunner,
    ScriptMinifier,
    StyleCompiler,
    TemplateRenderer,
)
from .runner import Task, TaskContext, parallel, series
from .selectors import FileSelector
from .server import DevServer
from .watcher import TaskWatcher


def compile_styles(ctx: TaskContext) -> list[Path]:
    """Compile every non-partial stylesheet and notify live reload clients.

    Returns:
        The CSS files written by this run.
    """
    log = ctx.logger("compile-styles")
    settings = ctx.config["styles"]
    source_dir = ctx.path(settings["source_dir"])
    output_dir = ctx.path(settings["output_dir"])

    postcss_bin = None
    if settings.get("autoprefixer", True):
        postcss_bin = find_tool(ctx.config, "postcss", ctx.project_root)
        if postcss_bin is None:
            log.warning(
                "postcss not found; skipping autoprefixer. Install with "
                "`npm install -D postcss postcss-cli autoprefixer`."
            )

    compiler = StyleCompiler(
        source_dir,
        output_style=settings.get("output_style", "expanded"),
        postcss_bin=postcss_bin,
        logger=log,
    )
    selector = FileSelector(source_dir, include=tuple(settings["include"]))
    written: list[Path] = []
    for source in selector.iter_files():
        if not compiler.can_process(source):
            continue
        dest = compiler.output_path(source, output_dir)
        if compiler.process(source, dest):
            written.append(dest)

    if written:
        ctx.bus.publish({"type": "css", "paths": [str(p) for p in written]})
    return written


def render_templates(ctx: TaskContext) -> Path | None:
    """Render the entry template with the configured variables."""
    log = ctx.logger("render-templates")
    settings = ctx.config["templates"]
    source = ctx.path(settings["source"])
    renderer = TemplateRenderer(
        settings.get("variables") or {},
        extension=settings.get("extension", ".html"),
        logger=log,
    )
    dest = ctx.path(settings["output_dir"]) / renderer.output_name(source)
    if renderer.process(source, dest):
        return dest
    return None


def lint(ctx: TaskContext) -> None:
    """Run ESLint and fail on any error-severity finding."""
    log = ctx.logger("lint")
    files = selector_from(ctx.project_root, ctx.config["scripts"]).files()
    if not files:
        log.info("No script files to lint")
        return

    tool = ctx.config["tools"].get("eslint", "eslint")
    eslint_bin = find_tool(ctx.config, "eslint", ctx.project_root)
    if eslint_bin is None:
        raise ToolNotFoundError(tool)

    report = ESLintRunner(eslint_bin, ctx.project_root).lint(files)
    for finding in report.findings:
        if finding.is_error:
            log.error(finding.format())
        else:
            log.warning(finding.format())
    if report.findings:
        log.info(report.summary())
    if report.failed:
        raise TaskFailed(f"ESLint found {report.error_count} error(s)")


def run_tests(ctx: TaskContext) -> None:
    """Run the Mocha suite and fail when the runner reports a failure."""
    log = ctx.logger("test")
    files = selector_from(ctx.project_root, ctx.config["tests"]).files()
    if not files:
        log.info("No test files found")
        return

    tool = ctx.config["tools"].get("mocha", "mocha")
    mocha_bin = find_tool(ctx.config, "mocha", ctx.project_root)
    if mocha_bin is None:
        raise ToolNotFoundError(tool)

    report = MochaRunner(mocha_bin, ctx.project_root).run(files, on_line=log.info)
    if not report.passed:
        raise TaskFailed("Test failed")


def minify(ctx: TaskContext) -> list[Path]:
    """Minify every script into the build directory.

    Returns:
        The files written under the build directory.
    """
    log = ctx.logger("minify")
    settings = ctx.config["scripts"]
    build_dir = ctx.path(settings["build_dir"])
    minifier = ScriptMinifier(find_tool(ctx.config, "terser", ctx.project_root), log)
    written: list[Path] = []
    for source in selector_from(ctx.project_root, settings).iter_files():
        dest = build_dir / source.relative_to(ctx.project_root)
        try:
            minifier.process(source, dest)
        except OSError as exc:
            log.error("Could not minify %s: %s", source, exc)
            continue
        written.append(dest)
    return written


def watch_sources(watcher: TaskWatcher, ctx: TaskContext) -> None:
    """Bind template and style changes to their build tasks."""
    templates = ctx.config["templates"]
    styles = ctx.config["styles"]
    watcher.add_task(
        FileSelector(ctx.project_root, include=tuple(templates["watch"])),
        RENDER_TEMPLATES,
    )
    style_globs = tuple(f"{styles['source_dir']}/{p}" for p in styles["include"])
    watcher.add_task(FileSelector(ctx.project_root, include=style_globs), COMPILE_STYLES)


def build_watcher(ctx: TaskContext) -> TaskWatcher:
    """Watcher for the ``watch`` task: sources plus lint and test on scripts."""
    settings = ctx.config["watch"]
    watcher = TaskWatcher(ctx, debounce=settings.get("debounce", 0))
    watch_sources(watcher, ctx)
    scripts = FileSelector(
        ctx.project_root,
        include=tuple(ctx.config["scripts"]["include"]),
        exclude=tuple(settings.get("scripts_exclude", ())),
    )
    watcher.add_task(scripts, parallel(LINT, TEST))
    return watcher


def watch(ctx: TaskContext) -> None:  # pragma: no cover - blocks until interrupted
    build_watcher(ctx).run_forever()


def build_dev_server(
    ctx: TaskContext, http_port: int | None = None, ws_port: int | None = None
) -> DevServer:
    """Dev server whose watcher also reloads browsers on markup changes."""
    watcher = TaskWatcher(ctx, debounce=ctx.config["watch"].get("debounce", 0))
    watch_sources(watcher, ctx)
    server_root = ctx.config["server"]["root"]
    extension = ctx.config["templates"].get("extension", ".html")
    markup = FileSelector(ctx.project_root, include=(f"{server_root}/**/*{extension}",))
    watcher.add_callback(
        markup,
        lambda path: ctx.bus.publish({"type": "reload", "path": str(path)}),
        "live reload",
    )
    return DevServer(ctx, watcher, http_port=http_port, ws_port=ws_port)


def dev_server(ctx: TaskContext) -> None:
    build_dev_server(ctx).start()


COMPILE_STYLES = Task(
    "compile-styles", compile_styles, "Compile Sass to CSS with prefixes and source maps"
)
RENDER_TEMPLATES = Task(
    "render-templates", render_templates, "Render the entry template to HTML"
)
LINT = Task("lint", lint, "Lint scripts with ESLint; fails on errors")
TEST = Task("test", run_tests, "Run the Mocha test suite; fails on test failures")
MINIFY = Task("minify", minify, "Minify scripts into the build directory")
WATCH = Task("watch", watch, "Re-run tasks when sources change")
DEV_SERVER = Task("dev-server", dev_server, "Serve the output with live reload")
DEFAULT = series(
    LINT,
    parallel(COMPILE_STYLES, RENDER_TEMPLATES, MINIFY, name="build"),
    TEST,
    name="default",
)

TASKS: dict[str, Task] = {
    task.name: task
    for task in (
        COMPILE_STYLES,
        RENDER_TEMPLATES,
        LINT,
        TEST,
        WATCH,
        DEV_SERVER,
        MINIFY,
        DEFAULT,
    )
}

# Short names accepted on the command line.
ALIASES = {
    "css": "compile-styles",
    "html": "render-templates",
    "sync": "dev-server",
    "uglify": "minify",
}


def get_task(name: str) -> Task:
    """Look up a task by name or alias.

    Raises:
        KeyError: If no task has that name.
    """
    return TASKS[ALIASES.get(name, name)]
