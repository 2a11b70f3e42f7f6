"""Wrappers around the external tools used by the task graph.

Each class drives exactly one tool and knows nothing about task ordering.
File-to-file transforms share the BaseFileProcessor interface; the gate
tools (ESLint, Mocha) return reports that the tasks turn into success or
failure.

Key classes:
- StyleCompiler: Sass via libsass, then autoprefixer via postcss.
- TemplateRenderer: Jinja2 rendering with a fixed variable set.
- ScriptMinifier: rjsmin, falling back to terser, then to a plain copy.
- ESLintRunner / LintReport: Static analysis with ESLint's JSON formatter.
- MochaRunner / MochaReport: Test execution with Mocha.
"""

from __future__ import annotations

import json
import logging
import shutil
import subprocess
from abc import ABC, abstractmethod
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import sass
from jinja2 import (
    Environment,
    FileSystemLoader,
    StrictUndefined,
    TemplateError,
    TemplateNotFound,
    TemplateSyntaxError,
    select_autoescape,
)
from rjsmin import jsmin

from .errors import TaskFailed
from .logging_setup import get_logger

# ESLint severity levels as reported by the JSON formatter.
SEVERITY_WARNING = 1
SEVERITY_ERROR = 2


class BaseFileProcessor(ABC):
    """Base class for processors that turn one source file into one output.

    Subclasses report tool errors through their logger and return False
    from process(); they never raise for errors of the tool they wrap.
    """

    def __init__(self, logger: logging.Logger | None = None):
        self.logger = logger or get_logger(type(self).__name__)

    @abstractmethod
    def can_process(self, path: Path) -> bool:
        """Check if this processor should handle the given file."""
        ...

    @abstractmethod
    def process(self, source: Path, dest: Path) -> bool:
        """Transform source into dest.

        Returns:
            True if the output was written by the tool.
        """
        ...

    def ensure_dest_dir(self, dest: Path) -> None:
        dest.parent.mkdir(parents=True, exist_ok=True)


class StyleCompiler(BaseFileProcessor):
    """Compiles Sass to CSS with an inline source map and vendor prefixes.

    libsass embeds the source map into the CSS. When a postcss executable
    is available, autoprefixer rewrites the file in place and carries the
    inline map through, so the final map points at the original .scss.
    """

    EXTENSIONS = {".scss", ".sass"}

    def __init__(
        self,
        source_dir: Path,
        output_style: str = "expanded",
        postcss_bin: str | None = None,
        logger: logging.Logger | None = None,
    ):
        super().__init__(logger)
        self.source_dir = source_dir
        self.output_style = output_style
        self.postcss_bin = postcss_bin

    def can_process(self, path: Path) -> bool:
        """Partials (``_name.scss``) are only ever imported, never compiled."""
        return path.suffix.lower() in self.EXTENSIONS and not path.name.startswith("_")

    def output_path(self, source: Path, output_dir: Path) -> Path:
        rel = source.relative_to(self.source_dir)
        return (output_dir / rel).with_suffix(".css")

    def process(self, source: Path, dest: Path) -> bool:
        self.ensure_dest_dir(dest)
        try:
            css, _source_map = sass.compile(
                filename=str(source),
                output_style=self.output_style,
                include_paths=[str(self.source_dir)],
                source_map_filename=str(dest) + ".map",
                source_map_contents=True,
                source_map_embed=True,
                output_filename_hint=str(dest),
            )
        except sass.CompileError as exc:
            self.logger.error("Sass compile error in %s:\n%s", source, str(exc).strip())
            return False

        dest.write_text(css, encoding="utf-8")
        if self.postcss_bin:
            self.add_vendor_prefixes(dest)
        return True

    def add_vendor_prefixes(self, css_file: Path) -> bool:
        """Run autoprefixer over a compiled file, keeping the inline map."""
        cmd = [
            self.postcss_bin,
            str(css_file),
            "--use",
            "autoprefixer",
            "--replace",
        ]
        result = subprocess.run(cmd, capture_output=True, text=True)
        if result.returncode != 0:
            self.logger.warning(
                "Autoprefixer failed for %s: %s", css_file, result.stderr.strip()
            )
            return False
        return True


class TemplateRenderer(BaseFileProcessor):
    """Renders a Jinja2 template with a fixed set of variables.

    Undefined variables count as template errors. Template errors are logged
    and the previous output is left untouched.
    """

    def __init__(
        self,
        variables: dict[str, Any],
        extension: str = ".html",
        logger: logging.Logger | None = None,
    ):
        super().__init__(logger)
        self.variables = dict(variables)
        self.extension = extension if extension.startswith(".") else f".{extension}"

    def can_process(self, path: Path) -> bool:
        return path.suffix == ".jinja"

    def output_name(self, source: Path) -> str:
        """Swap the final extension for the markup extension.

        ``index.jinja`` and ``index.html.jinja`` both become ``index.html``.
        """
        stem = Path(source.name).stem
        if Path(stem).suffix == self.extension:
            return stem
        return f"{stem}{self.extension}"

    def process(self, source: Path, dest: Path) -> bool:
        env = Environment(
            loader=FileSystemLoader(str(source.parent)),
            autoescape=select_autoescape(["html", "xml", "jinja"]),
            undefined=StrictUndefined,
            keep_trailing_newline=True,
        )
        try:
            rendered = env.get_template(source.name).render(**self.variables)
        except TemplateSyntaxError as exc:
            self.logger.error(
                "Template syntax error in %s on line %s: %s",
                exc.filename or source,
                exc.lineno,
                exc.message,
            )
            return False
        except TemplateNotFound as exc:
            self.logger.error("Template not found: %s", exc.name)
            return False
        except TemplateError as exc:
            self.logger.error("Template error in %s: %s", source, _format_error_message(exc))
            return False

        self.ensure_dest_dir(dest)
        dest.write_text(rendered, encoding="utf-8")
        return True


class ScriptMinifier(BaseFileProcessor):
    """Minifies JavaScript files.

    Uses rjsmin first, falls back to terser, then to simple copying.
    """

    def __init__(self, terser_bin: str | None = None, logger: logging.Logger | None = None):
        super().__init__(logger)
        self.terser_bin = terser_bin

    def can_process(self, path: Path) -> bool:
        return path.suffix.lower() == ".js"

    def process(self, source: Path, dest: Path) -> bool:
        self.ensure_dest_dir(dest)

        try:
            with open(source, encoding="utf-8") as f_in:
                minified = jsmin(f_in.read())
            with open(dest, "w", encoding="utf-8") as f_out:
                f_out.write(minified)
            return True
        except (OSError, UnicodeDecodeError) as exc:
            self.logger.warning("rjsmin could not minify %s: %s", source, exc)

        if self.terser_bin:
            result = subprocess.run(
                [self.terser_bin, str(source), "-c", "-m", "-o", str(dest)],
                capture_output=True,
                text=True,
            )
            if result.returncode == 0:
                return True
            self.logger.warning(
                "JS minification failed via terser: %s", result.stderr.strip()
            )

        shutil.copy2(source, dest)
        return False


@dataclass
class LintFinding:
    """A single ESLint message."""

    path: str
    line: int
    column: int
    severity: int
    message: str
    rule: str | None = None

    @property
    def is_error(self) -> bool:
        return self.severity >= SEVERITY_ERROR

    def format(self) -> str:
        level = "error" if self.is_error else "warning"
        rule = f" ({self.rule})" if self.rule else ""
        return f"{self.path}:{self.line}:{self.column} {level} {self.message}{rule}"


@dataclass
class LintReport:
    findings: list[LintFinding] = field(default_factory=list)

    @property
    def error_count(self) -> int:
        return sum(1 for f in self.findings if f.is_error)

    @property
    def warning_count(self) -> int:
        return sum(1 for f in self.findings if not f.is_error)

    @property
    def failed(self) -> bool:
        return self.error_count > 0

    def summary(self) -> str:
        total = len(self.findings)
        return (
            f"{total} problem{'s' if total != 1 else ''} "
            f"({self.error_count} errors, {self.warning_count} warnings)"
        )

    @classmethod
    def from_eslint_json(cls, payload: list[dict[str, Any]], root: Path | None = None):
        """Build a report from ``eslint --format json`` output."""
        findings = []
        for entry in payload:
            path = entry.get("filePath", "")
            if root is not None:
                try:
                    path = str(Path(path).relative_to(root))
                except ValueError:
                    pass
            for msg in entry.get("messages", []):
                findings.append(
                    LintFinding(
                        path=path,
                        line=int(msg.get("line") or 0),
                        column=int(msg.get("column") or 0),
                        severity=int(msg.get("severity") or 0),
                        message=str(msg.get("message", "")).strip(),
                        rule=msg.get("ruleId"),
                    )
                )
        return cls(findings)


class ESLintRunner:
    """Runs ESLint over a list of files and parses its JSON report."""

    def __init__(self, executable: str, project_root: Path):
        self.executable = executable
        self.project_root = project_root

    def lint(self, files: Iterable[Path]) -> LintReport:
        """Lint files.

        Raises:
            TaskFailed: If ESLint crashed or produced unreadable output.
        """
        cmd = [self.executable, "--format", "json", *(str(f) for f in files)]
        result = subprocess.run(
            cmd, cwd=self.project_root, capture_output=True, text=True
        )
        # 0: clean, 1: lint errors, anything else: configuration or crash
        if result.returncode not in (0, 1):
            raise TaskFailed(
                f"ESLint exited with code {result.returncode}: {result.stderr.strip()}"
            )
        try:
            payload = json.loads(result.stdout or "[]")
        except json.JSONDecodeError as exc:
            raise TaskFailed(f"Could not parse ESLint output: {exc}") from exc
        return LintReport.from_eslint_json(payload, self.project_root)


@dataclass
class MochaReport:
    returncode: int
    output: str = ""

    @property
    def passed(self) -> bool:
        return self.returncode == 0


class MochaRunner:
    """Runs Mocha over a list of test files, relaying output as it arrives."""

    def __init__(self, executable: str, project_root: Path):
        self.executable = executable
        self.project_root = project_root

    def run(
        self, files: Iterable[Path], on_line: Callable[[str], object] | None = None
    ) -> MochaReport:
        """Run the suite.

        Args:
            files: Test files to pass to Mocha.
            on_line: Called with each non-blank output line while Mocha runs.

        Returns:
            MochaReport with the exit status and the collected output.
        """
        cmd = [self.executable, *(str(f) for f in files)]
        lines: list[str] = []
        with subprocess.Popen(
            cmd,
            cwd=self.project_root,
            stdout=subprocess.PIPE,
            stderr=subprocess.STDOUT,
            text=True,
        ) as proc:
            for raw in proc.stdout:
                line = raw.rstrip()
                if not line.strip():
                    continue
                lines.append(line)
                if on_line:
                    on_line(line)
            returncode = proc.wait()
        return MochaReport(returncode, "\n".join(lines))


def _format_error_message(exc: Exception) -> str:
    """Format a template exception into a user-friendly message."""
    error_type = type(exc).__name__
    if error_type == "UndefinedError":
        return f"Undefined variable: {exc}"
    return f"{error_type}: {exc}"
