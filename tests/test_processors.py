import io
import subprocess
from pathlib import Path

import pytest

from sitetasks.errors import TaskFailed
from sitetasks.processors import (
    ESLintRunner,
    LintReport,
    MochaRunner,
    ScriptMinifier,
    StyleCompiler,
    TemplateRenderer,
)


def write(path: Path, text: str) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(text, encoding="utf-8")
    return path


# --- StyleCompiler ---


def test_style_compiler_resolves_partials_and_embeds_map(tmp_path):
    sass_dir = tmp_path / "sass"
    write(sass_dir / "_vars.scss", "$brand: #336699;\n")
    main = write(sass_dir / "main.scss", '@import "vars";\n.button { color: $brand; }\n')
    compiler = StyleCompiler(sass_dir)

    assert compiler.can_process(main)
    assert not compiler.can_process(sass_dir / "_vars.scss")
    assert not compiler.can_process(sass_dir / "notes.txt")

    dest = compiler.output_path(main, tmp_path / "out")
    assert dest == tmp_path / "out" / "main.css"
    assert compiler.process(main, dest) is True

    css = dest.read_text(encoding="utf-8")
    assert "#336699" in css
    assert "sourceMappingURL=data:application/json" in css


def test_style_compiler_logs_compile_errors(tmp_path, caplog):
    sass_dir = tmp_path / "sass"
    broken = write(sass_dir / "broken.scss", ".a { color: $undefined-var; }\n")
    compiler = StyleCompiler(sass_dir)
    dest = tmp_path / "out" / "broken.css"
    assert compiler.process(broken, dest) is False
    assert not dest.exists()
    assert "Sass compile error" in caplog.text


def test_style_compiler_runs_autoprefixer(monkeypatch, tmp_path):
    sass_dir = tmp_path / "sass"
    main = write(sass_dir / "main.scss", ".row { display: flex; }\n")
    calls = {}

    def fake_run(cmd, capture_output=None, text=None):
        calls["cmd"] = cmd
        return subprocess.CompletedProcess(cmd, 0, stdout="", stderr="")

    monkeypatch.setattr(subprocess, "run", fake_run)
    compiler = StyleCompiler(sass_dir, postcss_bin="/bin/postcss")
    dest = tmp_path / "out" / "main.css"
    assert compiler.process(main, dest)
    assert calls["cmd"] == [
        "/bin/postcss",
        str(dest),
        "--use",
        "autoprefixer",
        "--replace",
    ]
    assert "--map" not in calls["cmd"]
    assert not dest.with_name("main.css.map").exists()


def test_style_compiler_autoprefixer_failure_is_non_fatal(monkeypatch, tmp_path, caplog):
    sass_dir = tmp_path / "sass"
    main = write(sass_dir / "main.scss", ".row { display: flex; }\n")

    def fake_run(cmd, capture_output=None, text=None):
        return subprocess.CompletedProcess(cmd, 1, stdout="", stderr="plugin missing")

    monkeypatch.setattr(subprocess, "run", fake_run)
    compiler = StyleCompiler(sass_dir, postcss_bin="/bin/postcss")
    dest = tmp_path / "out" / "main.css"
    assert compiler.process(main, dest) is True
    assert "display: flex" in dest.read_text(encoding="utf-8")
    assert "Autoprefixer failed" in caplog.text
    assert "plugin missing" in caplog.text


# --- TemplateRenderer ---


def test_template_renderer_interpolates_and_escapes(tmp_path):
    source = write(tmp_path / "views" / "index.jinja", "<h1>{{ title }}</h1>\n")
    renderer = TemplateRenderer({"title": "Hello World!"})
    dest = tmp_path / "public" / renderer.output_name(source)
    assert renderer.process(source, dest)
    assert dest.read_text(encoding="utf-8") == "<h1>Hello World!</h1>\n"

    escaped = TemplateRenderer({"title": "<b>hi</b>"})
    assert escaped.process(source, dest)
    assert "&lt;b&gt;hi&lt;/b&gt;" in dest.read_text(encoding="utf-8")


def test_template_renderer_output_name():
    renderer = TemplateRenderer({})
    assert renderer.output_name(Path("views/index.jinja")) == "index.html"
    assert renderer.output_name(Path("views/index.html.jinja")) == "index.html"
    assert TemplateRenderer({}, extension="htm").output_name(Path("a.jinja")) == "a.htm"
    assert renderer.can_process(Path("a.jinja"))
    assert not renderer.can_process(Path("a.html"))


@pytest.mark.parametrize(
    "template, expected",
    [
        ("{{ missing }}", "Undefined variable"),
        ("{% if %}", "Template syntax error"),
    ],
)
def test_template_renderer_logs_errors(tmp_path, caplog, template, expected):
    source = write(tmp_path / "views" / "index.jinja", template)
    dest = tmp_path / "public" / "index.html"
    assert TemplateRenderer({"title": "x"}).process(source, dest) is False
    assert not dest.exists()
    assert expected in caplog.text


def test_template_renderer_missing_template(tmp_path, caplog):
    source = tmp_path / "views" / "index.jinja"
    source.parent.mkdir()
    assert TemplateRenderer({}).process(source, tmp_path / "index.html") is False
    assert "Template not found" in caplog.text


# --- ScriptMinifier ---


def test_script_minifier_uses_rjsmin(tmp_path):
    source = write(tmp_path / "app.js", "function test(){\n    return 1 + 1;\n}\n")
    dest = tmp_path / "build" / "app.js"
    assert ScriptMinifier().process(source, dest)
    minified = dest.read_text(encoding="utf-8")
    assert "function test()" in minified
    assert len(minified) < len(source.read_text(encoding="utf-8"))
    assert "\n    " not in minified


def test_script_minifier_falls_back_to_terser(monkeypatch, tmp_path, caplog):
    source = write(tmp_path / "app.js", "var a = 1;")
    dest = tmp_path / "build" / "app.js"

    def broken_jsmin(text):
        raise UnicodeDecodeError("utf-8", b"\xff", 0, 1, "invalid start byte")

    monkeypatch.setattr("sitetasks.processors.jsmin", broken_jsmin)
    calls = {}

    def fake_run(cmd, capture_output=None, text=None):
        calls["cmd"] = cmd
        Path(cmd[cmd.index("-o") + 1]).write_text("var a=1;", encoding="utf-8")
        return subprocess.CompletedProcess(cmd, 0, stdout="", stderr="")

    monkeypatch.setattr(subprocess, "run", fake_run)
    assert ScriptMinifier("/bin/terser").process(source, dest)
    assert calls["cmd"][0] == "/bin/terser"
    assert dest.read_text(encoding="utf-8") == "var a=1;"
    assert "rjsmin could not minify" in caplog.text


def test_script_minifier_copies_when_all_fail(monkeypatch, tmp_path, caplog):
    source = write(tmp_path / "app.js", "var a = 1;")
    dest = tmp_path / "build" / "app.js"

    def broken_jsmin(text):
        raise UnicodeDecodeError("utf-8", b"\xff", 0, 1, "invalid start byte")

    monkeypatch.setattr("sitetasks.processors.jsmin", broken_jsmin)
    monkeypatch.setattr(
        subprocess,
        "run",
        lambda cmd, capture_output=None, text=None: subprocess.CompletedProcess(
            cmd, 1, stdout="", stderr="terser exploded"
        ),
    )
    assert ScriptMinifier("/bin/terser").process(source, dest) is False
    assert dest.read_text(encoding="utf-8") == "var a = 1;"
    assert "terser exploded" in caplog.text


# --- ESLint ---

ESLINT_PAYLOAD = [
    {
        "filePath": "/project/src/app.js",
        "messages": [
            {
                "ruleId": "no-unused-vars",
                "severity": 2,
                "message": "'x' is defined but never used.",
                "line": 3,
                "column": 7,
            },
            {
                "ruleId": "semi",
                "severity": 1,
                "message": "Missing semicolon.",
                "line": 4,
                "column": 12,
            },
        ],
    },
    {"filePath": "/project/src/clean.js", "messages": []},
]


def test_lint_report_from_eslint_json():
    report = LintReport.from_eslint_json(ESLINT_PAYLOAD, Path("/project"))
    assert report.error_count == 1
    assert report.warning_count == 1
    assert report.failed
    assert report.summary() == "2 problems (1 errors, 1 warnings)"
    first = report.findings[0]
    assert first.format() == (
        "src/app.js:3:7 error 'x' is defined but never used. (no-unused-vars)"
    )
    assert report.findings[1].format().startswith("src/app.js:4:12 warning")


def test_lint_report_warning_only_passes():
    payload = [dict(ESLINT_PAYLOAD[0], messages=ESLINT_PAYLOAD[0]["messages"][1:])]
    report = LintReport.from_eslint_json(payload)
    assert not report.failed
    assert report.summary() == "1 problem (0 errors, 1 warnings)"
    assert LintReport().summary() == "0 problems (0 errors, 0 warnings)"


def test_eslint_runner_invokes_json_formatter(monkeypatch, tmp_path):
    import json

    calls = {}

    def fake_run(cmd, cwd=None, capture_output=None, text=None):
        calls["cmd"] = cmd
        calls["cwd"] = cwd
        return subprocess.CompletedProcess(cmd, 1, stdout=json.dumps(ESLINT_PAYLOAD), stderr="")

    monkeypatch.setattr(subprocess, "run", fake_run)
    report = ESLintRunner("/bin/eslint", tmp_path).lint([tmp_path / "a.js"])
    assert calls["cmd"] == ["/bin/eslint", "--format", "json", str(tmp_path / "a.js")]
    assert calls["cwd"] == tmp_path
    assert report.error_count == 1


@pytest.mark.parametrize(
    "returncode, stdout, message",
    [
        (2, "", "ESLint exited with code 2"),
        (0, "not json", "Could not parse ESLint output"),
    ],
)
def test_eslint_runner_crash_fails(monkeypatch, tmp_path, returncode, stdout, message):
    monkeypatch.setattr(
        subprocess,
        "run",
        lambda cmd, cwd=None, capture_output=None, text=None: subprocess.CompletedProcess(
            cmd, returncode, stdout=stdout, stderr="config missing"
        ),
    )
    with pytest.raises(TaskFailed, match=message):
        ESLintRunner("/bin/eslint", tmp_path).lint([tmp_path / "a.js"])


# --- Mocha ---


class FakeMochaProcess:
    def __init__(self, returncode, output):
        self.returncode = returncode
        self.stdout = io.StringIO(output)

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        return False

    def wait(self):
        return self.returncode


def test_mocha_runner_reports_exit_status(monkeypatch, tmp_path):
    processes = iter(
        [
            FakeMochaProcess(0, "\n  2 passing\n\n"),
            FakeMochaProcess(1, "  1 failing\nAssertionError\n"),
        ]
    )
    seen = []

    def fake_popen(cmd, cwd=None, stdout=None, stderr=None, text=None):
        seen.append((cmd, stderr))
        return next(processes)

    monkeypatch.setattr(subprocess, "Popen", fake_popen)
    runner = MochaRunner("/bin/mocha", tmp_path)

    passed = runner.run([tmp_path / "a.test.js"])
    assert passed.passed
    assert passed.output == "  2 passing"

    streamed = []
    failed = runner.run([tmp_path / "a.test.js"], on_line=streamed.append)
    assert not failed.passed
    assert failed.output == "  1 failing\nAssertionError"
    assert streamed == ["  1 failing", "AssertionError"]
    assert seen[0] == (["/bin/mocha", str(tmp_path / "a.test.js")], subprocess.STDOUT)
