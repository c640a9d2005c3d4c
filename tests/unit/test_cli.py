"""
Unit tests for the CLI.

Structure tests read the module files; command tests run the Typer app
against a scripted engine.
"""

import json
from pathlib import Path

import pytest
from typer.testing import CliRunner

from pyllm import LLM, Template, ThinkingMode, __version__
from pyllm.cli import app

CLI_DIR = Path(__file__).parent.parent.parent / "pyllm" / "cli"

SCHEMA = {
    "type": "object",
    "properties": {
        "name": {"type": "string"},
        "age": {"type": "integer"}
    },
    "required": ["name", "age"]
}

runner = CliRunner()


def test_cli_files_exist():
    """Test that all CLI files exist."""
    expected_files = [
        "__init__.py",
        "main.py",
        "commands.py",
        "display.py"
    ]

    for filename in expected_files:
        filepath = CLI_DIR / filename
        assert filepath.exists(), f"Missing CLI file: {filename}"


def test_cli_main_structure():
    """Test that main.py has expected structure."""
    content = (CLI_DIR / "main.py").read_text()

    assert "import typer" in content
    assert "def generate(" in content
    assert "def chat(" in content
    assert "def validate(" in content
    assert "def embed(" in content
    assert "def cli()" in content


def test_pyproject_has_cli_script():
    """Test that pyproject.toml has the CLI entry point."""
    content = (CLI_DIR.parent.parent / "pyproject.toml").read_text()

    assert "[project.scripts]" in content
    assert 'pyllm = "pyllm.cli.main:cli"' in content


@pytest.fixture
def schema_file(tmp_path):
    path = tmp_path / "schema.json"
    path.write_text(json.dumps(SCHEMA))
    return path


@pytest.fixture
def fake_llm(monkeypatch, make_engine, greedy):
    """Install a factory that makes LLM.from_pretrained return a scripted client."""
    def install(scripts, template=None):
        llm = LLM(make_engine(scripts=scripts), template=template, sampling=greedy)
        monkeypatch.setattr(LLM, "from_pretrained", lambda *args, **kwargs: llm)
        return llm
    return install


class TestTopLevel:
    """Test options handled by the app callback."""

    def test_version(self):
        """Test --version."""
        result = runner.invoke(app, ["--version"])

        assert result.exit_code == 0
        assert f"pyllm version {__version__}" in result.output

    def test_help_lists_commands(self):
        """Test that help lists every command."""
        result = runner.invoke(app, ["--help"])

        assert result.exit_code == 0
        for command in ("generate", "chat", "validate", "embed"):
            assert command in result.output


class TestValidateCommand:
    """Test the validate command."""

    def test_valid_json(self, tmp_path, schema_file):
        """Test that valid JSON passes."""
        json_file = tmp_path / "data.json"
        json_file.write_text('{"name": "Alice", "age": 30}')

        result = runner.invoke(app, ["validate", "--json", str(json_file), "--schema", str(schema_file)])

        assert result.exit_code == 0
        assert "Validation passed" in result.output

    def test_invalid_json(self, tmp_path, schema_file):
        """Test that schema violations exit with code 1."""
        json_file = tmp_path / "data.json"
        json_file.write_text('{"name": "Alice", "age": "thirty"}')

        result = runner.invoke(app, ["validate", "--json", str(json_file), "--schema", str(schema_file)])

        assert result.exit_code == 1
        assert "Validation failed" in result.output

    def test_malformed_json(self, tmp_path, schema_file):
        """Test that unparseable JSON exits with code 1."""
        json_file = tmp_path / "data.json"
        json_file.write_text('{"name": ')

        result = runner.invoke(app, ["validate", "--json", str(json_file), "--schema", str(schema_file)])

        assert result.exit_code == 1
        assert "Invalid JSON" in result.output


class TestModelCommands:
    """Test the commands that load a model."""

    def test_generate(self, tmp_path, schema_file, fake_llm):
        """Test structured generation written to a file."""
        fake_llm(['{"name":"Bob","age":42}'])
        output = tmp_path / "out" / "result.json"

        result = runner.invoke(app, [
            "generate",
            "--prompt", "Describe Bob",
            "--schema", str(schema_file),
            "--model", "fake.gguf",
            "--output", str(output)
        ])

        assert result.exit_code == 0
        assert "Bob" in result.output
        assert json.loads(output.read_text()) == {"name": "Bob", "age": 42}

    def test_generate_unknown_template(self, schema_file):
        """Test that an unknown template fails before loading."""
        result = runner.invoke(app, [
            "generate",
            "--prompt", "Describe Bob",
            "--schema", str(schema_file),
            "--model", "fake.gguf",
            "--template", "nope"
        ])

        assert result.exit_code == 1
        assert "Failed to load model" in result.output

    def test_chat_messages(self, fake_llm):
        """Test sending messages without an interactive session."""
        llm = fake_llm(["hello<|im_end|>"], template=Template.chatml())

        result = runner.invoke(app, ["chat", "--model", "fake.gguf", "--message", "hi", "--message", "again"])

        assert result.exit_code == 0
        assert "hello" in result.output
        assert len(llm.history) == 4

    def test_chat_prints_thinking_before_answer(self, fake_llm):
        """Test that the thinking panel precedes the streamed answer."""
        llm = fake_llm(["<think>reasoning</think>answer<|im_end|>"], template=Template.chatml_thinking())
        llm.thinking_mode = ThinkingMode.ENABLED

        result = runner.invoke(app, ["chat", "--model", "fake.gguf", "--message", "why?"])

        assert result.exit_code == 0
        assert "Thinking" in result.output
        assert result.output.index("reasoning") < result.output.index("answer")
        assert llm.history.entries[-1].content == "answer"

    def test_chat_interactive_exit(self, fake_llm):
        """Test that the interactive loop ends on 'exit'."""
        llm = fake_llm(["hello<|im_end|>"], template=Template.chatml())

        result = runner.invoke(app, ["chat", "--model", "fake.gguf"], input="hi\nexit\n")

        assert result.exit_code == 0
        assert "hello" in result.output
        assert len(llm.history) == 2

    def test_embed(self, tmp_path, fake_llm):
        """Test printing and saving an embedding."""
        fake_llm([])
        output = tmp_path / "vector.json"

        result = runner.invoke(app, [
            "embed", "--text", "hello", "--model", "fake.gguf", "--output", str(output)
        ])

        assert result.exit_code == 0
        assert "Dimensions" in result.output
        assert json.loads(output.read_text())[0] == 5.0
