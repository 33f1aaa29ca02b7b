"""Tests for the contextforge command line."""

import json

import yaml
from click.testing import CliRunner

from contextforge.cli import main

CHARACTER = {
    "id": "char-1",
    "data": {"name": "Aria", "description": "A wandering bard.", "personality": "Cheerful"},
}


def _write_inputs(tmp_path):
    character_path = tmp_path / "aria.yaml"
    character_path.write_text(yaml.dump(CHARACTER))
    messages_path = tmp_path / "chat.yaml"
    messages_path.write_text(
        yaml.dump(
            [
                {"senderId": "user", "content": "Hi", "timestamp": 1},
                {"senderId": "char-1", "content": "Welcome!", "timestamp": 2},
            ]
        )
    )
    return character_path, messages_path


class TestBuildCommand:
    def test_json_output(self, tmp_path):
        character_path, messages_path = _write_inputs(tmp_path)
        result = CliRunner().invoke(
            main,
            ["build", str(character_path), "--messages", str(messages_path), "--json"],
        )
        assert result.exit_code == 0, result.output
        data = json.loads(result.output)
        assert data["metadata"]["characterId"] == "char-1"
        assert data["metadata"]["messageCount"] == 2
        assert data["content"].endswith("You: Hi\nAria: Welcome!")

    def test_overrides(self, tmp_path):
        character_path, _ = _write_inputs(tmp_path)
        result = CliRunner().invoke(
            main, ["build", str(character_path), "--max-length", "40", "--json"]
        )
        assert result.exit_code == 0, result.output
        assert len(json.loads(result.output)["content"]) <= 40

    def test_config_preset(self, tmp_path):
        character_path, _ = _write_inputs(tmp_path)
        (tmp_path / "contextforge.yaml").write_text(
            yaml.dump({"presets": {"short": {"story_string": "{{char}} / {{personality}}"}}})
        )
        result = CliRunner().invoke(
            main,
            ["build", str(character_path), "--config", str(tmp_path), "--preset", "short", "--json"],
        )
        assert result.exit_code == 0, result.output
        assert json.loads(result.output)["content"] == "Aria / Cheerful"

    def test_unknown_preset_fails(self, tmp_path):
        character_path, _ = _write_inputs(tmp_path)
        (tmp_path / "contextforge.yaml").write_text("presets: {}\n")
        result = CliRunner().invoke(
            main, ["build", str(character_path), "--config", str(tmp_path), "--preset", "nope"]
        )
        assert result.exit_code == 1
        assert "Unknown preset" in result.output

    def test_table_output(self, tmp_path):
        character_path, messages_path = _write_inputs(tmp_path)
        result = CliRunner().invoke(
            main, ["build", str(character_path), "--messages", str(messages_path)]
        )
        assert result.exit_code == 0, result.output
        assert "Aria's personality: Cheerful" in result.output
        assert "history" in result.output


class TestValidateTemplate:
    def test_valid_template(self, tmp_path):
        path = tmp_path / "story.txt"
        path.write_text("{{#if description}}{{description}}{{/if}}")
        result = CliRunner().invoke(main, ["validate-template", str(path)])
        assert result.exit_code == 0
        assert "valid" in result.output

    def test_invalid_template(self, tmp_path):
        path = tmp_path / "story.txt"
        path.write_text("{{mood}} {{#if description}}")
        result = CliRunner().invoke(main, ["validate-template", str(path)])
        assert result.exit_code == 1
        assert "Unknown variable" in result.output
        assert "Unclosed" in result.output

    def test_extra_variables(self, tmp_path):
        path = tmp_path / "story.txt"
        path.write_text("{{mood}}")
        result = CliRunner().invoke(main, ["validate-template", str(path), "--var", "mood"])
        assert result.exit_code == 0


class TestCountCommand:
    def test_counts(self, tmp_path):
        path = tmp_path / "text.txt"
        path.write_text("one two three four")
        result = CliRunner().invoke(main, ["count", str(path)])
        assert result.exit_code == 0
        assert "character" in result.output
        assert "word" in result.output
