"""
Unit tests for prompt template loading.
"""

from vocational_backend.prompt_loader import load_prompt, render_template


class TestLoadPrompt:
    def test_bom_is_stripped(self, tmp_path):
        path = tmp_path / "prompt.txt"
        path.write_bytes("\ufeffHola <<NAME>>".encode("utf-8"))

        assert load_prompt(path) == "Hola <<NAME>>"

    def test_invalid_bytes_are_dropped(self, tmp_path):
        path = tmp_path / "prompt.txt"
        path.write_bytes(b"Hola \xff mundo")

        assert load_prompt(path) == "Hola  mundo"


class TestRenderTemplate:
    def test_known_keys_are_replaced_unknown_kept(self):
        rendered = render_template("<<A>> y <<B>>", {"A": "uno"})

        assert rendered == "uno y <<B>>"

    def test_values_are_not_rescanned(self):
        rendered = render_template("<<A>>|<<B>>", {"A": "<<B>>", "B": "dos"})

        assert rendered == "<<B>>|dos"
