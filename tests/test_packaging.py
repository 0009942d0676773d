"""Checks on the package metadata in pyproject.toml."""

from pathlib import Path

import pytest

tomllib = pytest.importorskip("tomllib")

ROOT = Path(__file__).resolve().parent.parent


@pytest.fixture
def project():
    with open(ROOT / "pyproject.toml", "rb") as f:
        return tomllib.load(f)["project"]


class TestProjectMetadata:

    def test_long_description_is_not_a_design_document(self, project) -> None:
        readme = project.get("readme")
        if readme is not None:
            assert (ROOT / readme).is_file()
            assert readme not in ("SPEC_FULL.md", "DESIGN.md", "spec.md")

    def test_runtime_dependencies(self, project) -> None:
        names = {requirement.split(">")[0].split("=")[0] for requirement in project["dependencies"]}

        assert names == {"websockets", "websocket-client", "python-dotenv"}
