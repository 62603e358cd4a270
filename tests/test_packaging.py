import tomllib
from pathlib import Path

ROOT = Path(__file__).resolve().parent.parent


def _project() -> dict:
    with (ROOT / "pyproject.toml").open("rb") as handle:
        return tomllib.load(handle)


def test_declared_modules_exist() -> None:
    modules = _project()["tool"]["setuptools"]["py-modules"]
    assert modules
    for name in modules:
        assert (ROOT / f"{name}.py").is_file(), name


def test_package_description_does_not_ship_design_documents() -> None:
    readme = _project()["project"].get("readme")
    assert readme is None or readme not in ("SPEC_FULL.md", "spec.md", "DESIGN.md")
