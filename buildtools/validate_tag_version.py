#!/usr/bin/env python3
"""Check that a release tag matches the package version.

CI runs this before publishing so that a ``v<version>`` tag can only be
pushed for the ``__version__`` declared in ``src/kcsc/__init__.py``.
"""
from __future__ import annotations

import argparse
import ast
import pathlib
import sys

PROJECT_ROOT = pathlib.Path(__file__).resolve().parent.parent
INIT_PATH = PROJECT_ROOT / "src" / "kcsc" / "__init__.py"


class TagValidationError(RuntimeError):
    """Raised when a tag does not match the expected scheme."""


def load_package_version(init_path: pathlib.Path = INIT_PATH) -> str:
    """Parse ``__version__`` from the package without importing it."""
    module = ast.parse(init_path.read_text(encoding="utf-8"), filename=str(init_path))
    for node in module.body:
        if not isinstance(node, ast.Assign):
            continue
        if any(getattr(target, "id", None) == "__version__" for target in node.targets):
            if isinstance(node.value, ast.Constant) and isinstance(node.value.value, str):
                return node.value.value
            break
    raise TagValidationError(f"Unable to determine __version__ from {init_path.name}")


def expected_version_from_tag(tag: str, kind: str) -> str:
    """Return the version a *tag* of the given *kind* refers to."""
    if kind == "release":
        if not tag.startswith("v") or tag.endswith("-dev"):
            raise TagValidationError(
                f"Release tags must be formatted as v<version>; received '{tag}'."
            )
        return tag[1:]
    if kind == "dev":
        if not (tag.startswith("v") and tag.endswith("-dev")):
            raise TagValidationError(
                f"Dev tags must be formatted as v<version>-dev; received '{tag}'."
            )
        return tag[1:-4]
    raise TagValidationError(f"Unknown tag kind '{kind}'.")


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    """Return parsed CLI arguments for tag validation."""
    parser = argparse.ArgumentParser(description="Validate a tag name against the kcsc version.")
    parser.add_argument("--kind", required=True, choices=["release", "dev"])
    parser.add_argument("--tag", required=True, help="Git tag name to validate.")
    return parser.parse_args(argv)


def main(argv: list[str] | None = None) -> int:
    """Return 0 when the tag matches, 1 otherwise."""
    args = parse_args(argv)
    try:
        expected_version = expected_version_from_tag(args.tag, args.kind)
        package_version = load_package_version()
    except TagValidationError as exc:
        sys.stderr.write(f"{exc}\n")
        return 1

    if package_version != expected_version:
        sys.stderr.write(
            f"Tag '{args.tag}' names version '{expected_version}' but kcsc is "
            f"'{package_version}'.\n"
        )
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
