"""Sphinx configuration for the batchscrape documentation."""

import sys
from importlib.metadata import PackageNotFoundError, version
from pathlib import Path

# Document the working tree even when the package is not installed.
sys.path.insert(0, str(Path(__file__).resolve().parents[2]))

project = "batchscrape"
author = "batchscrape contributors"
copyright = f"2025, {author}"
try:
    release = version("batchscrape")
except PackageNotFoundError:
    release = "0.1.0"
version = ".".join(release.split(".")[:2])

extensions = [
    "sphinx.ext.autodoc",
    "sphinx.ext.napoleon",
    "sphinx.ext.intersphinx",
    "sphinxcontrib.mermaid",
    "sphinx_immaterial",
]
exclude_patterns = ["_build"]

html_theme = "sphinx_immaterial"
html_title = f"batchscrape {release}"
html_theme_options = {
    "features": ["navigation.top", "search.highlight", "toc.follow"],
    "palette": {"primary": "teal", "accent": "amber"},
}

# The browser executor is documented without a Playwright install.
autodoc_mock_imports = ["playwright"]
autodoc_member_order = "bysource"
autodoc_typehints = "description"
autodoc_default_options = {"members": True, "show-inheritance": True}

napoleon_google_docstring = True
napoleon_numpy_docstring = False

mermaid_output_format = "raw"

intersphinx_mapping = {
    "python": ("https://docs.python.org/3", None),
    "pydantic": ("https://docs.pydantic.dev/latest", None),
}
