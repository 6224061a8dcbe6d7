"""Sphinx configuration for the hospital ward admin API reference."""
import os
import sys

# modules are imported from the repository root, as the services run
sys.path.insert(0, os.path.abspath("../.."))
os.environ.setdefault("DATABASE_URL", "sqlite:///./docs.db")
os.environ.setdefault("EVENT_PUBLISHING_ENABLED", "false")

project = "Hospital Ward Admin"
author = "Hospital Ward Admin maintainers"
copyright = "2025, Hospital Ward Admin maintainers"
release = "0.3.0"

extensions = [
    "sphinx.ext.autodoc",
    "sphinx.ext.napoleon",
    "sphinx.ext.viewcode",
]

autodoc_default_options = {
    "members": True,
    "member-order": "bysource",
    "show-inheritance": True,
}
autodoc_typehints = "description"

exclude_patterns: list[str] = []

html_theme = "sphinx_rtd_theme"
html_title = "Hospital Ward Admin"
