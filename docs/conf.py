import os
import sys

# Sphinx configuration for the gradfn API reference.
# Build with: sphinx-build -b html docs docs/_build

sys.path.insert(0, os.path.abspath(".."))

project = "gradfn"
author = "gradfn developers"

extensions = [
    "sphinx.ext.autodoc",
    "sphinx.ext.napoleon",
    "sphinx.ext.mathjax",
    "sphinx_math_dollar",
]

# Docstrings write formulas between $$ ... $$
autodoc_member_order = "bysource"
napoleon_google_docstring = True
napoleon_use_rtype = False
pygments_style = "sphinx"
exclude_patterns = ["_build", "Thumbs.db", ".DS_Store", ".venv"]

html_theme = "alabaster"
