"""Metadata package for shellpipe."""

from __future__ import annotations

__title__ = "shellpipe"
__package_name__ = "shellpipe"
__version__ = "0.1.0"
__description__ = "Compose and run shell-style commands portably from Python"
__email__ = "shellpipe@users.noreply.github.com"
__author__ = "shellpipe contributors"
__github__ = "https://github.com/shellpipe/shellpipe"
__docs__ = "https://github.com/shellpipe/shellpipe#readme"
__tracker__ = "https://github.com/shellpipe/shellpipe/issues"
__pypi__ = "https://pypi.org/project/shellpipe/"
__license__ = "MIT"
__copyright__ = "Copyright 2026- shellpipe contributors"
