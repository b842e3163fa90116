"""Module manager, configuration helpers and controller web server for a modular charging-station framework."""

__version__ = "0.1.0"