"""Run a coding agent against an isolated copy of a repository and publish
its work as a pull request."""

__version__ = "0.1.0"
