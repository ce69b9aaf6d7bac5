"""Live documentation preview: build, serve and reload API docs on change."""

__version__ = "0.1.0"
