"""TeamAuth: multi-provider authentication for organizations and teams."""

__version__ = "1.0.0"
