"""TaskHub: multi-tenant team, project and task authorization core."""

__version__ = "1.0.0"
