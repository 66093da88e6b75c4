"""PhotoRoute: cost-aware routing of photo edits across image backends."""

__version__ = "0.1.0"
