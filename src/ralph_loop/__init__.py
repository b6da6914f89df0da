"""Ralph loop: drive a stateless coding agent until its task list is done."""

__version__ = "0.1.0"
