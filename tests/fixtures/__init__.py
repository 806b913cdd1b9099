"""Shared pytest fixtures and helpers for account tests."""

from .api import *  # noqa: F401,F403
from .providers import *  # noqa: F401,F403
from .records import *  # noqa: F401,F403
from .stores import *  # noqa: F401,F403
from .tokens import *  # noqa: F401,F403
