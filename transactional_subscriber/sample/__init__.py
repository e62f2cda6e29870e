"""Sample application showing post-commit entity event handling."""

from .app import run_sample
from .models import Company, Person
from .subscriber import EntityEventLog

__all__ = ["Company", "EntityEventLog", "Person", "run_sample"]
