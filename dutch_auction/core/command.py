"""
Provides support for the Command pattern

Collaborators that the engine calls out to, e.g., settlement, are modeled as commands.
"""
from abc import ABC, abstractmethod
from logging import Logger
from typing import TypeVar, Generic

from dutch_auction.core.logging import get_logger

Args = TypeVar("Args")

Result = TypeVar("Result")


class Command(Generic[Args, Result], ABC):
    """
    Commands are invoked as functions
    """

    @abstractmethod
    def __call__(self, args: Args) -> Result:
        """
        Executes the command
        """

    def get_logger(self, name: str | None = None) -> Logger:
        return get_logger(self, name)
