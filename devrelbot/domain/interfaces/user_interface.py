"""Interface for showing results and problems to the operator.

Allows different UI implementations (console, chat bot replies) behind
the same calls.
"""

import abc
from typing import Any, Mapping, Sequence


class UserInterface(abc.ABC):
    """Abstract Base Class for user-facing output."""

    @abc.abstractmethod
    def display_output(self, output: str, **kwargs: Any) -> None:
        """Displays standard output to the user.

        Args:
            output: The text to display (Markdown is allowed).
            **kwargs: Additional arguments for formatting (e.g. title).
        """
        pass

    @abc.abstractmethod
    def display_error(self, error_message: str, **kwargs: Any) -> None:
        pass

    @abc.abstractmethod
    def display_warning(self, warning_message: str, **kwargs: Any) -> None:
        pass

    @abc.abstractmethod
    def display_info(self, info_message: str, **kwargs: Any) -> None:
        pass

    @abc.abstractmethod
    def display_table(self, title: str, columns: Sequence[str], rows: Sequence[Sequence[Any]]) -> None:
        """Displays tabular data such as limits or breaker states."""
        pass

    @abc.abstractmethod
    def display_mapping(self, title: str, values: Mapping[str, Any]) -> None:
        """Displays a two-column key/value table."""
        pass
