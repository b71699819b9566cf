# SPDX-License-Identifier: MPL-2.0
# Copyright 2020-2022 John Mille <john@compose-x.io>

"""
Diagnostic context shared by every compilation stage.

Each stage pushes a location segment when it descends into the document, i.e.
``Functions/MyFunction/Sources/[2]``, and records errors against the current location
instead of raising. One failing subtree therefore never stops the validation of its siblings.
"""

from __future__ import annotations

from contextlib import contextmanager

from modulex.common.logging import LOG
from modulex.exceptions import (
    ModuleReferenceError,
    ModuleSchemaError,
    ModuleXBaseException,
)


class ProcessingContext:
    """
    Holds the location stack and the errors collected while compiling a single module.

    :ivar list[str] locations: current location stack
    :ivar list[ModuleXBaseException] errors: errors recorded so far, in order
    :ivar str source_file: path to the module file, used to annotate the messages
    """

    def __init__(self, source_file: str = None):
        self.source_file = source_file
        self.locations: list = []
        self.errors: list = []

    def __repr__(self):
        return f"ProcessingContext({self.source_file}, errors={len(self.errors)})"

    @property
    def has_errors(self) -> bool:
        return bool(self.errors)

    @property
    def location(self) -> str:
        return "/".join(self.locations)

    def snapshot(self) -> tuple:
        """
        :return: the current location stack, to be restored later with :meth:`at_location`
        :rtype: tuple
        """
        return tuple(self.locations)

    @contextmanager
    def at_location(self, *segments):
        """
        Pushes one or more location segments for the duration of the block. The segments are always
        popped. A modulex exception escaping the block is recorded at that location and not re-raised.

        :param segments: location segments, str or int. int are rendered as ``[i]``
        """
        pushed = 0
        for segment in segments:
            self.locations.append(
                f"[{segment}]" if isinstance(segment, int) else str(segment)
            )
            pushed += 1
        try:
            yield self
        except ModuleXBaseException as error:
            self.add_error(error.args[0], type(error))
        finally:
            del self.locations[len(self.locations) - pushed :]

    def format_message(self, message: str) -> str:
        formatted = message
        if self.locations:
            formatted = f"{formatted} @ {self.location}"
        if self.source_file:
            formatted = f"{formatted} [{self.source_file}]"
        return formatted

    def add_error(self, message: str, category=ModuleSchemaError):
        """
        Records an error at the current location.

        :param str message: description of the error
        :param type category: one of the :class:`ModuleXBaseException` subclasses
        :return: the recorded error
        """
        error = category(self.format_message(message))
        self.errors.append(error)
        LOG.debug(error)
        return error

    def add_reference_error(self, message: str):
        return self.add_error(message, ModuleReferenceError)

    def messages(self) -> list:
        return [str(error) for error in self.errors]
