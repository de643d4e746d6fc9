"""Parsing utilities for line-oriented NSHMP input files.

NSHMP input files have no explicit schema: the length of most blocks
depends on integers read earlier in the file. Files are therefore read
strictly sequentially with a `LineCursor`, and values are extracted from
individual lines by token position with `read_int`, `read_float` and
`read_float_list`.
"""

from collections.abc import Sequence

COMMENT_MARKER = "!"


class ParseError(Exception):
    """Error for parsing NSHMP input files."""

    pass


class ExhaustedInputError(ParseError):
    """Raised when more lines are requested than remain in the input."""

    pass


class MalformedLineError(ParseError):
    """Raised when a line cannot be tokenised into the expected values."""

    pass


class LineCursor:
    """Sequential, forward-only view over the lines of an input file.

    Parameters
    ----------
    lines : Sequence[str]
        The decoded lines of the input file.

    Examples
    --------
    >>> cursor = LineCursor(["3", "a", "b", "c", "d"])
    >>> count = read_int(cursor.next_line(), 0)
    >>> cursor.take(count)
    ['a', 'b', 'c']
    >>> cursor.skip(1)
    >>> cursor.exhausted
    True
    """

    def __init__(self, lines: Sequence[str]):
        self._lines = lines
        self._position = 0
        self._end = max(
            (index + 1 for index, line in enumerate(lines) if line.strip()), default=0
        )

    @property
    def line_number(self) -> int:
        """int: The 1-based line number of the last line read (0 if none)."""
        return self._position

    @property
    def exhausted(self) -> bool:
        """bool: True if only blank lines remain."""
        return self._position >= self._end

    def _check_remaining(self, count: int) -> None:
        remaining = len(self._lines) - self._position
        if count > remaining:
            raise ExhaustedInputError(
                f"Expected {count} more line(s) after line {self._position}, "
                f"but only {remaining} remain"
            )

    def next_line(self) -> str:
        """Consume the next line.

        Returns
        -------
        str
            The next line of input.

        Raises
        ------
        ExhaustedInputError
            If there are no lines left.
        """
        self._check_remaining(1)
        line = self._lines[self._position]
        self._position += 1
        return line

    def take(self, count: int) -> list[str]:
        """Consume the next `count` lines as a block.

        Parameters
        ----------
        count : int
            The number of lines to take.

        Returns
        -------
        list[str]
            Exactly `count` lines, in file order.

        Raises
        ------
        ExhaustedInputError
            If fewer than `count` lines remain.
        MalformedLineError
            If `count` is negative.
        """
        if count < 0:
            raise MalformedLineError(
                f"Expected a non-negative line count after line {self._position}, "
                f"got {count}"
            )
        self._check_remaining(count)
        block = list(self._lines[self._position : self._position + count])
        self._position += count
        return block

    def skip(self, count: int) -> None:
        """Discard the next `count` lines.

        Raises
        ------
        ExhaustedInputError
            If fewer than `count` lines remain.
        MalformedLineError
            If `count` is negative.
        """
        self.take(count)


def strip_comment(line: str, marker: str = COMMENT_MARKER) -> str:
    """Remove everything from `marker` to the end of `line`."""
    index = line.find(marker)
    return line if index < 0 else line[:index]


def tokenise(line: str) -> list[str]:
    """Split a line into whitespace separated tokens, ignoring comments.

    Parameters
    ----------
    line : str
        The line to split.

    Returns
    -------
    list[str]
        The tokens of the line, excluding any trailing comment.
    """
    return strip_comment(line).split()


def _token(line: str, index: int, label: str | None) -> str:
    tokens = tokenise(line)
    if not 0 <= index < len(tokens):
        description = f" ({label})" if label else ""
        raise MalformedLineError(
            f'Expecting a value{description} at token {index}, got: "{line.strip()}"'
        )
    return tokens[index]


def read_float(line: str, index: int, label: str | None = None) -> float:
    """Read a float from a line.

    Parameters
    ----------
    line : str
        The line to read from.
    index : int
        The index of the whitespace separated token to read.
    label : str | None
        A human friendly label for the floating point (for debugging
        purposes), or None for no label. Defaults to None.

    Raises
    ------
    MalformedLineError
        If the token does not exist or is not a float.

    Returns
    -------
    float
        The float read from the line.
    """
    float_str = _token(line, index, label)
    try:
        return float(float_str)
    except ValueError:
        if label:
            raise MalformedLineError(f'Expecting float ({label}), got: "{float_str}"')
        else:
            raise MalformedLineError(f'Expecting float, got: "{float_str}"')


def read_int(line: str, index: int, label: str | None = None) -> int:
    """Read an int from a line.

    Parameters
    ----------
    line : str
        The line to read from.
    index : int
        The index of the whitespace separated token to read.
    label : str
        Human readable string label for identifying the value in an error
        message.

    Raises
    ------
    MalformedLineError
        If the token does not exist or is not an int.

    Returns
    -------
    int
        The int read from the line.
    """
    int_str = _token(line, index, label)
    try:
        return int(int_str)
    except ValueError:
        if label:
            raise MalformedLineError(f'Expecting int ({label}), got: "{int_str}"')
        else:
            raise MalformedLineError(f'Expecting int, got: "{int_str}"')


def read_float_list(line: str, label: str | None = None) -> list[float]:
    """Read every token of a line as a float.

    Parameters
    ----------
    line : str
        The line to read from.
    label : str | None
        Human readable label for error messages.

    Raises
    ------
    MalformedLineError
        If any token is not a float.

    Returns
    -------
    list[float]
        The values on the line, in order.
    """
    return [
        read_float(line, i, label) for i in range(len(tokenise(line)))
    ]
