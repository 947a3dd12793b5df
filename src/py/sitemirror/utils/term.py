from typing import ClassVar, TextIO
import os

# SEE: https://no-color.org/
NO_COLOR: bool = "NO_COLOR" in os.environ
FORCE_COLOR: bool = "FORCE_COLOR" in os.environ


def hasColor(stream: TextIO) -> bool:
	"""Tells if ANSI colours should be written to the given stream."""
	if FORCE_COLOR:
		return True
	elif NO_COLOR:
		return False
	else:
		isatty = getattr(stream, "isatty", None)
		return bool(isatty and isatty())


class Term:
	RESET: ClassVar[str] = "\033[0m"

	@staticmethod
	def Color(color: int, bold: bool = False) -> str:
		return f"\033[{'1' if bold else '0'};38;5;{color}m"


# EOF
