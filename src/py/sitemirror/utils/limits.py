from enum import Enum
import resource


class LimitType(Enum):
	Files = resource.RLIMIT_NOFILE


# Darwin reports really high hard limits that lead to OverflowErrors, so
# we cap them.
REASONABLE_LIMITS: dict[LimitType, int] = {
	LimitType.Files: 10 * 10240,
}


def unlimit(scope: LimitType, ratio: float = 1.0) -> int | bool:
	"""Raises the soft limit for the given resource towards its hard limit,
	returns the new limit or `False` when it could not be changed."""
	soft, hard = resource.getrlimit(scope.value)
	try:
		target = (
			REASONABLE_LIMITS[scope]
			if hard == resource.RLIM_INFINITY
			else int(soft + ratio * (hard - soft))
		)
		if maximum := REASONABLE_LIMITS.get(scope):
			target = min(maximum, target)
		# The soft limit is never lowered
		if soft == resource.RLIM_INFINITY or target <= soft:
			return soft
		resource.setrlimit(scope.value, (target, hard))
		return target
	except ValueError:
		return False
	except OSError:
		return False


# EOF
