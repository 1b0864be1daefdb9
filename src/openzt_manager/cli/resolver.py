"""Instance id resolution.

Users may type any unique prefix of an instance id. Full-length ids are
passed through without a lookup.
"""

from openzt_manager.cli.client import InstanceClient

UUID_LENGTH = 36
DEFAULT_DISPLAY_LENGTH = 8
_DISPLAY_STEP = 4


class ResolutionError(Exception):
    """An id prefix could not be resolved to exactly one instance."""


class IdNotFoundError(ResolutionError):
    def __init__(self, prefix: str) -> None:
        self.prefix = prefix
        super().__init__(f"No instance found with ID prefix '{prefix}'")


class AmbiguousIdError(ResolutionError):
    def __init__(self, prefix: str, matches: list[str]) -> None:
        self.prefix = prefix
        self.matches = matches
        super().__init__(
            f"Ambiguous ID prefix '{prefix}' matches {len(matches)} instances"
        )

    @property
    def hint(self) -> str:
        length = suggest_min_length(self.matches)
        return f"Use at least {length} characters to identify an instance"


async def resolve_instance_id(client: InstanceClient, value: str) -> str:
    """Resolve an id or id prefix to a full instance id.

    Raises:
        IdNotFoundError: No instance starts with the prefix.
        AmbiguousIdError: More than one instance starts with it.
    """
    value = value.strip()
    if len(value) == UUID_LENGTH:
        return value

    instances = await client.list_instances()
    matches = [i["id"] for i in instances if i["id"].startswith(value)]
    if not matches:
        raise IdNotFoundError(value)
    if len(matches) > 1:
        raise AmbiguousIdError(value, matches)
    return matches[0]


def calculate_safe_id_length(ids: list[str]) -> int:
    """Shortest display length (>= 8, growing by 4) keeping all ids distinct."""
    if not ids:
        return DEFAULT_DISPLAY_LENGTH

    length = DEFAULT_DISPLAY_LENGTH
    while length < UUID_LENGTH:
        if len({i[:length] for i in ids}) == len(ids):
            return length
        length += _DISPLAY_STEP
    return UUID_LENGTH


def suggest_min_length(ids: list[str]) -> int:
    """Minimum prefix length that distinguishes all the given ids."""
    if len(ids) <= 1:
        return 1

    for length in range(1, UUID_LENGTH):
        if len({i[:length] for i in ids}) == len(ids):
            return length
    return UUID_LENGTH
