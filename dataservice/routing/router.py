import re

from .interfaces import TopicRouter

_VALID_NAME_RE = re.compile(r"^[A-Za-z0-9_.=-]+$")


def validate_destination(destination: str) -> str:
    """Returns the destination unchanged, or raises ValueError if it is not a valid name."""
    if not isinstance(destination, str) or not destination:
        raise ValueError("Destination name cannot be empty.")
    if not _VALID_NAME_RE.match(destination):
        raise ValueError(
            f"Invalid destination name '{destination}'. "
            "Allowed characters: letters, digits, '_', '.', '=' and '-'."
        )
    return destination


class NamespaceTopicRouter(TopicRouter):
    """
    Places every destination under one Pulsar tenant/namespace.
    Names are validated, never rewritten, so distinct names keep distinct topics.
    """

    def __init__(self, config: dict):
        # eg: persistent://<tenant>/<namespace>/<destination>
        self.tenant = config.get("tenant", "public")
        self.namespace = config.get("namespace", "default")
        self.persistent = config.get("persistent", True)

    def get_pulsar_topic(self, destination: str) -> str:
        validate_destination(destination)
        scheme = "persistent" if self.persistent else "non-persistent"
        return f"{scheme}://{self.tenant}/{self.namespace}/{destination}"
