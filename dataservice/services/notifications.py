from loguru import logger

from ..core.message import Message
from ..messaging.interfaces import IMessageQueue
from ..messaging.publisher import PublishResult


async def log_notification(message: Message) -> None:
    """Listener handler that only records the notification."""
    logger.info(
        f"Notification {message.id} [{message.type}] from '{message.source}': {message.content}"
    )


class ChangeNotifier:
    """
    Publishes one notification per successful store mutation.

    The mutation is already committed when notify() runs, so a failed publish
    means the change happened but its notification may be missing. The typed
    messaging error is raised to the caller.
    """

    def __init__(self, queue: IMessageQueue, entity: str):
        self.queue = queue
        self.entity = entity

    async def notify(self, event: str, content: str) -> PublishResult:
        kind = f"{self.entity}-{event}"
        result = await self.queue.publish(content, destination=kind, message_type=kind)
        if not result.ok:
            logger.error(
                f"{self.entity.capitalize()} change committed but notification "
                f"'{kind}' was not published: {result.error}"
            )
        return result.raise_for_error()
