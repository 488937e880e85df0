from abc import ABC, abstractmethod


class TopicRouter(ABC):
    @abstractmethod
    def get_pulsar_topic(self, destination: str) -> str:
        """
        Determines Pulsar's fully-qualified topic for a destination name.

        Args:
            destination (str): The case-sensitive destination name used by
                               publishers and consumers.

        Returns:
            The Pulsar topic as a string.

        Raises:
            ValueError: If the destination name is not a valid topic name.
        """
        raise NotImplementedError
