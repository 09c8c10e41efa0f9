"""Reads the list of input sources from the node parameters and connects them to map callbacks."""

from __future__ import annotations

from typing import Iterator, Mapping, Sequence

from elevmap.geometry import TransformBuffer
from elevmap.input_source import Input, InputCallback, InputConfigurationError
from elevmap.node import Node
from elevmap.sensor_processors.base import GeneralParameters


class InputSourceManager:
    """Configures every listed input source and registers the matching callbacks."""

    def __init__(self, node: Node, transform_buffer: TransformBuffer | None = None) -> None:
        self.node = node
        self.transform_buffer = transform_buffer
        self._sources: list[Input] = []

    @property
    def sources(self) -> list[Input]:
        """The successfully configured input sources, in configuration order."""
        return list(self._sources)

    def __iter__(self) -> Iterator[Input]:
        return iter(list(self._sources))

    def __len__(self) -> int:
        return len(self._sources)

    def configure_from_parameters(self, input_sources_namespace: str) -> bool:
        """Configure the sources named by the ``inputs`` parameter.

        Returns False when the list is missing or empty.
        """
        if self.node.has_parameter("inputs"):
            configuration = self.node.get_parameter("inputs")
        else:
            configuration = self.node.declare_parameter("inputs", [])
        if not configuration:
            self.node.logger.warning(
                "Could not load the input sources configuration from parameter %s, "
                "are you sure it was pushed to the parameter server? Assuming that you "
                "meant to leave it empty. Not subscribing to any inputs!",
                input_sources_namespace,
            )
            return False
        return self.configure(list(configuration), input_sources_namespace)

    def configure(self, config: Sequence[str], source_configuration_name: str) -> bool:
        """Configure one input per name in ``config``.

        An empty list explicitly configures no inputs. Returns False if any
        source failed to configure or subscribed to a topic already taken.
        """
        if not config:
            return True

        general_parameters = GeneralParameters(
            robot_base_frame_id=self.node.get_parameter("robot_base_frame_id"),
            map_frame_id=self.node.get_parameter("map_frame_id"),
        )
        successful = True
        subscribed_topics: set[str] = set()

        for input_name in config:
            source = Input(self.node, self.transform_buffer)
            try:
                source.configure(input_name, source_configuration_name, general_parameters)
            except InputConfigurationError as error:
                self.node.logger.error("%s", error)
                successful = False
                continue

            topic = source.subscribed_topic()
            if topic in subscribed_topics:
                self.node.logger.warning(
                    "The input sources specification tried to subscribe to %s multiple times. "
                    "Only subscribing once.",
                    topic,
                )
                successful = False
                continue
            subscribed_topics.add(topic)
            self._sources.append(source)
        return successful

    def register_callbacks(self, callbacks: Mapping[str, InputCallback]) -> bool:
        """Register the callback matching each source's type.

        Returns False as soon as a source has a type with no callback.
        """
        logger = self.node.logger
        if not self._sources:
            logger.warning(
                "Not registering any callbacks, no input sources given. "
                "Did you configure the InputSourceManager?"
            )
            return True
        for source in self._sources:
            source_type = source.type()
            callback = callbacks.get(source_type)
            if callback is None:
                logger.warning("The configuration contains input sources of an unknown type: %s", source_type)
                logger.warning("Available types are:")
                for name in callbacks:
                    logger.warning("- %s", name)
                return False
            source.register_callback(callback)
        return True