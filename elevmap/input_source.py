"""An input source: a subscribed topic together with the sensor processor for its data."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Callable

from elevmap.geometry import TransformBuffer
from elevmap.node import Node
from elevmap.sensor_processors.base import GeneralParameters, SensorProcessorBase
from elevmap.sensor_processors.laser import LaserSensorProcessor
from elevmap.sensor_processors.perfect import PerfectSensorProcessor
from elevmap.sensor_processors.stereo import StereoSensorProcessor
from elevmap.sensor_processors.structured_light import StructuredLightSensorProcessor
from elevmap.threadsafe import ThreadSafeDataWrapper

InputCallback = Callable[[Any, bool, SensorProcessorBase], None]

_SENSOR_PROCESSORS: dict[str, type[SensorProcessorBase]] = {
    "structured_light": StructuredLightSensorProcessor,
    "stereo": StereoSensorProcessor,
    "laser": LaserSensorProcessor,
    "perfect": PerfectSensorProcessor,
}


class InputConfigurationError(ValueError):
    """Raised when an input source cannot be configured."""


def expand_topic_name(topic: str, node_name: str, namespace: str) -> str:
    """Expand a relative, private (``~``) or substituted topic name into an absolute one."""
    if not topic:
        raise ValueError("topic name must not be empty")
    if not namespace.startswith("/"):
        namespace = "/" + namespace
    base = namespace.rstrip("/")
    topic = (
        topic.replace("{node}", node_name)
        .replace("{ns}", namespace)
        .replace("{namespace}", namespace)
    )
    if topic.startswith("~"):
        rest = topic[1:]
        if rest and not rest.startswith("/"):
            raise ValueError(f"'~' must be followed by '/' in topic name '{topic}'")
        expanded = f"{base}/{node_name}{rest}"
    elif topic.startswith("/"):
        expanded = topic
    else:
        expanded = f"{base}/{topic}"
    while "//" in expanded:
        expanded = expanded.replace("//", "/")
    return expanded


def create_sensor_processor(
    sensor_type: str,
    node: Node,
    general_parameters: GeneralParameters,
    transform_buffer: TransformBuffer | None = None,
) -> SensorProcessorBase:
    """Create the sensor processor named by ``sensor_type``."""
    try:
        cls = _SENSOR_PROCESSORS[sensor_type]
    except KeyError:
        raise InputConfigurationError(f"The sensor type {sensor_type} is not available.") from None
    return cls(node, general_parameters, transform_buffer)


@dataclass
class InputParameters:
    """Configuration of one input source."""

    name: str = ""
    type: str = ""
    is_enabled: bool = True
    queue_size: int = 0
    topic: str = ""
    publish_on_update: bool = True


class Input:
    """Feeds data from one topic, with its sensor processor, to a map callback."""

    def __init__(self, node: Node, transform_buffer: TransformBuffer | None = None) -> None:
        self.node = node
        self.transform_buffer = transform_buffer
        self.sensor_processor: SensorProcessorBase | None = None
        self._parameters = ThreadSafeDataWrapper(InputParameters())
        self._callback: InputCallback | None = None

    @property
    def parameters(self) -> InputParameters:
        """A copy of the current configuration."""
        return self._parameters.get()

    @property
    def _logger(self) -> logging.Logger:
        return self.node.logger

    def configure(
        self,
        input_source_name: str,
        source_configuration_name: str,
        general_parameters: GeneralParameters,
    ) -> None:
        """Read the parameters of ``input_source_name`` and set up its sensor processor.

        Raises InputConfigurationError for an unknown sensor processor type.
        """
        node = self.node
        topic = node.declare_parameter(f"{input_source_name}.topic", "")
        queue_size = node.declare_parameter(f"{input_source_name}.queue_size", 1)
        publish_on_update = node.declare_parameter(f"{input_source_name}.publish_on_update", True)
        sensor_type = node.declare_parameter(f"{input_source_name}.sensor_processor.type", "")
        input_type = node.declare_parameter(f"{input_source_name}.type", "")

        for value, what in ((input_type, "type"), (topic, "topic"), (sensor_type, "sensor_processor")):
            if not value:
                self._logger.error(
                    "Could not configure input source %s because no %s was given.", input_source_name, what
                )

        parameters = InputParameters(
            name=input_source_name,
            type=input_type,
            queue_size=queue_size,
            topic=topic,
            publish_on_update=publish_on_update,
        )
        self._parameters.set(parameters)

        processor = create_sensor_processor(sensor_type, node, general_parameters, self.transform_buffer)
        processor.read_parameters(input_source_name)
        self.sensor_processor = processor

        self._logger.info(
            "Configured %s:%s @ %s (publishing_on_update: %s), using %s to process data.",
            parameters.type,
            parameters.name,
            self.subscribed_topic(),
            "true" if parameters.publish_on_update else "false",
            sensor_type,
        )

    def subscribed_topic(self) -> str:
        """The absolute name of the topic this input listens to."""
        return expand_topic_name(self.parameters.topic, self.node.name, self.node.namespace)

    def type(self) -> str:
        """The kind of data this input delivers, e.g. ``pointcloud``."""
        return self.parameters.type

    def register_callback(self, callback: InputCallback) -> None:
        """Subscribe to the topic; each message goes to ``callback`` with the update flag and processor."""
        if self.sensor_processor is None:
            raise RuntimeError("the input source has not been configured")
        parameters = self.parameters
        self._callback = callback
        self.node.create_publisher(self.subscribed_topic()).subscribe(self.handle)
        self._logger.info(
            "Subscribing to %s: %s, queue_size: %i.", parameters.type, parameters.topic, parameters.queue_size
        )

    def handle(self, message: Any) -> None:
        """Pass one incoming message to the registered callback."""
        if self._callback is None or self.sensor_processor is None:
            raise RuntimeError("no callback has been registered for this input source")
        self._callback(message, self.parameters.publish_on_update, self.sensor_processor)