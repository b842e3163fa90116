"""Module-facing helpers for external MQTT and telemetry publishing."""

from __future__ import annotations

from typing import Any, Callable, Optional, Union

ExtPublishFunc = Callable[[str, str], None]
ExtSubscribeFunc = Callable[[str, Callable[..., Any]], Any]
TelemetryPublishFunc = Callable[[str, str, str, dict], None]

_DEFAULT_PRECISION = 5


class MqttProvider:
    """Publishes to and subscribes on external MQTT topics."""

    def __init__(
        self,
        ext_mqtt_publish: ExtPublishFunc,
        ext_mqtt_subscribe: ExtSubscribeFunc,
        ext_mqtt_subscribe_pair: Optional[ExtSubscribeFunc] = None,
    ) -> None:
        self._publish = ext_mqtt_publish
        self._subscribe = ext_mqtt_subscribe
        self._subscribe_pair = ext_mqtt_subscribe_pair

    def publish(self, topic: str, data: Union[str, bool, int, float], precision: Optional[int] = None) -> None:
        """Publish data as text; floats are written in fixed notation."""
        if isinstance(data, str):
            text = data
        elif isinstance(data, bool):
            text = "true" if data else "false"
        elif isinstance(data, int) and precision is None:
            text = str(data)
        elif isinstance(data, (int, float)):
            digits = _DEFAULT_PRECISION if precision is None else precision
            text = f"{float(data):.{digits}f}"
        else:
            raise TypeError(f"Cannot publish value of type {type(data).__name__}")
        self._publish(topic, text)

    def subscribe(self, topic: str, handler: Callable[..., Any], pair: bool = False) -> Any:
        """Subscribe a handler; with pair the handler also receives the topic."""
        if pair:
            if self._subscribe_pair is None:
                raise RuntimeError("No pair subscription function available")
            return self._subscribe_pair(topic, handler)
        return self._subscribe(topic, handler)


class TelemetryProvider:
    """Publishes telemetry data."""

    def __init__(self, telemetry_publish: TelemetryPublishFunc) -> None:
        self._publish = telemetry_publish

    def publish(
        self,
        category: str,
        subcategory: str,
        telemetry: dict,
        telemetry_type: Optional[str] = None,
    ) -> None:
        """Publish telemetry; the type defaults to the subcategory."""
        kind = subcategory if telemetry_type is None else telemetry_type
        self._publish(category, subcategory, kind, telemetry)