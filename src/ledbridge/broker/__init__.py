"""Message bus layer -- the single MQTT connection and its traffic log."""

from ledbridge.broker.connection import BrokerConnection

__all__ = ["BrokerConnection"]
