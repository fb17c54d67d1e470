"""Broker adapters."""

from autobiz.broker.base import BrokerAdapter, BrokerRegistry
from autobiz.broker.sim import SimBrokerAdapter

__all__ = ["BrokerAdapter", "BrokerRegistry", "SimBrokerAdapter"]
