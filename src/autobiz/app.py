"""Application container: wires store, collaborators and services from config."""

from __future__ import annotations

import logging
from pathlib import Path

from autobiz.ai.ceo_reviewer import CEOReviewer
from autobiz.broker.base import BrokerAdapter, BrokerRegistry
from autobiz.broker.sim import SimBrokerAdapter
from autobiz.config_loader import AppConfig, load_config_with_overrides
from autobiz.constants import LOG_FORMAT, StoreBackend
from autobiz.db.base import WorkItemStore
from autobiz.db.memory import InMemoryStore
from autobiz.integrations.activity import ActivityLog, Notifier
from autobiz.integrations.executor import (
    AgentWorkExecutor,
    HTTPAgentWorkExecutor,
    SimAgentWorkExecutor,
)
from autobiz.integrations.http import FunctionClient
from autobiz.integrations.order_gateway import BrokerOrderGateway, HTTPOrderGateway, OrderGateway
from autobiz.phases.review import ReviewGate
from autobiz.phases.worker import PhaseProgressionWorker
from autobiz.trading.alerts import AlertProcessor
from autobiz.trading.loop import AutonomousTradingLoop
from autobiz.trading.risk_guard import RiskGuard
from autobiz.trading.strategies import StrategyService

logger = logging.getLogger(__name__)


def setup_logging(level: str = "INFO") -> None:
    logging.basicConfig(level=getattr(logging, str(level).upper(), logging.INFO), format=LOG_FORMAT)


class AutobizApp:
    """
    Service container.

    Components can be injected (tests, embedding); anything not injected is
    built from ``config``. Dry runs default to the in-memory store and the
    simulated collaborators.
    """

    def __init__(
        self,
        config: AppConfig | None = None,
        *,
        store: WorkItemStore | None = None,
        brokers: BrokerRegistry | None = None,
        executor: AgentWorkExecutor | None = None,
        gateway: OrderGateway | None = None,
        reviewer: CEOReviewer | None = None,
        function_client: FunctionClient | None = None,
    ) -> None:
        self.config = config or AppConfig()
        self.function_client = function_client

        self.store = store or self._build_store()
        self.brokers = brokers or self._build_brokers()
        self.activity = ActivityLog(self.store)
        self.notifier = Notifier(self.store)

        self.executor = executor or self._build_executor()
        self.gateway = gateway or self._build_gateway()
        self.reviewer = reviewer or CEOReviewer(self.config.openai)

        self.worker = PhaseProgressionWorker(
            self.store, self.executor, self.activity, self.notifier, self.config.phases
        )
        self.review = ReviewGate(
            self.store,
            self.worker,
            self.executor,
            self.activity,
            reviewer=self.reviewer,
            config=self.config.phases,
        )
        self.risk = RiskGuard(self.store, self.activity, self.notifier, self.config.trading)
        self.strategies = StrategyService(
            self.store, self.brokers, self.gateway, self.notifier, self.config.trading
        )
        self.alerts = AlertProcessor(
            self.store, self.brokers, self.gateway, self.activity, self.config.trading
        )
        self.loop = AutonomousTradingLoop(
            self.store,
            self.brokers,
            self.risk,
            self.alerts,
            self.strategies,
            self.activity,
            self.config.trading,
        )
        logger.info(
            f"autobiz initialized (store={self.config.environment.store_backend.value}, "
            f"broker={self.config.collaborators.broker_mode.value}, dry_run={self.config.is_dry_run})"
        )

    @classmethod
    def from_config_path(
        cls,
        config_path: str | Path = "config/config.yaml",
        *,
        dry_run: bool | None = None,
        store_backend: str | None = None,
        broker_mode: str | None = None,
    ) -> AutobizApp:
        config = load_config_with_overrides(
            Path(config_path).absolute(),
            dry_run=dry_run,
            store_backend=store_backend,
            broker_mode=broker_mode,
        )
        setup_logging(config.environment.log_level.value)
        return cls(config)

    # -------------------------------------------------------------------------
    # Builders
    # -------------------------------------------------------------------------

    def _functions(self) -> FunctionClient:
        if self.function_client is None:
            self.function_client = FunctionClient(self.config.collaborators)
        return self.function_client

    def _build_store(self) -> WorkItemStore:
        if self.config.environment.store_backend == StoreBackend.SUPABASE:
            from autobiz.db.supabase_client import SupabaseStore

            logger.info("Using Supabase work item store")
            return SupabaseStore(url=self.config.supabase.url or None, key=self.config.supabase.key or None)

        logger.info("Using in-memory work item store")
        return InMemoryStore()

    def _build_brokers(self) -> BrokerRegistry:
        exchanges = {e.lower() for e in self.config.trading.broker_exchanges}
        exchanges.update(e.lower() for e in self.config.trading.live_exchanges)

        registry = BrokerRegistry()
        for exchange in sorted(exchanges):
            adapter: BrokerAdapter
            if self.config.is_sim_broker:
                adapter = SimBrokerAdapter(exchange=exchange)
            else:
                from autobiz.broker.http import HTTPBrokerAdapter

                adapter = HTTPBrokerAdapter(exchange, self._functions())
            registry.register(exchange, adapter)
        logger.info(
            f"Broker adapters ({self.config.collaborators.broker_mode.value}): {', '.join(sorted(exchanges))}"
        )
        return registry

    def _build_executor(self) -> AgentWorkExecutor:
        if self.config.is_dry_run:
            return SimAgentWorkExecutor(self.store)
        return HTTPAgentWorkExecutor(self._functions(), self.config.collaborators.executor_function)

    def _build_gateway(self) -> OrderGateway:
        if self.config.is_sim_broker:
            return BrokerOrderGateway(self.store, self.brokers, self.activity)
        return HTTPOrderGateway(self._functions(), self.config.collaborators.order_gateway_function)

    async def aclose(self) -> None:
        """Release HTTP and store resources."""
        self.loop.stop()
        if self.function_client is not None:
            await self.function_client.aclose()
        await self.store.close()
