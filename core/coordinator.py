"""Run coordinator: one balancing pass over every configured route.

States per run::

    IDLE -> LOGGING_IN -> LOADING -> EVALUATING(route_i) -> [EXECUTING]
         -> EVALUATING(route_i+1) -> ... -> IDLE

Routes run strictly in configuration order so that a transfer made for one
route is visible to the next route sharing a village. A route that fails
is logged and recorded in the report; only login/configuration failures
abort the whole run.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
import logging

from common.exceptions import (
    ApiError,
    BalancerError,
    ConfigError,
    FacilityMissingError,
    NodeLookupError,
    TransferError,
)
from common.logging_utils import SystemLogger
from config.environment import get_env_config
from config.settings import AccountConfig, Settings
from core.directory import NodeDirectory, load_directory
from core.models import Decision, DecisionReason, RouteConfig
from core.route_evaluator import evaluate_route
from core.transfer_executor import execute_transfer

logger = logging.getLogger(__name__)


class RunState(str, Enum):
    IDLE = "idle"
    LOGGING_IN = "logging-in"
    LOADING = "loading"
    EVALUATING = "evaluating"
    EXECUTING = "executing"


class OutcomeStatus(str, Enum):
    EXECUTED = "executed"
    SKIPPED = "skipped"
    FAILED = "failed"
    DRY_RUN = "dry-run"


@dataclass(frozen=True)
class RouteOutcome:
    route: RouteConfig
    decision: Decision
    status: OutcomeStatus
    error: str | None = None

    @property
    def transferred(self) -> int:
        return self.decision.amount if self.status is OutcomeStatus.EXECUTED else 0


@dataclass
class RunReport:
    started_at: datetime
    finished_at: datetime | None = None
    outcomes: list[RouteOutcome] = field(default_factory=list)

    @property
    def executed(self) -> list[RouteOutcome]:
        return [o for o in self.outcomes if o.status is OutcomeStatus.EXECUTED]

    @property
    def errors(self) -> list[RouteOutcome]:
        return [o for o in self.outcomes if o.status is OutcomeStatus.FAILED]

    @property
    def transferred_total(self) -> int:
        return sum(o.transferred for o in self.outcomes)


class BalanceCoordinator:
    def __init__(
        self,
        client,
        *,
        account: AccountConfig,
        routes: Sequence[RouteConfig],
        max_workers: int = 8,
        dry_run: bool | None = None,
        sys_logger: SystemLogger | None = None,
    ) -> None:
        if not routes:
            raise ConfigError("routes が空です")
        self.client = client
        self.account = account
        self.routes = tuple(routes)
        self.max_workers = max_workers
        self.dry_run = get_env_config().dry_run if dry_run is None else bool(dry_run)
        self.log = sys_logger or SystemLogger.create("Coordinator", logger=logger)
        self.state = RunState.IDLE

    @classmethod
    def from_settings(
        cls, client, settings: Settings, *, dry_run: bool | None = None
    ) -> "BalanceCoordinator":
        return cls(
            client,
            account=settings.account,
            routes=settings.routes,
            max_workers=settings.api.max_workers,
            dry_run=dry_run,
        )

    def run(self) -> RunReport:
        """ログイン → 村一覧の読込 → ルートを順に評価・実行。

        AuthError（ログイン失敗）と村一覧取得の失敗はそのまま送出する。
        """
        report = RunReport(started_at=datetime.now())
        try:
            self.state = RunState.LOGGING_IN
            self.client.login(self.account.username, self.account.password)

            self.state = RunState.LOADING
            directory = load_directory(self.client, max_workers=self.max_workers)

            for route in self.routes:
                report.outcomes.append(self._process_route(directory, route))
        finally:
            self.state = RunState.IDLE
            report.finished_at = datetime.now()

        self.log.info(
            "Run finished",
            routes=len(report.outcomes),
            executed=len(report.executed),
            failed=len(report.errors),
            transferred=report.transferred_total,
        )
        return report

    def _process_route(self, directory: NodeDirectory, route: RouteConfig) -> RouteOutcome:
        self.state = RunState.EVALUATING
        sender = directory.get(route.from_node)
        receiver = directory.get(route.to_node)
        decision = evaluate_route(route, sender, receiver)
        reason = decision.reason

        if reason is DecisionReason.SOURCE_MISSING or reason is DecisionReason.DESTINATION_MISSING:
            missing = route.from_node if reason is DecisionReason.SOURCE_MISSING else route.to_node
            return self._failed(
                route, decision, NodeLookupError(f"Village {missing} not found!"), logging.WARNING
            )

        if reason is DecisionReason.NO_TRANSPORT_FACILITY:
            # facility_id があれば送信側は施設あり、欠けているのは受信側
            lacking = route.from_node if decision.facility_id is None else route.to_node
            return self._failed(
                route,
                decision,
                FacilityMissingError(f"Village {lacking} has no market!"),
                logging.WARNING,
            )

        if reason is DecisionReason.DESTINATION_NEAR_FULL:
            self.log.info(
                f"{route.resource_type} in {route.to_node} is over the limit "
                f"({decision.effective_limit}): {decision.receiver_total}",
                incoming=decision.incoming,
                route=route.describe(),
            )
            return RouteOutcome(route, decision, OutcomeStatus.SKIPPED)

        if reason is DecisionReason.AMOUNT_NON_POSITIVE:
            self.log.debug(
                "Nothing to send",
                surplus=decision.surplus,
                room=decision.room,
                route=route.describe(),
            )
            return RouteOutcome(route, decision, OutcomeStatus.SKIPPED)

        self.state = RunState.EXECUTING
        try:
            result = execute_transfer(
                self.client, directory, route, decision, dry_run=self.dry_run
            )
        except TransferError as e:
            msg = (
                f"Failed transferring {decision.amount} {route.resource_type} from "
                f"{route.from_node} to {route.to_node}: {e.message}"
            )
            return self._failed(route, decision, TransferError(msg, e.status_code))
        except (ApiError, NodeLookupError) as e:
            return self._failed(route, decision, e)
        except BalancerError:
            raise
        except Exception as e:  # noqa: BLE001
            self.log.exception("Unexpected error while transferring", route=route.describe())
            return RouteOutcome(route, decision, OutcomeStatus.FAILED, repr(e))

        status = OutcomeStatus.DRY_RUN if result.dry_run else OutcomeStatus.EXECUTED
        return RouteOutcome(route, decision, status)

    def _failed(
        self,
        route: RouteConfig,
        decision: Decision,
        error: BalancerError,
        level: int = logging.ERROR,
    ) -> RouteOutcome:
        """ルート単位の失敗をログに残し、結果として記録する（実行は継続）。"""
        self.log.log(
            level,
            f"[{error.code}] {error}",
            route=route.describe(),
            resource=route.resource_type,
        )
        return RouteOutcome(route, decision, OutcomeStatus.FAILED, str(error))


__all__ = [
    "BalanceCoordinator",
    "OutcomeStatus",
    "RouteOutcome",
    "RunReport",
    "RunState",
]
