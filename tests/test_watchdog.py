import asyncio

from team9link.gateway.watchdog import ConnectionWatchdog


class _Health:
    def __init__(self, states: dict[str, str]) -> None:
        self.states = states
        self.rebuilt: list[str] = []
        self.rebuild_delay = 0.0

    def accounts(self) -> list[str]:
        return list(self.states)

    def check(self, account_id: str) -> str:
        return self.states[account_id]

    async def rebuild(self, account_id: str) -> None:
        if self.rebuild_delay:
            await asyncio.sleep(self.rebuild_delay)
        self.rebuilt.append(account_id)


def _watchdog(health: _Health, threshold: int = 3) -> ConnectionWatchdog:
    return ConnectionWatchdog(
        accounts=health.accounts,
        check=health.check,
        rebuild=health.rebuild,
        interval_s=60,
        failure_threshold=threshold,
    )


async def test_rebuild_fires_once_at_threshold() -> None:
    health = _Health({"default": "unhealthy"})
    watchdog = _watchdog(health)

    await watchdog.tick()
    await watchdog.tick()
    await watchdog.wait_rebuilds()
    assert health.rebuilt == []
    assert watchdog.failures["default"] == 2

    await watchdog.tick()
    await watchdog.wait_rebuilds()
    assert health.rebuilt == ["default"]
    assert watchdog.failures["default"] == 0


async def test_healthy_check_resets_counter() -> None:
    health = _Health({"default": "unhealthy"})
    watchdog = _watchdog(health)

    await watchdog.tick()
    await watchdog.tick()
    health.states["default"] = "healthy"
    await watchdog.tick()
    health.states["default"] = "unhealthy"
    await watchdog.tick()
    await watchdog.wait_rebuilds()

    assert watchdog.failures["default"] == 1
    assert health.rebuilt == []


async def test_missing_connection_rebuilds_immediately() -> None:
    health = _Health({"ops": "missing"})
    watchdog = _watchdog(health)

    await watchdog.tick()
    await watchdog.wait_rebuilds()
    assert health.rebuilt == ["ops"]


async def test_rebuild_in_flight_is_not_scheduled_twice() -> None:
    health = _Health({"default": "unhealthy"})
    health.rebuild_delay = 0.05
    watchdog = _watchdog(health, threshold=1)

    await watchdog.tick()
    assert watchdog.rebuild_in_flight("default")
    await watchdog.tick()
    await watchdog.wait_rebuilds()

    assert health.rebuilt == ["default"]


async def test_failed_rebuild_is_retried_next_tick() -> None:
    attempts: list[str] = []

    async def rebuild(account_id: str) -> None:
        attempts.append(account_id)
        raise RuntimeError("server down")

    watchdog = ConnectionWatchdog(
        accounts=lambda: ["default"],
        check=lambda _a: "missing",
        rebuild=rebuild,
        failure_threshold=1,
    )
    await watchdog.tick()
    await watchdog.wait_rebuilds()
    await watchdog.tick()
    await watchdog.wait_rebuilds()

    assert attempts == ["default", "default"]


async def test_untracked_accounts_are_pruned() -> None:
    health = _Health({"a": "unhealthy", "b": "unhealthy"})
    watchdog = _watchdog(health)

    await watchdog.tick()
    del health.states["b"]
    await watchdog.tick()

    assert "b" not in watchdog.failures
    assert watchdog.failures["a"] == 2


async def test_loop_ticks_until_stopped() -> None:
    health = _Health({"default": "missing"})
    watchdog = ConnectionWatchdog(
        accounts=health.accounts,
        check=health.check,
        rebuild=health.rebuild,
        interval_s=0.01,
    )
    watchdog.start()
    assert watchdog.running
    await asyncio.sleep(0.05)
    await watchdog.close()

    assert not watchdog.running
    assert health.rebuilt
