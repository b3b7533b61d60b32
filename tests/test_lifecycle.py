import time

import httpx
import pytest

from poolsync import db
from poolsync.bigip import BigIPPoolStore
from poolsync.lifecycle import LifecycleController
from poolsync.models import InstanceState
from poolsync.registry import ConflictError

from conftest import FakeSource, FakeStore, eps, make_config


def _fast_sleep(seconds):
    time.sleep(0.005)


def _wait_for(predicate, timeout=2.0):
    deadline = time.time() + timeout
    while time.time() < deadline:
        if predicate():
            return True
        time.sleep(0.005)
    return predicate()


@pytest.fixture
def controller():
    store = FakeStore()
    ctl = LifecycleController(
        store,
        source_factory=lambda cfg: FakeSource(eps("10.0.0.1:8080", "10.0.0.2:8080")),
        sleep=_fast_sleep,
        cleanup_grace_s=0,
    )
    yield ctl
    ctl.shutdown(timeout=2)


def test_start_spawns_a_reconciler_that_fills_the_pool(controller):
    rec = controller.start(make_config("web", "/Common/web_pool"))

    assert rec.state is InstanceState.POLLING
    assert _wait_for(lambda: controller.store.pools.get("/Common/web_pool") == set(eps("10.0.0.1:8080", "10.0.0.2:8080")))
    assert controller.running("web")


def test_conflicting_start_is_rejected_and_spawns_nothing(controller):
    controller.start(make_config("web", "/Common/web_pool"))
    with pytest.raises(ConflictError):
        controller.start(make_config("other", "/Common/web_pool"))

    assert controller.get("other") is None
    assert controller.reconciler("other") is None
    assert not controller.running("other")


def test_stop_terminates_loop_and_deletes_pool_once(controller):
    controller.start(make_config("web", "/Common/web_pool"))
    loop = controller.reconciler("web")
    assert _wait_for(lambda: "/Common/web_pool" in controller.store.pools)

    prev = controller.stop("web")
    loop.join(timeout=2)

    assert prev.state is InstanceState.REMOVED
    assert not loop.is_alive()
    assert controller.store.ops("delete") == [("delete", "/Common/web_pool")]
    assert loop.delete_attempts == 1


def test_stop_unknown_instance(controller):
    assert controller.stop("ghost") is None


def test_update_reuses_running_loop(controller):
    controller.start(make_config("web", "/Common/web_pool", interval=30))
    loop = controller.reconciler("web")

    rec = controller.update(make_config("web", "/Common/web_pool", interval=60))

    assert rec.config.poll_interval_s == 60
    assert controller.reconciler("web") is loop
    assert _wait_for(lambda: controller.get("web").state is InstanceState.POLLING)


def test_start_for_existing_name_acts_as_update(controller):
    first = controller.start(make_config("web", "/Common/web_pool"))
    loop = controller.reconciler("web")
    again = controller.start(make_config("web", "/Common/web_pool", interval=45))

    assert again.token == first.token
    assert controller.reconciler("web") is loop


def test_update_unknown_name_is_a_noop(controller):
    assert controller.update(make_config("ghost", "/Common/ghost_pool")) is None
    assert controller.reconciler("ghost") is None


def test_update_spawns_loop_when_none_is_running(controller):
    controller.registry.register(make_config("web", "/Common/web_pool"))
    assert not controller.running("web")

    controller.update(make_config("web", "/Common/web_pool", interval=20))

    assert controller.reconciler("web") is not None
    assert _wait_for(lambda: controller.store.pools.get("/Common/web_pool") == set(eps("10.0.0.1:8080", "10.0.0.2:8080")))


def test_restart_after_stop_gets_a_fresh_loop(controller):
    controller.start(make_config("web", "/Common/web_pool"))
    old = controller.reconciler("web")
    controller.stop("web")
    old.join(timeout=2)

    controller.start(make_config("web", "/Common/web_pool"))
    new = controller.reconciler("web")

    assert new is not old
    assert new.token != old.token
    assert _wait_for(lambda: "/Common/web_pool" in controller.store.pools)


def test_rapid_updates_keep_one_loop_and_last_config(controller):
    controller.start(make_config("web", "/Common/web_pool", namespace="ns-0"))
    loop = controller.reconciler("web")
    for i in range(1, 6):
        controller.update(make_config("web", "/Common/web_pool", namespace=f"ns-{i}"))

    assert controller.reconciler("web") is loop
    assert controller.get("web").config.namespace == "ns-5"
    assert _wait_for(lambda: controller.get("web").state is InstanceState.POLLING)


def test_stopped_loops_are_not_kept_around(controller):
    controller.start(make_config("web", "/Common/web_pool"))
    old = controller.reconciler("web")
    controller.stop("web")
    old.join(timeout=2)

    controller.start(make_config("api", "/Common/api_pool"))

    assert controller.reconciler("web") is None
    assert controller.reconciler("api") is not None


def test_loop_survives_pool_name_the_store_cannot_parse():
    store = BigIPPoolStore(
        "https://bigip.example", "admin", "secret",
        transport=httpx.MockTransport(lambda request: httpx.Response(404, json={})),
    )
    ctl = LifecycleController(
        store,
        source_factory=lambda cfg: FakeSource(eps("10.0.0.1:8080")),
        sleep=_fast_sleep,
        cleanup_grace_s=0,
    )
    try:
        ctl.start(make_config("web", "/"))
        assert _wait_for(lambda: any("Empty pool name" in e["message"] for e in db.latest_events(50, instance="web")))
        assert _wait_for(lambda: len(db.latest_events(50, instance="web")) >= 4)
        assert ctl.running("web")
    finally:
        ctl.shutdown(timeout=2)
    assert not ctl.running("web")
