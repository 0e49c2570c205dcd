"""Tests for RouteCoordinator request lifecycle and supersession."""

import pytest

from conftest import ControlledRoutingService, member, settle
from roommap.client.models import ROUTE_FAILED, ROUTE_SUCCEEDED, ROUTE_SUPERSEDED, parse_roster
from roommap.client.route_coordinator import RouteCoordinator


def roster(*members: dict):
    return parse_roster(list(members))


class TestTriggers:
    @pytest.mark.asyncio
    async def test_no_target_means_no_request(self, routing: ControlledRoutingService) -> None:
        coordinator = RouteCoordinator(routing, self_id="A")
        coordinator.update_roster(roster(member("A", 10, 10), member("B", 20, 20)))
        await settle()

        assert routing.calls == []
        assert coordinator.route is None
        assert coordinator.loading is False

    @pytest.mark.asyncio
    async def test_selecting_member_issues_request_with_both_coordinates(
        self, routing: ControlledRoutingService
    ) -> None:
        coordinator = RouteCoordinator(routing, self_id="A")
        coordinator.update_roster(roster(member("A", 10, 10), member("B", 20, 20)))

        coordinator.select("B")
        await settle()

        assert routing.calls == [({"lat": 10.0, "lng": 10.0}, {"lat": 20.0, "lng": 20.0})]
        assert coordinator.loading is True
        assert coordinator.active_request.requestId == 1

    @pytest.mark.asyncio
    async def test_unrelated_roster_change_does_not_reissue(self, routing: ControlledRoutingService) -> None:
        coordinator = RouteCoordinator(routing, self_id="A")
        coordinator.update_roster(roster(member("A", 10, 10), member("B", 20, 20)))
        coordinator.select("B")
        await settle()

        coordinator.update_roster(roster(member("A", 10, 10), member("B", 20, 20), member("C", 1, 1)))
        await settle()

        assert len(routing.calls) == 1

    @pytest.mark.asyncio
    async def test_self_missing_from_roster_clears_route(self, routing: ControlledRoutingService) -> None:
        coordinator = RouteCoordinator(routing, self_id="A")
        coordinator.update_roster(roster(member("A", 10, 10), member("B", 20, 20)))
        coordinator.select("B")
        await settle()
        routing.succeed(0, {"code": "Ok"})
        await settle()
        assert coordinator.route == {"code": "Ok"}

        coordinator.update_roster(roster(member("B", 20, 20)))

        assert coordinator.route is None
        assert coordinator.loading is False

    @pytest.mark.asyncio
    async def test_self_without_location_issues_nothing(self, routing: ControlledRoutingService) -> None:
        coordinator = RouteCoordinator(routing, self_id="A")
        coordinator.update_roster(roster(member("A", None, None), member("B", 20, 20)))
        coordinator.select("B")
        await settle()

        assert routing.calls == []
        assert coordinator.loading is False


class TestResults:
    @pytest.mark.asyncio
    async def test_success_stores_route_and_clears_loading(self, routing: ControlledRoutingService) -> None:
        coordinator = RouteCoordinator(routing, self_id="A")
        coordinator.update_roster(roster(member("A", 10, 10), member("B", 20, 20)))
        coordinator.select("B")
        await settle()

        routing.succeed(0, {"routes": ["r1"]})
        await coordinator.wait_idle()

        assert coordinator.route == {"routes": ["r1"]}
        assert coordinator.loading is False
        assert coordinator.active_request.status == ROUTE_SUCCEEDED

    @pytest.mark.asyncio
    async def test_failure_presents_as_no_route_and_is_not_retried(
        self, routing: ControlledRoutingService
    ) -> None:
        coordinator = RouteCoordinator(routing, self_id="A")
        coordinator.update_roster(roster(member("A", 10, 10), member("B", 20, 20)))
        coordinator.select("B")
        await settle()

        routing.fail(0)
        await coordinator.wait_idle()
        coordinator.update_roster(roster(member("A", 10, 10), member("B", 20, 20)))
        await settle()

        assert coordinator.route is None
        assert coordinator.loading is False
        assert coordinator.active_request.status == ROUTE_FAILED
        assert len(routing.calls) == 1

    @pytest.mark.asyncio
    async def test_unexpected_exception_does_not_escape(self, routing: ControlledRoutingService) -> None:
        coordinator = RouteCoordinator(routing, self_id="A")
        coordinator.update_roster(roster(member("A", 10, 10), member("B", 20, 20)))
        coordinator.select("B")
        await settle()

        routing.fail(0, KeyError("boom"))
        await coordinator.wait_idle()

        assert coordinator.route is None
        assert coordinator.loading is False


class TestSupersession:
    @pytest.mark.asyncio
    async def test_target_moving_supersedes_in_flight_request(self, routing: ControlledRoutingService) -> None:
        coordinator = RouteCoordinator(routing, self_id="A")
        coordinator.update_roster(roster(member("A", 10, 10), member("B", 20, 20)))
        coordinator.select("B")
        await settle()

        coordinator.update_roster(roster(member("A", 10, 10), member("B", 21, 21)))
        await settle()

        assert routing.calls[1] == ({"lat": 10.0, "lng": 10.0}, {"lat": 21.0, "lng": 21.0})
        first, second = coordinator.history
        assert first.status == ROUTE_SUPERSEDED
        assert coordinator.active_request is second

        routing.succeed(0, "stale")
        await settle()
        assert coordinator.route is None
        assert coordinator.loading is True

        routing.succeed(1, "fresh")
        await coordinator.wait_idle()
        assert coordinator.route == "fresh"
        assert coordinator.loading is False

    @pytest.mark.asyncio
    async def test_stale_result_arriving_last_is_discarded(self, routing: ControlledRoutingService) -> None:
        coordinator = RouteCoordinator(routing, self_id="A")
        coordinator.update_roster(roster(member("A", 10, 10), member("B", 20, 20), member("C", 30, 30)))
        coordinator.select("B")
        await settle()
        coordinator.select("C")
        await settle()

        routing.succeed(1, "route-to-C")
        await settle()
        routing.succeed(0, "route-to-B")
        await coordinator.wait_idle()

        assert coordinator.route == "route-to-C"

    @pytest.mark.asyncio
    async def test_stale_failure_does_not_clear_loading(self, routing: ControlledRoutingService) -> None:
        coordinator = RouteCoordinator(routing, self_id="A")
        coordinator.update_roster(roster(member("A", 10, 10), member("B", 20, 20)))
        coordinator.select("B")
        await settle()
        coordinator.update_roster(roster(member("A", 11, 11), member("B", 20, 20)))
        await settle()

        routing.fail(0)
        await settle()

        assert coordinator.loading is True

    @pytest.mark.asyncio
    async def test_deselect_discards_in_flight_result(self, routing: ControlledRoutingService) -> None:
        coordinator = RouteCoordinator(routing, self_id="A")
        coordinator.update_roster(roster(member("A", 10, 10), member("B", 20, 20)))
        coordinator.select("B")
        await settle()

        coordinator.select(None)
        assert coordinator.loading is False

        routing.succeed(0, "late")
        await coordinator.wait_idle()

        assert coordinator.route is None
        assert coordinator.history[0].status == ROUTE_SUPERSEDED

    @pytest.mark.asyncio
    async def test_request_ids_increase_monotonically(self, routing: ControlledRoutingService) -> None:
        coordinator = RouteCoordinator(routing, self_id="A")
        coordinator.update_roster(roster(member("A", 10, 10), member("B", 20, 20)))
        for step in range(5):
            coordinator.update_roster(roster(member("A", 10, 10), member("B", 20 + step, 20)))
            coordinator.select("B")
        await settle()

        ids = [request.requestId for request in coordinator.history]
        assert ids == sorted(ids)
        assert len(set(ids)) == len(ids)
        assert [r.status for r in coordinator.history[:-1]] == [ROUTE_SUPERSEDED] * (len(ids) - 1)


class TestListeners:
    @pytest.mark.asyncio
    async def test_listener_sees_loading_then_result(self, routing: ControlledRoutingService) -> None:
        coordinator = RouteCoordinator(routing, self_id="A")
        observed = []
        unsubscribe = coordinator.on_change(lambda c: observed.append((c.loading, c.route)))
        coordinator.update_roster(roster(member("A", 10, 10), member("B", 20, 20)))
        coordinator.select("B")
        await settle()
        routing.succeed(0, "r")
        await coordinator.wait_idle()
        unsubscribe()
        unsubscribe()

        assert observed == [(True, None), (False, "r")]
