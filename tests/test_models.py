"""Tests for instance and container models."""

from datetime import UTC, datetime

import pytest

from apihub.models import (
    ACTIVE_STATUSES,
    ContainerState,
    Instance,
    InstanceStatus,
    InstanceView,
    SandboxOptions,
    build_url,
    can_transition,
)


class TestStatusTransitions:
    @pytest.mark.parametrize(
        ("current", "target"),
        [
            (InstanceStatus.CREATING, InstanceStatus.RUNNING),
            (InstanceStatus.CREATING, InstanceStatus.ERROR),
            (InstanceStatus.RUNNING, InstanceStatus.STOPPING),
            (InstanceStatus.STOPPING, InstanceStatus.STOPPED),
            (InstanceStatus.ERROR, InstanceStatus.STOPPING),
        ],
    )
    def test_allowed(self, current: InstanceStatus, target: InstanceStatus) -> None:
        assert can_transition(current, target)

    @pytest.mark.parametrize("target", list(InstanceStatus))
    def test_stopped_is_terminal(self, target: InstanceStatus) -> None:
        assert not can_transition(InstanceStatus.STOPPED, target)

    def test_error_never_returns_to_running(self) -> None:
        assert not can_transition(InstanceStatus.ERROR, InstanceStatus.RUNNING)
        assert not can_transition(InstanceStatus.ERROR, InstanceStatus.CREATING)

    def test_active_statuses(self) -> None:
        assert ACTIVE_STATUSES == {InstanceStatus.CREATING, InstanceStatus.RUNNING}


class TestInstance:
    def test_defaults(self) -> None:
        inst = Instance(owner_id="u1", container_name="n", port=3001)
        assert len(inst.id) == 32
        assert inst.container_ref == ""
        assert inst.status == InstanceStatus.CREATING
        assert inst.stopped_at is None
        assert inst.is_active

    def test_ids_are_unique(self) -> None:
        a = Instance(owner_id="u1", container_name="a", port=3001)
        b = Instance(owner_id="u1", container_name="b", port=3002)
        assert a.id != b.id

    def test_error_is_not_active(self) -> None:
        inst = Instance(owner_id="u1", container_name="n", port=3001, status=InstanceStatus.ERROR)
        assert not inst.is_active


class TestInstanceView:
    def test_url_is_derived_from_port(self) -> None:
        inst = Instance(owner_id="u1", container_name="n", port=3005, container_ref="abc")
        view = InstanceView.from_instance(inst, base_url="http://localhost/")
        assert view.url == "http://localhost:3005"
        assert view.status == InstanceStatus.CREATING

    def test_status_override(self) -> None:
        inst = Instance(owner_id="u1", container_name="n", port=3005)
        view = InstanceView.from_instance(
            inst, base_url="http://h", status=InstanceStatus.ERROR, error="gone"
        )
        assert view.status == InstanceStatus.ERROR
        assert view.error == "gone"

    def test_build_url(self) -> None:
        assert build_url("https://sandbox.example.com", 3001) == "https://sandbox.example.com:3001"


class TestContainerState:
    def test_running_flag_wins(self) -> None:
        state = ContainerState(running=True, raw_state="restarting")
        assert state.instance_status == InstanceStatus.RUNNING

    @pytest.mark.parametrize(
        ("raw", "expected"),
        [
            ("created", InstanceStatus.CREATING),
            ("exited", InstanceStatus.STOPPED),
            ("removing", InstanceStatus.STOPPING),
            ("dead", InstanceStatus.ERROR),
            ("something-new", InstanceStatus.ERROR),
        ],
    )
    def test_raw_state_mapping(self, raw: str, expected: InstanceStatus) -> None:
        assert ContainerState(running=False, raw_state=raw).instance_status == expected


class TestSandboxOptions:
    def test_defaults(self) -> None:
        opts = SandboxOptions()
        assert opts.data_theme == "electronics"
        assert opts.product_count == 50
        assert opts.enable_cors is True

    def test_product_count_must_be_positive(self) -> None:
        with pytest.raises(ValueError):
            SandboxOptions(product_count=0)


def test_utc_timestamps() -> None:
    inst = Instance(owner_id="u1", container_name="n", port=3001)
    assert inst.created_at.tzinfo is not None
    assert inst.created_at <= datetime.now(UTC)
