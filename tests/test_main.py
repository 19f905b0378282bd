"""Tests for the kopf handlers."""

from types import SimpleNamespace
from unittest.mock import patch

import kopf
import pytest
from kubernetes.client.rest import ApiException

from home_assistant_operator import crd, main
from home_assistant_operator.errors import InvalidSpecError, ReconcileError
from home_assistant_operator.reconcile import InstanceState, Kind, Outcome, ReconcileResult


def make_patch():
    return SimpleNamespace(status={})


def result(outcome=Outcome.UNCHANGED):
    return ReconcileResult(InstanceState.PRESENT, {kind: outcome for kind in Kind})


class TestInstanceHandler:
    def test_success_reports_created(self):
        kopf_patch = make_patch()
        with patch.object(main, "reconcile_instance", return_value=result(Outcome.CREATED)) as reconcile:
            main.instance_handler(name="home", namespace="default", status={}, patch=kopf_patch, reason="create")

        reconcile.assert_called_once_with("home", "default")
        assert kopf_patch.status == {
            "phase": crd.PHASE_CREATED,
            "reason": crd.REASON_RECONCILED,
            "message": "All resources are reconciled",
        }

    def test_unchanged_status_is_not_patched(self):
        status = {
            "phase": crd.PHASE_CREATED,
            "reason": crd.REASON_RECONCILED,
            "message": "All resources are reconciled",
        }
        kopf_patch = make_patch()
        with patch.object(main, "reconcile_instance", return_value=result()):
            main.instance_handler(name="home", namespace="default", status=status, patch=kopf_patch, reason="update")

        assert kopf_patch.status == {}

    def test_transient_failure_is_retried(self):
        error = ReconcileError("home", "default", {Kind.POD: ApiException(status=500)})
        kopf_patch = make_patch()
        with patch.object(main, "reconcile_instance", side_effect=error):
            with pytest.raises(kopf.TemporaryError):
                main.instance_handler(name="home", namespace="default", status={}, patch=kopf_patch, reason="create")

        assert kopf_patch.status["phase"] == crd.PHASE_FAILED
        assert kopf_patch.status["reason"] == crd.REASON_RECONCILE_FAILED
        assert kopf_patch.status["message"].startswith("Pod:")

    def test_invalid_spec_is_permanent(self):
        error = ReconcileError(
            "home", "default", {Kind.PERSISTENT_VOLUME_CLAIM: InvalidSpecError("bad size")}
        )
        kopf_patch = make_patch()
        with patch.object(main, "reconcile_instance", side_effect=error):
            with pytest.raises(kopf.PermanentError):
                main.instance_handler(name="home", namespace="default", status={}, patch=kopf_patch, reason="create")

        assert kopf_patch.status["reason"] == crd.REASON_INVALID_SPEC
        assert kopf_patch.status["message"] == "PersistentVolumeClaim: bad size"

    def test_instance_read_failure_is_retried(self):
        with patch.object(main, "reconcile_instance", side_effect=ApiException(status=500)):
            with pytest.raises(kopf.TemporaryError):
                main.instance_handler(name="home", namespace="default", status={}, patch=make_patch(), reason="resume")


class TestTimer:
    def test_errors_are_logged_not_raised(self):
        error = ReconcileError("home", "default", {Kind.SERVICE: ApiException(status=500)})
        kopf_patch = make_patch()
        with patch.object(main, "reconcile_instance", side_effect=error):
            main.instance_timer(name="home", namespace="default", status={}, patch=kopf_patch)

        assert kopf_patch.status["phase"] == crd.PHASE_FAILED


    def test_absent_instance_status_is_left_alone(self):
        absent = ReconcileResult(InstanceState.ABSENT, {kind: Outcome.DELETED for kind in Kind})
        kopf_patch = make_patch()
        with patch.object(main, "reconcile_instance", return_value=absent):
            main.instance_timer(name="home", namespace="default", status={}, patch=kopf_patch)

        assert kopf_patch.status == {}


class TestDelete:
    def test_teardown(self):
        with patch.object(main, "teardown") as teardown, patch.object(main.k8s, "get_clients") as get_clients:
            main.instance_delete(name="home", namespace="default")

        teardown.assert_called_once_with(get_clients.return_value, "home", "default")

    def test_teardown_failure_is_retried(self):
        error = ReconcileError("home", "default", {Kind.POD: ApiException(status=500)})
        with patch.object(main, "teardown", side_effect=error), patch.object(main.k8s, "get_clients"):
            with pytest.raises(kopf.TemporaryError):
                main.instance_delete(name="home", namespace="default")


class TestDependentDeleted:
    def test_reconciles_owner(self):
        labels = {crd.LABEL_INSTANCE: "home"}
        with patch.object(main, "reconcile_instance") as reconcile:
            main.dependent_deleted(event={"type": "DELETED"}, labels=labels, namespace="default")

        reconcile.assert_called_once_with("home", "default")

    @pytest.mark.parametrize("event_type", [None, "ADDED", "MODIFIED"])
    def test_ignores_other_events(self, event_type):
        labels = {crd.LABEL_INSTANCE: "home"}
        with patch.object(main, "reconcile_instance") as reconcile:
            main.dependent_deleted(event={"type": event_type}, labels=labels, namespace="default")

        reconcile.assert_not_called()

    def test_ignores_unlabelled(self):
        with patch.object(main, "reconcile_instance") as reconcile:
            main.dependent_deleted(event={"type": "DELETED"}, labels={}, namespace="default")

        reconcile.assert_not_called()
