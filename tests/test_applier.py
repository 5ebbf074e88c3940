import unittest

from fake_kube import FakeKubeClient

from mesh_operator.applier.applier import Applier, ApplyOutcome
from mesh_operator.applier.classify import ApplyErrorClass, classify_apply_error, classify_text
from mesh_operator.common.errors import ApiError, OperatorError

SCHEMA_ERROR = ApiError(
    500,
    "failed to create typed patch object (/v1, Kind=ConfigMap): .spec.extra: field not declared in schema",
    reason="InternalError",
)
TYPED_PATCH_ERROR = ApiError(500, "failed to create typed patch object: errors: .spec: expected map", reason="InternalError")
CONFLICT_ERROR = ApiError(
    409,
    'Apply failed with 1 conflict: conflict with "helm-controller": .spec.values',
    reason="Conflict",
    causes=[{"type": "FieldManagerConflict", "message": 'conflict with "helm-controller"', "field": ".spec.values"}],
)


def helm_release(values, interval="5m", resource_version=None):
    metadata = {"name": "components", "namespace": "default"}
    if resource_version:
        metadata["resourceVersion"] = resource_version
    return {
        "apiVersion": "helm.toolkit.fluxcd.io/v2",
        "kind": "HelmRelease",
        "metadata": metadata,
        "spec": {"interval": interval, "values": values},
    }


def resource(interval):
    return {
        "apiVersion": "delivery.ocm.software/v1alpha1",
        "kind": "Resource",
        "metadata": {"name": "portal", "namespace": "default"},
        "spec": {"interval": interval, "componentRef": {"name": "portal"}},
    }


class ClassifyTests(unittest.TestCase):
    def test_text_patterns(self) -> None:
        self.assertIs(classify_text(str(SCHEMA_ERROR)), ApplyErrorClass.SCHEMA_REJECTION)
        self.assertIs(classify_text(str(TYPED_PATCH_ERROR)), ApplyErrorClass.TYPED_PATCH_FAILURE)
        self.assertIs(classify_text("Apply failed with 2 conflicts"), ApplyErrorClass.OWNERSHIP_CONFLICT)
        self.assertIs(classify_text('conflict with "kubectl"'), ApplyErrorClass.OWNERSHIP_CONFLICT)
        self.assertIs(classify_text("connection refused"), ApplyErrorClass.TERMINAL)

    def test_structured_conflict_wins_over_text(self) -> None:
        error = ApiError(409, "something unrelated", reason="Conflict")
        self.assertIs(classify_apply_error(error), ApplyErrorClass.OWNERSHIP_CONFLICT)
        self.assertIs(classify_apply_error(CONFLICT_ERROR), ApplyErrorClass.OWNERSHIP_CONFLICT)

    def test_other_api_errors_are_terminal(self) -> None:
        self.assertIs(classify_apply_error(ApiError(403, "forbidden", reason="Forbidden")), ApplyErrorClass.TERMINAL)
        self.assertIs(classify_apply_error(OperatorError("timeout")), ApplyErrorClass.TERMINAL)

    def test_status_body_parsing(self) -> None:
        body = (
            '{"kind":"Status","apiVersion":"v1","status":"Failure","message":"nope",'
            '"reason":"Conflict","code":409,"details":{"causes":[{"type":"FieldManagerConflict"}]}}'
        )
        error = ApiError.from_response(409, body)
        self.assertEqual(error.reason, "Conflict")
        self.assertEqual(error.causes, [{"type": "FieldManagerConflict"}])
        plain = ApiError.from_response(502, "bad gateway")
        self.assertEqual(plain.status, 502)
        self.assertEqual(plain.message, "bad gateway")


class ApplierTests(unittest.TestCase):
    def test_happy_path_is_a_single_apply(self) -> None:
        client = FakeKubeClient()
        result = Applier(client).apply(helm_release({"a": 1}))
        self.assertIs(result.outcome, ApplyOutcome.APPLIED)
        self.assertEqual(client.methods(), ["apply"])

    def test_schema_rejection_falls_back_to_update(self) -> None:
        live = helm_release({"a": 1, "user": "kept"}, interval="1m", resource_version="7")
        client = FakeKubeClient(live)
        client.apply_errors.append(SCHEMA_ERROR)
        result = Applier(client).apply(helm_release({"a": 2, "b": 3}))
        self.assertIs(result.outcome, ApplyOutcome.APPLIED_VIA_FALLBACK)
        self.assertIs(result.error_class, ApplyErrorClass.SCHEMA_REJECTION)
        self.assertEqual(client.methods(), ["apply", "get", "update"])
        stored = client.find("HelmRelease", "components", "default")
        self.assertEqual(stored["spec"]["values"], {"a": 1, "b": 3, "user": "kept"})
        self.assertEqual(stored["spec"]["interval"], "5m")
        self.assertEqual(stored["metadata"]["resourceVersion"], "7")

    def test_fallback_creates_missing_object(self) -> None:
        client = FakeKubeClient()
        client.apply_errors.append(CONFLICT_ERROR)
        result = Applier(client).apply(helm_release({"a": 1}))
        self.assertIs(result.outcome, ApplyOutcome.APPLIED_VIA_FALLBACK)
        self.assertEqual(client.methods(), ["apply", "get", "create"])

    def test_fallback_skips_write_when_nothing_changes(self) -> None:
        live = helm_release({"a": 1})
        client = FakeKubeClient(live)
        client.apply_errors.append(TYPED_PATCH_ERROR)
        result = Applier(client).apply(helm_release({"a": 1}))
        self.assertIs(result.outcome, ApplyOutcome.APPLIED_VIA_FALLBACK)
        self.assertEqual(client.methods(), ["apply", "get"])

    def test_unclassified_error_fails_without_fallback(self) -> None:
        client = FakeKubeClient()
        client.apply_errors.append(ApiError(422, "spec.values: Invalid value", reason="Invalid"))
        result = Applier(client).apply(helm_release({"a": 1}))
        self.assertIs(result.outcome, ApplyOutcome.FAILED)
        self.assertEqual(client.methods(), ["apply"])
        self.assertTrue(result.error.terminal)
        with self.assertRaises(OperatorError):
            result.raise_for_outcome()

    def test_fallback_write_failure_is_reported(self) -> None:
        client = FakeKubeClient(helm_release({"a": 1}))
        client.apply_errors.append(SCHEMA_ERROR)
        client.errors[("update", "HelmRelease", "components")] = ApiError(503, "unavailable", reason="ServiceUnavailable")
        result = Applier(client).apply(helm_release({"a": 2, "new": True}))
        self.assertIs(result.outcome, ApplyOutcome.FAILED)
        self.assertTrue(result.error.retry)
        self.assertEqual(client.methods(), ["apply", "get", "update"])

    def test_fallback_get_failure_is_reported(self) -> None:
        client = FakeKubeClient()
        client.apply_errors.append(SCHEMA_ERROR)
        client.errors[("get", "HelmRelease", "components")] = ApiError(500, "etcd timeout", reason="InternalError")
        result = Applier(client).apply(helm_release({"a": 1}))
        self.assertIs(result.outcome, ApplyOutcome.FAILED)
        self.assertEqual(client.methods(), ["apply", "get"])

    def test_desired_is_not_mutated(self) -> None:
        desired = helm_release({"a": 1})
        client = FakeKubeClient()
        Applier(client).apply(desired)
        self.assertEqual(desired, helm_release({"a": 1}))

    def test_live_interval_of_existing_resource_is_left_alone(self) -> None:
        client = FakeKubeClient(resource("10m"))
        result = Applier(client).apply(resource("1m"))
        self.assertIs(result.outcome, ApplyOutcome.APPLIED)
        self.assertEqual(client.methods(), ["get", "apply"])
        self.assertNotIn("interval", client.applied[0]["spec"])
        self.assertEqual(client.applied[0]["spec"]["componentRef"], {"name": "portal"})

    def test_new_resource_is_created_with_interval(self) -> None:
        client = FakeKubeClient()
        Applier(client).apply(resource("1m"))
        self.assertEqual(client.applied[0]["spec"]["interval"], "1m")
        self.assertEqual(client.find("Resource", "portal", "default")["spec"]["interval"], "1m")

    def test_lookup_failure_before_apply_is_reported(self) -> None:
        client = FakeKubeClient(resource("10m"))
        client.errors[("get", "Resource", "portal")] = ApiError(500, "etcd timeout", reason="InternalError")
        result = Applier(client).apply(resource("1m"))
        self.assertIs(result.outcome, ApplyOutcome.FAILED)
        self.assertTrue(result.error.retry)
        self.assertEqual(client.methods(), ["get"])

    def test_kinds_without_owned_fields_skip_the_lookup(self) -> None:
        client = FakeKubeClient(helm_release({"a": 1}))
        Applier(client).apply(helm_release({"a": 2}, interval="1m"))
        self.assertEqual(client.methods(), ["apply"])
        self.assertEqual(client.applied[0]["spec"]["interval"], "1m")


if __name__ == "__main__":  # pragma: no cover
    unittest.main()
