"""Tests for the Publisher."""

import pytest

from harvest.core.errors import AuthRejected, SchemaMismatch, TransientUploadError
from harvest.core.secrets import PUBLISH_SECRET_KEY, DictSecretBackend, SecretRef, SecretsResolver
from harvest.pipeline.aggregator import Aggregator
from harvest.pipeline.publisher import Publisher
from harvest.pipeline.stores import InMemoryDatasetStore, StoreSchema
from tests._support.builders import SECRET, SleepRecorder, make_artifact, product


@pytest.fixture
def dataset():
    return Aggregator().aggregate([make_artifact("p1", [product("A"), product("B")])])


def _publisher(store, sleeper=None, **kwargs) -> Publisher:
    return Publisher(store, base_delay=1.0, sleep=sleeper or SleepRecorder(), **kwargs)


class TestPublish:
    """Test upload and retry policy."""

    def test_publish_reports(self, store, secret, dataset):
        report = _publisher(store).publish(dataset, secret)
        assert report.attempts == 1
        assert report.record_count == 2
        assert report.dataset_hash == dataset.content_hash
        assert report.result.inserted == 2

    def test_republish_is_idempotent(self, store, secret, dataset):
        """Publishing twice leaves the destination as after once."""
        publisher = _publisher(store)
        publisher.publish(dataset, secret)
        before = dict(store.records)

        report = publisher.publish(dataset, secret)

        assert store.records == before
        assert report.result.unchanged == 2
        assert report.result.inserted == report.result.updated == 0

    def test_transient_then_success(self, secret, dataset):
        """Attempts 1 and 2 fail transiently, attempt 3 succeeds."""
        sleeper = SleepRecorder()
        store = InMemoryDatasetStore(fail_with=[TransientUploadError("503"), TransientUploadError("502")])

        report = _publisher(store, sleeper, max_attempts=3).publish(dataset, secret)

        assert report.attempts == 3
        assert store.calls == 3
        assert len(sleeper.calls) == 2

    def test_transient_exhausted(self, secret, dataset):
        store = InMemoryDatasetStore(fail_with=[TransientUploadError("503")] * 5)
        with pytest.raises(TransientUploadError):
            _publisher(store, max_attempts=3).publish(dataset, secret)
        assert store.calls == 3

    def test_auth_rejected_not_retried(self, dataset):
        store = InMemoryDatasetStore(accepted_secrets={SECRET})
        wrong = SecretRef(PUBLISH_SECRET_KEY, resolver=SecretsResolver([DictSecretBackend({PUBLISH_SECRET_KEY: "old"})]))
        with pytest.raises(AuthRejected):
            _publisher(store).publish(dataset, wrong)
        assert store.calls == 1


class TestSecretResolution:
    def test_missing_secret(self, store, dataset):
        """A missing secret fails before any upload."""
        ref = SecretRef(PUBLISH_SECRET_KEY, resolver=SecretsResolver([DictSecretBackend()]))
        with pytest.raises(AuthRejected, match=PUBLISH_SECRET_KEY):
            _publisher(store).publish(dataset, ref)
        assert store.calls == 0

    def test_empty_secret(self, store, dataset):
        ref = SecretRef(PUBLISH_SECRET_KEY, resolver=SecretsResolver([DictSecretBackend({PUBLISH_SECRET_KEY: ""})]))
        with pytest.raises(AuthRejected, match="empty"):
            _publisher(store).publish(dataset, ref)

    def test_resolved_per_call(self, store, secret_backend, secret, dataset):
        """A rotated secret is used by the next publish."""
        publisher = _publisher(store)
        publisher.publish(dataset, secret)
        secret_backend.set(PUBLISH_SECRET_KEY, "rotated")
        with pytest.raises(AuthRejected):
            publisher.publish(dataset, secret)


class TestSchemaCheck:
    def test_version_mismatch(self, secret, dataset):
        store = InMemoryDatasetStore(schema=StoreSchema(schema_version=2))
        with pytest.raises(SchemaMismatch, match="v2"):
            _publisher(store).publish(dataset, secret)
        assert store.calls == 0

    def test_missing_required_field(self, secret, dataset):
        store = InMemoryDatasetStore(schema=StoreSchema(required_fields=("sku", "gtin")))
        with pytest.raises(SchemaMismatch, match="gtin"):
            _publisher(store).publish(dataset, secret)

    def test_invalid_attempts(self, store):
        with pytest.raises(ValueError):
            Publisher(store, max_attempts=0)
