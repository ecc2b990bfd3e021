"""Tests for regops.handlers.sign."""

from __future__ import annotations

import pytest

from regops.core.errors import ValidationError
from regops.core.models import JobState, JobType
from regops.handlers.sign import ImageSignHandler


@pytest.fixture
def handler(store, signer):
    return ImageSignHandler(store, signer)


@pytest.fixture
def sign_job(store, make_job):
    return store.create(make_job("copy-nginx-sign", job_type=JobType.IMAGE_SIGN, target="copy-nginx"))


class TestImageSignHandler:
    def test_signs_destination_image(self, handler, store, signer, make_replicate, sign_job):
        store.create(make_replicate(signer="ops"))

        outcome = handler.handle(sign_job)

        assert outcome.success is True
        assert outcome.message == "signed internal/mirror/nginx:1.25 with ops"
        assert signer.signed == [("internal/mirror/nginx:1.25", "ops")]
        assert handler.key_for(sign_job) == "key-1"

    def test_replicate_without_signer(self, handler, store, make_replicate, sign_job):
        store.create(make_replicate())
        with pytest.raises(ValidationError, match="no signer"):
            handler.handle(sign_job)

    def test_missing_replicate(self, handler, sign_job):
        with pytest.raises(ValidationError):
            handler.handle(sign_job)

    def test_cleanup_of_unfinished_job_revokes_key(self, handler, store, signer, make_replicate, sign_job):
        store.create(make_replicate(signer="ops"))
        handler.handle(sign_job)
        sign_job.status.state = JobState.FAILED

        handler.cleanup(sign_job)

        assert signer.revoked == ["key-1"]
        assert handler.key_for(sign_job) is None

    def test_cleanup_of_completed_job_keeps_key(self, handler, store, signer, make_replicate, sign_job):
        store.create(make_replicate(signer="ops"))
        handler.handle(sign_job)
        sign_job.status.state = JobState.COMPLETED

        handler.cleanup(sign_job)

        assert signer.revoked == []
        assert handler.key_for(sign_job) is None

    def test_cleanup_without_signature(self, handler, signer, sign_job):
        handler.cleanup(sign_job)
        assert signer.revoked == []

    def test_release_drops_key_without_revoking(self, handler, store, signer, make_replicate, sign_job):
        store.create(make_replicate(signer="ops"))
        handler.handle(sign_job)

        handler.release(sign_job)

        assert handler.key_for(sign_job) is None
        assert signer.revoked == []
        sign_job.status.state = JobState.RUNNING
        handler.cleanup(sign_job)
        assert signer.revoked == []
