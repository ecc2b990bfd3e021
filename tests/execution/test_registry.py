"""Tests for regops.execution.registry — job type → handler lookup."""

from __future__ import annotations

import pytest

from regops.core.errors import MissingHandlerError, RegistryFrozenError
from regops.core.models import JobType
from regops.execution.registry import HandlerRegistry, JobHandler, Lifecycle, Releasable
from regops.execution.results import Terminal


class Handler:
    def handle(self, job):
        return Terminal.succeeded()

    def cleanup(self, job):
        pass


class PooledHandler(Handler):
    def start(self):
        pass

    def stop(self):
        pass


class TestRegister:
    """Tests for HandlerRegistry.register()."""

    def test_register_and_get(self, registry):
        handler = Handler()
        registry.register(JobType.IMAGE_SIGN, handler)
        assert registry.get(JobType.IMAGE_SIGN) is handler
        assert registry.has(JobType.IMAGE_SIGN)

    def test_duplicate_rejected(self, registry):
        registry.register(JobType.IMAGE_SIGN, Handler())
        with pytest.raises(ValueError, match="already registered"):
            registry.register(JobType.IMAGE_SIGN, Handler())

    def test_frozen_rejects_registration(self, registry):
        registry.freeze()
        assert registry.frozen
        with pytest.raises(RegistryFrozenError):
            registry.register(JobType.IMAGE_SIGN, Handler())


class TestLookup:
    """Tests for get/list_handlers/require."""

    def test_missing_handler(self, registry):
        registry.register(JobType.IMAGE_REPLICATE, Handler())
        with pytest.raises(MissingHandlerError) as exc_info:
            registry.get(JobType.IMAGE_SCAN)
        assert exc_info.value.available == ["ImageReplicate"]

    def test_list_sorted_by_value(self, registry):
        registry.register(JobType.SYNCHRONIZE_EXT_REG, Handler())
        registry.register(JobType.IMAGE_SIGN, Handler())
        assert registry.list_handlers() == [JobType.IMAGE_SIGN, JobType.SYNCHRONIZE_EXT_REG]

    def test_require(self, registry):
        registry.register(JobType.IMAGE_REPLICATE, Handler())
        registry.require([JobType.IMAGE_REPLICATE])
        with pytest.raises(MissingHandlerError) as exc_info:
            registry.require([JobType.IMAGE_REPLICATE, JobType.IMAGE_SIGN])
        assert exc_info.value.job_type == "ImageSign"


class TestFreeze:
    """Tests for the read-only view."""

    def test_view_is_read_only(self, registry):
        registry.register(JobType.IMAGE_SIGN, Handler())
        view = registry.freeze()
        assert view is registry.freeze()
        with pytest.raises(TypeError):
            view[JobType.IMAGE_SCAN] = Handler()


class TestProtocols:
    """Tests for the structural handler protocols."""

    def test_handler_protocols(self):
        assert isinstance(Handler(), JobHandler)
        assert not isinstance(Handler(), Lifecycle)
        assert isinstance(PooledHandler(), Lifecycle)

    def test_releasable_is_optional(self):
        class RecordKeepingHandler(Handler):
            def release(self, job):
                pass

        assert not isinstance(Handler(), Releasable)
        assert isinstance(RecordKeepingHandler(), Releasable)
        assert isinstance(RecordKeepingHandler(), JobHandler)
