"""Base controller classes."""

from kubestack.controllers.base.base_controller import (
    AsyncControllerMixin,
    BaseController,
    WorkerResult,
)

__all__ = ["AsyncControllerMixin", "BaseController", "WorkerResult"]
