"""
API dependencies - runtime, service binding and caller context
"""
from fastapi import Request

from autorest.core.context import CallerContext, ServiceBinding
from autorest.core.errors import ServiceNotFound
from autorest.services.auto_rest.runtime import EngineRuntime


def get_runtime(request: Request) -> EngineRuntime:
    """Engine runtime created by the application lifespan."""
    return request.app.state.runtime


def get_service_binding(request: Request, service: str) -> ServiceBinding:
    """
    Resolved service binding for the path's service name.

    Upstream middleware (tenant/API-key resolution) places the binding on
    ``request.state.service_binding``, or the application provides a
    ``service_resolver(service_name, request)`` callable.

    Raises:
        ServiceNotFound: Nothing resolved the service, or it resolved to another name
    """
    binding = getattr(request.state, "service_binding", None)
    if binding is None:
        resolver = getattr(request.app.state, "service_resolver", None)
        if resolver is not None:
            binding = resolver(service, request)
    if binding is None or binding.service_name != service:
        raise ServiceNotFound(service=service)
    return binding


def get_caller_context(request: Request) -> CallerContext:
    """Caller identity placed on the request by upstream authentication."""
    context = getattr(request.state, "caller_context", None)
    return context if context is not None else CallerContext()
