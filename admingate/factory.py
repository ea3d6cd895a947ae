"""
Admin gate factory for building and wiring components from configuration.

This module instantiates every gate component from an AdminGateConfig and
registers each one in a bevy DI container under its own type. Store backends
are resolved by bundled name or loaded dynamically from a
'module.path:ClassName' import path.
"""

import importlib

from bevy import Container, get_registry

from .audit import AuditRecorder
from .config.schema import AdminGateConfig
from .exceptions import ConfigurationError
from .gate import AuthorizationGate
from .lockout import LockoutTracker
from .rate_limiter import RateLimiter
from .rbac import RbacResolver
from .session_validator import SessionValidator
from .store import AdminStore
from .tokens import JwtTokenService

BUNDLED_STORES = {
    "memory": "admingate.bundled.memory:MemoryAdminStore",
    "ommi": "admingate.bundled.ommi:OmmiAuditStore",
}


class BackendLoader:
    """Loads backend classes from module paths."""

    @staticmethod
    def load_class(module_path: str) -> type:
        """
        Load a class from a module path like 'module.path:ClassName'.

        Raises:
            ConfigurationError: If the module or class cannot be loaded
        """
        if ":" not in module_path:
            raise ConfigurationError(
                f"Invalid module path format: {module_path}. Expected 'module:class'"
            )

        module_name, class_name = module_path.rsplit(":", 1)
        try:
            module = importlib.import_module(module_name)
        except ImportError as e:
            raise ConfigurationError(
                f"Could not import module '{module_name}': {e}"
            ) from e

        try:
            return getattr(module, class_name)
        except AttributeError as e:
            raise ConfigurationError(
                f"Class '{class_name}' not found in module '{module_name}': {e}"
            ) from e


class AdminGateFactory:
    """Factory for creating and wiring admin gate components."""

    def __init__(self, container: Container | None = None):
        """
        Initialize the factory.

        Args:
            container: DI container for registering components. If None, a new
                container is created from the global registry.
        """
        self.container = container or get_registry().create_container()
        self._loader = BackendLoader()

    def create_store(self, config: AdminGateConfig) -> AdminStore:
        """
        Create the configured store backend.

        Raises:
            ConfigurationError: If the backend cannot be loaded or is not an AdminStore
        """
        backend = config.store.backend
        store_class = self._loader.load_class(BUNDLED_STORES.get(backend, backend))

        if not isinstance(store_class, type) or not issubclass(store_class, AdminStore):
            raise ConfigurationError(f"Class {store_class} is not an AdminStore")

        try:
            return store_class(config.store.config)
        except ValueError as e:
            raise ConfigurationError(f"Invalid store configuration: {e}") from e

    def configure(
        self, config: AdminGateConfig, store: AdminStore | None = None
    ) -> AuthorizationGate:
        """
        Build every component and register it in the container.

        Args:
            config: Validated gate configuration
            store: Store to use instead of the configured backend

        Returns:
            The wired authorization gate
        """
        store = store or self.create_store(config)

        token_service = JwtTokenService(
            {
                "secret_key": config.session.secret_key,
                "algorithm": config.session.algorithm,
                "issuer": config.session.issuer,
                "audience": config.session.audience,
            }
        )
        sessions = SessionValidator(store, config.session, token_service)
        lockout = LockoutTracker(store, config.lockout)
        rate_limiter = RateLimiter(store, config.rate_limits)
        rbac = RbacResolver()
        audit = AuditRecorder(store, config.audit)
        gate = AuthorizationGate(
            store, sessions, lockout, rate_limiter, rbac, audit, config.gate
        )

        self.container.add(AdminStore, store)
        self.container.add(JwtTokenService, token_service)
        self.container.add(SessionValidator, sessions)
        self.container.add(LockoutTracker, lockout)
        self.container.add(RateLimiter, rate_limiter)
        self.container.add(RbacResolver, rbac)
        self.container.add(AuditRecorder, audit)
        self.container.add(AuthorizationGate, gate)
        return gate

    def get_configured_container(self) -> Container:
        return self.container


def create_admin_gate(
    config: AdminGateConfig,
    store: AdminStore | None = None,
    container: Container | None = None,
) -> AuthorizationGate:
    """
    Convenience function to create a wired authorization gate.

    Raises:
        ConfigurationError: If configuration is invalid
    """
    return AdminGateFactory(container).configure(config, store)
