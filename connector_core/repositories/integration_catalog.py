"""
Read-only catalog of integrations and actions.

The catalog is owned by an external configuration store; the core only
loads it (from a JSON document or already-parsed dicts) and looks entries up.
"""

from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Tuple, Union

from pydantic import ValidationError as PydanticValidationError

from ..exceptions import ConfigError, not_found
from ..schemas.integration_schemas import CatalogDocument, Integration, IntegrationAction
from ..utils.json_utils import loads
from ..utils.logger import get_logger

logger = get_logger()


class IntegrationCatalog:
    """Immutable lookup of integrations by id/slug and actions by (integration, slug)."""

    def __init__(
        self,
        integrations: Iterable[Integration] = (),
        actions: Iterable[IntegrationAction] = (),
    ):
        self._integrations: Dict[str, Integration] = {}
        self._by_slug: Dict[str, Integration] = {}
        self._actions: Dict[Tuple[str, str], IntegrationAction] = {}

        for integration in integrations:
            self._integrations[integration.id] = integration
            self._by_slug[integration.slug] = integration
        for action in actions:
            if action.integration_id not in self._integrations:
                raise ConfigError(
                    f"Action '{action.slug}' references unknown integration",
                    integration_id=action.integration_id,
                )
            self._actions[(action.integration_id, action.slug)] = action

    @classmethod
    def from_dict(cls, document: Dict[str, Any]) -> "IntegrationCatalog":
        try:
            parsed = CatalogDocument.model_validate(document)
        except PydanticValidationError as e:
            raise ConfigError("Invalid integration catalog", cause=e)
        return cls(parsed.integrations, parsed.actions)

    @classmethod
    def from_file(cls, path: Union[str, Path]) -> "IntegrationCatalog":
        """Load a catalog from a JSON file of ``{"integrations": [...], "actions": [...]}``."""
        try:
            document = loads(Path(path).read_text(encoding="utf-8"))
        except (OSError, ValueError) as e:
            raise ConfigError(f"Cannot read integration catalog: {path}", cause=e)
        catalog = cls.from_dict(document)
        logger.info(
            "Integration catalog loaded",
            extra={"path": str(path), "integrations": len(catalog._integrations)},
        )
        return catalog

    def get_integration(self, integration_id: str) -> Integration:
        integration = self._integrations.get(integration_id) or self._by_slug.get(integration_id)
        if integration is None:
            raise not_found("Integration", integration_id=integration_id)
        return integration

    def get_integration_by_slug(self, slug: str) -> Integration:
        integration = self._by_slug.get(slug)
        if integration is None:
            raise not_found("Integration", slug=slug)
        return integration

    def get_action(self, integration_id: str, action_slug: str) -> IntegrationAction:
        integration = self.get_integration(integration_id)
        action = self._actions.get((integration.id, action_slug))
        if action is None:
            raise not_found("IntegrationAction", integration_id=integration.id, slug=action_slug)
        return action

    def list_actions(self, integration_id: str) -> List[IntegrationAction]:
        integration = self.get_integration(integration_id)
        return [a for (iid, _), a in self._actions.items() if iid == integration.id]

    def find_action(self, action_id: str) -> Optional[IntegrationAction]:
        return next((a for a in self._actions.values() if a.id == action_id), None)
