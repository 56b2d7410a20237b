"""Target resolution.

Targets come either from a manual, space-separated list, or from a search
over an inventory file of node records. For inventory nodes the connect
address is picked from, in order: the override attribute, the cloud
provider's public hostname, and the default attribute (``fqdn``).
"""

import logging
from fnmatch import fnmatchcase
from pathlib import Path
from typing import Any

import yaml

from fleetssh.exceptions import ConfigurationError
from fleetssh.models import Resolution

logger = logging.getLogger(__name__)

DEFAULT_ATTRIBUTE = "fqdn"
CLOUD_HOSTNAME_PATH = "cloud.public_hostname"


def resolve_manual(query: str) -> Resolution:
    """Split a space-separated host list."""
    return Resolution(targets=query.split(), node_count=None)


def extract_nested_value(data: Any, path: str) -> Any:
    """Follow a dotted attribute path through nested mappings.

    Returns:
        The value, or None when any step is missing
    """
    value = data
    for key in path.split("."):
        if isinstance(value, dict) and key in value:
            value = value[key]
        elif isinstance(value, list) and key.isdigit() and int(key) < len(value):
            value = value[int(key)]
        else:
            return None
    return value


def _value_matches(value: Any, pattern: str) -> bool:
    if isinstance(value, list):
        return any(_value_matches(item, pattern) for item in value)
    if value is None or isinstance(value, dict):
        return False
    return fnmatchcase(str(value), pattern)


class InventoryResolver:
    """Searches node records loaded from a YAML or JSON inventory file."""

    def __init__(
        self,
        inventory_path: Path | str,
        attribute: str = DEFAULT_ATTRIBUTE,
        override_attribute: str | None = None,
    ) -> None:
        """Initialize resolver.

        Args:
            inventory_path: File holding a list of node mappings, or a mapping
                with a ``nodes`` list
            attribute: Default attribute path holding the connect address
            override_attribute: Attribute path that wins over every fallback
        """
        self.inventory_path = Path(inventory_path).expanduser()
        self.attribute = attribute
        self.override_attribute = override_attribute
        self._nodes: list[dict[str, Any]] | None = None

    def load(self) -> list[dict[str, Any]]:
        """Load and cache the inventory.

        Raises:
            ConfigurationError: If the file is missing, unreadable or malformed
        """
        if self._nodes is not None:
            return self._nodes

        try:
            data = yaml.safe_load(self.inventory_path.read_text())
        except FileNotFoundError:
            raise ConfigurationError(
                f"Inventory file not found: {self.inventory_path}. "
                "Pass --inventory PATH, or use --manual-list for a plain host list."
            ) from None
        except (OSError, yaml.YAMLError) as e:
            raise ConfigurationError(
                f"Cannot read inventory {self.inventory_path}: {e}"
            ) from e

        if isinstance(data, dict):
            data = data.get("nodes")
        if data is None:
            data = []
        if not isinstance(data, list):
            raise ConfigurationError(
                f"Inventory {self.inventory_path} must be a list of nodes "
                "or a mapping with a 'nodes' list"
            )

        self._nodes = [node for node in data if isinstance(node, dict)]
        logger.debug(
            "Loaded %d node(s) from %s", len(self._nodes), self.inventory_path
        )
        return self._nodes

    def search(self, query: str) -> list[dict[str, Any]]:
        """Return nodes matching every ``key:pattern`` term of the query.

        A term without a colon matches against ``name``. ``*:*`` matches all.
        """
        terms: list[tuple[str, str]] = []
        for term in query.split():
            key, sep, pattern = term.partition(":")
            terms.append((key, pattern) if sep else ("name", term))

        matches = []
        for node in self.load():
            if all(
                key == "*" or _value_matches(extract_nested_value(node, key), pattern)
                for key, pattern in terms
            ):
                matches.append(node)
        logger.debug("Query %r matched %d node(s)", query, len(matches))
        return matches

    def address_for(self, node: dict[str, Any]) -> str | None:
        """Pick the connect address for one node."""
        if self.override_attribute:
            value = extract_nested_value(node, self.override_attribute)
        else:
            value = extract_nested_value(node, CLOUD_HOSTNAME_PATH)
            if value is None:
                value = extract_nested_value(node, self.attribute)

        if value is None or isinstance(value, (dict, list)):
            return None
        return str(value)

    def resolve(self, query: str) -> Resolution:
        """Search the inventory and extract addresses.

        Nodes without an address are skipped; ``node_count`` still counts them.
        """
        nodes = self.search(query)
        targets = []
        for node in nodes:
            address = self.address_for(node)
            if address is None:
                logger.debug(
                    "Skipping node %s: no address attribute", node.get("name", "?")
                )
                continue
            targets.append(address)
        return Resolution(targets=targets, node_count=len(nodes))
