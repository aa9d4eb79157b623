"""
Static four-level spending taxonomy.

The nested asset (departments -> categories -> subcategories -> item groups)
is flattened once into an arena of immutable ``TaxonomyNode`` records with
parent links. Lookups go through read-only indexes by id and by trigger
token, so any number of classifiers can share one ``Taxonomy`` instance.
"""

import json
import logging
from functools import lru_cache
from pathlib import Path
from types import MappingProxyType
from typing import Any, Dict, List, Mapping, Optional, Tuple

from pydantic import BaseModel, Field

from .text import tokenize

logger = logging.getLogger(__name__)

DEFAULT_TAXONOMY_PATH = Path(__file__).parent / "data" / "taxonomy.json"

LEVEL_NAMES = ("department", "category", "subcategory", "item_group")
_CHILD_KEYS = ("categories", "subcategories", "item_groups")


class TaxonomyNode(BaseModel):
    """One node of the taxonomy arena."""

    model_config = {"frozen": True}

    id: str = Field(..., min_length=1)
    level: int = Field(..., ge=0, le=3, description="0=department .. 3=item group")
    name: str
    name_en: Optional[str] = None
    color: Optional[str] = None
    icon: Optional[str] = None
    parent_id: Optional[str] = None
    order: int = Field(..., ge=0, description="Declaration order in the asset")
    triggers: Tuple[Tuple[str, ...], ...] = Field(
        default=(), description="Normalized trigger phrases as token tuples"
    )
    children: Tuple[str, ...] = ()

    @property
    def is_leaf(self) -> bool:
        return not self.children


class Taxonomy:
    """Immutable lookup structure built from the taxonomy asset."""

    def __init__(self, nodes: List[TaxonomyNode], fallback_id: str):
        self._nodes: Tuple[TaxonomyNode, ...] = tuple(nodes)
        self._by_id: Mapping[str, TaxonomyNode] = MappingProxyType(
            {node.id: node for node in self._nodes}
        )

        token_index: Dict[str, List[str]] = {}
        for node in self._nodes:
            for phrase in node.triggers:
                for token in phrase:
                    ids = token_index.setdefault(token, [])
                    if node.id not in ids:
                        ids.append(node.id)
        self._by_token: Mapping[str, Tuple[str, ...]] = MappingProxyType(
            {token: tuple(ids) for token, ids in token_index.items()}
        )

        for node in self._nodes:
            if node.is_leaf and node.level != len(LEVEL_NAMES) - 1:
                raise ValueError(f"Taxonomy node '{node.id}' has no item groups below it")

        if fallback_id not in self._by_id:
            raise ValueError(f"Fallback node '{fallback_id}' is not part of the taxonomy")
        if not self._by_id[fallback_id].is_leaf:
            raise ValueError(f"Fallback node '{fallback_id}' must be an item group")
        self._fallback_id = fallback_id

    def __len__(self) -> int:
        return len(self._nodes)

    def __contains__(self, node_id: str) -> bool:
        return node_id in self._by_id

    @property
    def nodes(self) -> Tuple[TaxonomyNode, ...]:
        return self._nodes

    @property
    def by_token(self) -> Mapping[str, Tuple[str, ...]]:
        return self._by_token

    @property
    def fallback(self) -> TaxonomyNode:
        return self._by_id[self._fallback_id]

    def get(self, node_id: str) -> Optional[TaxonomyNode]:
        return self._by_id.get(node_id)

    def departments(self) -> List[TaxonomyNode]:
        return [node for node in self._nodes if node.level == 0]

    def children_of(self, node_id: str) -> List[TaxonomyNode]:
        node = self._by_id[node_id]
        return [self._by_id[child_id] for child_id in node.children]

    def path(self, node_id: str) -> List[TaxonomyNode]:
        """Nodes from the department down to ``node_id`` (inclusive)."""
        chain = []
        node = self._by_id.get(node_id)
        while node is not None:
            chain.append(node)
            node = self._by_id.get(node.parent_id) if node.parent_id else None
        chain.reverse()
        return chain

    def first_leaf(self, node_id: str) -> TaxonomyNode:
        """Descend through first children until an item group is reached."""
        node = self._by_id[node_id]
        while not node.is_leaf:
            node = self._by_id[node.children[0]]
        return node

    def leaves(self) -> List[TaxonomyNode]:
        return [node for node in self._nodes if node.is_leaf]


def _split_triggers(raw_triggers: List[str]) -> Tuple[Tuple[str, ...], ...]:
    phrases = []
    for trigger in raw_triggers or []:
        tokens = tuple(tokenize(trigger))
        if tokens and tokens not in phrases:
            phrases.append(tokens)
    return tuple(phrases)


def build_taxonomy(data: Dict[str, Any]) -> Taxonomy:
    """Flatten the nested taxonomy structure into a ``Taxonomy``.

    Args:
        data: Parsed asset with ``departments`` and ``fallback_id`` keys

    Returns:
        Taxonomy instance

    Raises:
        ValueError: If ids are duplicated or a level is malformed
    """
    nodes: List[TaxonomyNode] = []
    seen = set()

    def visit(raw: Dict[str, Any], level: int, parent_id: Optional[str]) -> str:
        node_id = str(raw.get("id", "")).strip()
        if not node_id:
            raise ValueError(f"Taxonomy {LEVEL_NAMES[level]} without an id under '{parent_id}'")
        if node_id in seen:
            raise ValueError(f"Duplicate taxonomy id '{node_id}'")
        seen.add(node_id)

        # Reserve the arena slot first so declaration order is depth-first
        index = len(nodes)
        nodes.append(None)

        child_ids = []
        if level < len(_CHILD_KEYS):
            for child in raw.get(_CHILD_KEYS[level], []):
                child_ids.append(visit(child, level + 1, node_id))

        nodes[index] = TaxonomyNode(
            id=node_id,
            level=level,
            name=raw["name"],
            name_en=raw.get("name_en"),
            color=raw.get("color"),
            icon=raw.get("icon"),
            parent_id=parent_id,
            order=index,
            triggers=_split_triggers(raw.get("triggers", [])),
            children=tuple(child_ids),
        )
        return node_id

    for department in data.get("departments", []):
        visit(department, 0, None)

    fallback_id = str(data.get("fallback_id", ""))
    taxonomy = Taxonomy(nodes, fallback_id)
    logger.info(f"Loaded taxonomy with {len(taxonomy)} nodes "
                f"({len(taxonomy.departments())} departments)")
    return taxonomy


def load_taxonomy(path: Optional[str] = None) -> Taxonomy:
    """Load a taxonomy asset from disk.

    Args:
        path: JSON file path; defaults to the bundled asset

    Returns:
        Taxonomy instance
    """
    asset_path = Path(path) if path else DEFAULT_TAXONOMY_PATH
    try:
        with open(asset_path, encoding="utf-8") as f:
            data = json.load(f)
    except (OSError, json.JSONDecodeError) as e:
        logger.error(f"Failed to load taxonomy from {asset_path}: {str(e)}")
        raise
    return build_taxonomy(data)


@lru_cache
def get_default_taxonomy() -> Taxonomy:
    """Process-wide taxonomy loaded once from the bundled asset."""
    return load_taxonomy()
