"""
LLM-based knowledge extraction: entities and relationships from text.

Two model calls per text:
    1. Entities  - the first 3000 characters -> [{name, entity_type, description}]
    2. Relations - the first 2000 characters plus the extracted entity names
                   -> [{source, target, relation_type, weight}]
                   (skipped when fewer than two entities were found)

Model output goes through parse_json_output, so fenced or chatty JSON is
accepted and malformed output simply extracts nothing. Entities are
deduplicated per (workspace_id, name, entity_type) by the store, and
relationship inserts are idempotent per
(workspace_id, source, target, relation_type).

Usage:
    from knowledge_engine.knowledge_graph.extractor import KnowledgeExtractor

    extractor = KnowledgeExtractor(model=model, graph_store=store)
    result = await extractor.extract(text, workspace_id="ws-1", document_id="doc-9")
    print(len(result.entities), len(result.relationships))
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

import structlog

from knowledge_engine.knowledge_graph.store import GraphStoreError, clamp_weight
from knowledge_engine.retrieval.interfaces import GenerativeModelProvider, GraphStore
from knowledge_engine.retrieval.models import KnowledgeEntity, KnowledgeRelationship
from knowledge_engine.utils.generation import GenerationError
from knowledge_engine.utils.parsing import parse_json_output

logger = structlog.get_logger(__name__)

# =============================================================================
# Constants
# =============================================================================

ENTITY_TEXT_CHARS = 3000
RELATIONSHIP_TEXT_CHARS = 2000
MIN_ENTITIES_FOR_RELATIONSHIPS = 2

ENTITY_PROMPT_TEMPLATE = """從以下文字中抽取所有重要實體（人名、地點、組織、概念、事件等），以 JSON 陣列回覆，每個物件包含 name、entity_type、description 三個欄位。只回傳 JSON，不要任何說明。

文字：
{text}

回傳格式範例：
[{{"name":"OpenAI","entity_type":"org","description":"AI 研究公司"}},{{"name":"GPT-4","entity_type":"concept","description":"大型語言模型"}}]"""

RELATIONSHIP_PROMPT_TEMPLATE = """根據以下文字，找出這些實體之間的關係：{entity_names}

文字：{text}

以 JSON 陣列回覆，每個物件包含 source、target、relation_type、weight（0-1）。只回傳 JSON。

範例：[{{"source":"OpenAI","target":"GPT-4","relation_type":"develops","weight":0.9}}]"""


@dataclass(frozen=True)
class ExtractionResult:
    entities: tuple[KnowledgeEntity, ...] = ()
    relationships: tuple[KnowledgeRelationship, ...] = ()

    def to_dict(self) -> dict[str, Any]:
        return {
            "entities": [e.to_dict() for e in self.entities],
            "relationships": [r.to_dict() for r in self.relationships],
        }


def _clean(value: Any) -> str:
    return value.strip() if isinstance(value, str) else ""


# =============================================================================
# KnowledgeExtractor Class
# =============================================================================


class KnowledgeExtractor:
    """
    Populates a GraphStore from free text using a generative model.

    Extraction never raises for model or parsing problems; store failures
    are logged and end extraction with whatever was written so far.
    """

    def __init__(
        self,
        model: GenerativeModelProvider | None,
        graph_store: GraphStore,
    ) -> None:
        self._model = model
        self._store = graph_store
        self._log = logger.bind(component="knowledge_extractor")

    async def _ask(self, prompt: str, stage: str) -> list[Any]:
        if self._model is None:
            return []
        try:
            raw = await self._model.generate(prompt)
        except GenerationError as e:
            self._log.warning("extraction_model_failed", stage=stage, error=str(e))
            return []

        parsed = parse_json_output(raw, expected_type=list)
        if not parsed.ok:
            self._log.warning("extraction_parse_failed", stage=stage, error=parsed.error)
            return []
        return parsed.value

    async def extract_entities(
        self,
        text: str,
        workspace_id: str,
        document_id: str | None = None,
    ) -> list[KnowledgeEntity]:
        """Extract and store entities; returns them in model order, deduplicated."""
        if not text.strip():
            return []

        items = await self._ask(
            ENTITY_PROMPT_TEMPLATE.format(text=text[:ENTITY_TEXT_CHARS]), "entities"
        )

        entities: list[KnowledgeEntity] = []
        seen: set[str] = set()
        for item in items:
            if not isinstance(item, dict):
                continue
            name = _clean(item.get("name"))
            entity_type = _clean(item.get("entity_type"))
            if not name or not entity_type:
                continue

            try:
                entity = await self._store.upsert_entity(
                    workspace_id=workspace_id,
                    name=name,
                    entity_type=entity_type,
                    description=_clean(item.get("description")),
                    document_id=document_id,
                )
            except GraphStoreError as e:
                self._log.error("entity_store_failed", name=name, error=str(e))
                break

            if entity.id not in seen:
                seen.add(entity.id)
                entities.append(entity)

        self._log.info(
            "kg_entities_extracted",
            count=len(entities),
            workspace_id=workspace_id,
        )
        return entities

    async def extract_relationships(
        self,
        text: str,
        entities: list[KnowledgeEntity],
        workspace_id: str,
    ) -> list[KnowledgeRelationship]:
        """Extract relationships among ``entities``; only newly inserted edges are returned."""
        if len(entities) < MIN_ENTITIES_FOR_RELATIONSHIPS:
            return []

        prompt = RELATIONSHIP_PROMPT_TEMPLATE.format(
            entity_names="、".join(e.name for e in entities),
            text=text[:RELATIONSHIP_TEXT_CHARS],
        )
        items = await self._ask(prompt, "relationships")

        name_to_id = {e.name: e.id for e in entities}
        relationships: list[KnowledgeRelationship] = []
        for item in items:
            if not isinstance(item, dict):
                continue
            source_id = name_to_id.get(_clean(item.get("source")))
            target_id = name_to_id.get(_clean(item.get("target")))
            relation_type = _clean(item.get("relation_type"))
            if not source_id or not target_id or not relation_type:
                continue

            try:
                relationship = await self._store.add_relationship(
                    workspace_id=workspace_id,
                    source_entity_id=source_id,
                    target_entity_id=target_id,
                    relation_type=relation_type,
                    weight=clamp_weight(item.get("weight", 1.0)),
                )
            except GraphStoreError as e:
                self._log.error("relationship_store_failed", error=str(e))
                break

            if relationship is not None:
                relationships.append(relationship)

        self._log.info(
            "kg_relationships_extracted",
            count=len(relationships),
            workspace_id=workspace_id,
        )
        return relationships

    async def extract(
        self,
        text: str,
        workspace_id: str,
        document_id: str | None = None,
    ) -> ExtractionResult:
        entities = await self.extract_entities(text, workspace_id, document_id)
        relationships = await self.extract_relationships(text, entities, workspace_id)
        return ExtractionResult(
            entities=tuple(entities),
            relationships=tuple(relationships),
        )


__all__ = [
    "KnowledgeExtractor",
    "ExtractionResult",
    "ENTITY_TEXT_CHARS",
    "RELATIONSHIP_TEXT_CHARS",
]
