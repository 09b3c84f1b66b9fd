"""
Utility helpers shared across the engine.

- bedrock: bedrock-runtime client factory
- embeddings: Bedrock Titan query embeddings (EmbeddingProvider)
- generation: Bedrock Nova text generation (GenerativeModelProvider)
- rrf: Reciprocal Rank Fusion over ranked lists
- parsing: soft JSON extraction from model output

Usage:
    from knowledge_engine.utils.rrf import rrf_fusion
    from knowledge_engine.utils.parsing import parse_json_output
"""

from knowledge_engine.utils.parsing import ParseResult, parse_json_output
from knowledge_engine.utils.rrf import RRFResult, rrf_fusion

__all__ = [
    "ParseResult",
    "parse_json_output",
    "RRFResult",
    "rrf_fusion",
]
