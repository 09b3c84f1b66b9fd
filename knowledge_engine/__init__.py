"""
Knowledge retrieval engine.

Answers natural-language questions over a workspace's documents by routing
each query to either weighted lexical+vector search or knowledge-graph
augmented retrieval, then synthesizing a cited answer.

Packages:
    - config: pydantic-settings configuration
    - db: async SQLAlchemy engine
    - storage: search_index access (PostgreSQL full-text + pgvector)
    - knowledge_graph: entity/relationship store, traversal, extraction
    - retrieval: hybrid search, graph retrieval, routing, synthesis
    - utils: Bedrock clients, RRF, JSON output parsing
    - api: FastAPI application
"""
