"""Upstream LLM access: HTTP client, SSE decoding and token demultiplexing."""
