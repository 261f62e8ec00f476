"""
Minimal web chat backed by an LLM aggregation API with model fallback.

Modules:
    settings:  Configuration loading and persistence helpers, API key lookup.
    llm:       HTTP client for the chat completions endpoint.
    fetcher:   Ordered model fallback with retry and rate-limit backoff.
    transport: Direct and Socket.IO relay strategies for obtaining replies.
    session:   In-memory chat log and pending-reply flag.
    templates: HTML rendering helpers for the chat page.
    main:      FastAPI application wiring everything together.
"""
