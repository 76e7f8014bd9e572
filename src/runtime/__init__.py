# path: src/runtime/__init__.py

"""
Runtime wiring package for the presence agent.

Holds the entrypoint that stitches together:
- the session controller and its scheduler
- monitoring (event bus, JSONL log, console)
- front ends (console input, relay bridge)

Usage:
    afk-agent --config config/agent.yaml
    python -m runtime.agent_runtime_main
"""
