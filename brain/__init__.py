"""Brain: persistent memory and retrieval core for a coding-assistant workspace.

Memories are gated on write, linked into a relationship graph, retrieved
per prompt, consolidated through decay and reinforcement, and mined for
reflections, learned cortex words and learned rules.
"""

__version__ = "0.1.0"
